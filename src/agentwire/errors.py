"""Exception hierarchy for agentwire."""

from typing import Optional


class AgentwireError(Exception):
    """Base class for every error raised or emitted by agentwire."""


class ConfigurationError(AgentwireError):
    """Raised when connection or client options are invalid."""


class MessageParseError(AgentwireError):
    """A socket frame could not be decoded as JSON. Emitted as ws:error."""


class QueueOverflowError(AgentwireError):
    """The pending-send queue dropped its oldest entry. Emitted as ws:error."""

    def __init__(self, capacity: int):
        super().__init__(f"Message queue overflow: dropped oldest message (queue size: {capacity})")
        self.capacity = capacity


class NotConnectedError(AgentwireError, RuntimeError):
    """A session command or wait was issued before connect()."""


class ConnectionClosedError(AgentwireError):
    """The connection was closed by the user while a wait was pending."""


class WaitTimeoutError(AgentwireError, TimeoutError):
    """No qualifying event arrived before the wait deadline."""

    def __init__(self, event: str, timeout: float):
        super().__init__(f"Timeout waiting for event: {event} ({timeout}s)")
        self.event = event
        self.timeout = timeout


class DeploymentError(AgentwireError):
    """A preview or Cloudflare deployment reported failure."""


class AgentApiError(AgentwireError):
    """The agent HTTP API returned an error or an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
