"""
Error-isolated publish/subscribe bus and the agent event vocabulary.

Subscriber failures are logged and skipped so that a buggy callback can never
break the transport's own control flow or starve later subscribers.
"""

import threading
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict

from agentwire.logging_config import get_logger

logger = get_logger(__name__)

# Callback type signatures
EventCallback = Callable[[Any], None]
WildcardCallback = Callable[[str, Any], None]  # (event, payload)
Unsubscribe = Callable[[], None]


class AgentEvent(str, Enum):
    """Event names published by an AgentConnection."""

    # Transport lifecycle
    OPEN = "ws:open"
    CLOSE = "ws:close"
    ERROR = "ws:error"
    RECONNECTING = "ws:reconnecting"
    RAW = "ws:raw"  # Payload that could not be classified
    MESSAGE = "ws:message"  # Every typed server message

    # Sugar categories (re-published after MESSAGE)
    CONNECTED = "connected"
    CONVERSATION = "conversation"
    PHASE = "phase"
    FILE = "file"
    GENERATION = "generation"
    PREVIEW = "preview"
    CLOUDFLARE = "cloudflare"
    AGENT_ERROR = "error"


class CloseInfo(BaseModel):
    """Payload of ws:close."""

    model_config = ConfigDict(frozen=True)

    code: int = 1000
    reason: str = ""


class TransportErrorEvent(BaseModel):
    """Payload of ws:error. The error is whatever the runtime reported."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    error: Any


class ReconnectInfo(BaseModel):
    """Payload of ws:reconnecting."""

    model_config = ConfigDict(frozen=True)

    attempt: int
    delay: float  # seconds
    reason: Literal["close", "error"]


class RawPayload(BaseModel):
    """Payload of ws:raw."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    raw: Any


class AgentErrorEvent(BaseModel):
    """Payload of the sugar 'error' event, derived from a server error message."""

    model_config = ConfigDict(frozen=True)

    error: str


class EventBus:
    """
    Synchronous event bus keyed by event name.

    Delivery order within one event name matches registration order; wildcard
    callbacks run after the named callbacks. No ordering is promised between
    different event names.

    Callback lists are copied before dispatch, so callbacks may subscribe or
    unsubscribe while an emit is in progress. Changes apply to the next emit.

    Events may be given as AgentEvent members or plain strings; both are keyed
    by their string value, and wildcard callbacks always receive the string.
    """

    def __init__(self, name: str = "events"):
        """
        Initialize empty subscription tables.

        Args:
            name: Label used in log messages
        """
        self._name = name
        self._callbacks: defaultdict[str, list[EventCallback]] = defaultdict(list)
        self._wildcard_callbacks: list[WildcardCallback] = []
        self._lock = threading.RLock()

    # Registration

    def on(self, event: str, callback: EventCallback) -> Unsubscribe:
        """
        Register callback for a single event name.

        Args:
            event: Event name
            callback: Function(payload) -> None

        Returns:
            Idempotent function that removes this registration
        """
        event = event_name(event)
        with self._lock:
            self._callbacks[event].append(callback)
        logger.debug(f"[{self._name}] Registered callback for '{event}': {_callback_name(callback)}")

        active = True

        def unsubscribe() -> None:
            nonlocal active
            if active:
                active = False
                self.off(event, callback)

        return unsubscribe

    def on_any(self, callback: WildcardCallback) -> Unsubscribe:
        """
        Register callback for every event.

        Args:
            callback: Function(event: str, payload) -> None

        Returns:
            Idempotent function that removes this registration
        """
        with self._lock:
            self._wildcard_callbacks.append(callback)
        logger.debug(f"[{self._name}] Registered wildcard callback: {_callback_name(callback)}")

        active = True

        def unsubscribe() -> None:
            nonlocal active
            if active:
                active = False
                self.off_any(callback)

        return unsubscribe

    def off(self, event: str, callback: EventCallback) -> bool:
        """
        Remove one registration of callback for event.

        Returns:
            True if a registration was found and removed
        """
        event = event_name(event)
        with self._lock:
            callbacks = self._callbacks.get(event)
            if not callbacks:
                return False
            for i, cb in enumerate(callbacks):
                if cb is callback:
                    callbacks.pop(i)
                    if not callbacks:
                        del self._callbacks[event]
                    return True
        return False

    def off_any(self, callback: WildcardCallback) -> bool:
        """
        Remove one wildcard registration of callback.

        Returns:
            True if a registration was found and removed
        """
        with self._lock:
            for i, cb in enumerate(self._wildcard_callbacks):
                if cb is callback:
                    self._wildcard_callbacks.pop(i)
                    return True
        return False

    # Dispatch

    def emit(self, event: str, payload: Any = None) -> None:
        """
        Deliver payload to every callback registered for event, then to every
        wildcard callback.

        Args:
            event: Event name
            payload: Event payload (passed through untouched)
        """
        event = event_name(event)

        # Copy callback lists under lock (copy-before-dispatch pattern)
        with self._lock:
            callbacks = list(self._callbacks.get(event, ()))
            wildcard_callbacks = list(self._wildcard_callbacks)

        for callback in callbacks:
            self._safe_call(callback, payload)

        for callback in wildcard_callbacks:
            self._safe_call(callback, event, payload)

    def _safe_call(self, callback: Callable, *args) -> None:
        """Execute callback, logging and swallowing any exception it raises."""
        try:
            callback(*args)
        except Exception as e:
            logger.exception(f"[{self._name}] Error in callback '{_callback_name(callback)}': {e}")

    # Utility methods

    def clear(self) -> None:
        """Remove every subscription."""
        with self._lock:
            self._callbacks.clear()
            self._wildcard_callbacks.clear()
        logger.debug(f"[{self._name}] Cleared all callbacks")

    def listener_count(self, event: Optional[str] = None) -> int:
        """
        Count registered callbacks.

        Args:
            event: Event name, or None for the total including wildcards

        Returns:
            Number of registrations
        """
        with self._lock:
            if event is not None:
                return len(self._callbacks.get(event_name(event), ()))
            return sum(len(cbs) for cbs in self._callbacks.values()) + len(self._wildcard_callbacks)


def event_name(event: str) -> str:
    """Plain string name of an event (enum members included)."""
    return event.value if isinstance(event, Enum) else str(event)


def _callback_name(callback: Callable) -> str:
    return getattr(callback, "__name__", repr(callback))
