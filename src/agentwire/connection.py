"""
Resilient WebSocket connection to a build agent.

AgentConnection owns exactly one socket at a time. It connects on
construction, reconnects with exponential backoff after a close or an error,
queues sends while disconnected, and republishes every incoming frame as a
typed event on its EventBus.
"""

import asyncio
from collections import deque
from collections.abc import Mapping
from typing import Any, Optional, Union

from agentwire.config import ConnectionOptions, coerce_options
from agentwire.errors import ConnectionClosedError, MessageParseError, QueueOverflowError
from agentwire.events import (
    AgentErrorEvent,
    AgentEvent,
    CloseInfo,
    EventBus,
    EventCallback,
    RawPayload,
    ReconnectInfo,
    TransportErrorEvent,
    Unsubscribe,
    WildcardCallback,
)
from agentwire.logging_config import get_logger
from agentwire.messages import (
    PHASE_EVENT_TYPES,
    ClientMessage,
    ServerMessage,
    Unclassified,
    classify,
    parse_payload,
    serialize_client_message,
)
from agentwire.retry import compute_backoff
from agentwire.sockets import SocketLike, default_socket_factory
from agentwire.waiters import Predicate, Transform, WaiterRegistry

logger = get_logger(__name__)

DEFAULT_WAIT_TIMEOUT = 60.0

# Server message type -> coarse category event, published after ws:message
SUGAR_EVENTS: dict[str, AgentEvent] = {
    "agent_connected": AgentEvent.CONNECTED,
    "conversation_response": AgentEvent.CONVERSATION,
    "conversation_state": AgentEvent.CONVERSATION,
    **{phase_type: AgentEvent.PHASE for phase_type in PHASE_EVENT_TYPES},
    "file_chunk_generated": AgentEvent.FILE,
    "file_generated": AgentEvent.FILE,
    "file_generating": AgentEvent.FILE,
    "file_regenerating": AgentEvent.FILE,
    "file_regenerated": AgentEvent.FILE,
    "generation_started": AgentEvent.GENERATION,
    "generation_complete": AgentEvent.GENERATION,
    "generation_stopped": AgentEvent.GENERATION,
    "generation_resumed": AgentEvent.GENERATION,
    "deployment_started": AgentEvent.PREVIEW,
    "deployment_completed": AgentEvent.PREVIEW,
    "deployment_failed": AgentEvent.PREVIEW,
    "cloudflare_deployment_started": AgentEvent.CLOUDFLARE,
    "cloudflare_deployment_completed": AgentEvent.CLOUDFLARE,
    "cloudflare_deployment_error": AgentEvent.CLOUDFLARE,
    "error": AgentEvent.AGENT_ERROR,
}


class AgentConnection:
    """
    Reconnecting connection to one agent WebSocket URL.

    Lifecycle:
        Connecting -(open)-> Connected -(close/error)-> Connecting (retry allowed)
        or Disconnected (retries exhausted). close() ends the connection for good.

    Events (see AgentEvent):
        ws:open (None), ws:close (CloseInfo), ws:error (TransportErrorEvent),
        ws:reconnecting (ReconnectInfo), ws:raw (RawPayload),
        ws:message (ServerMessage), then one sugar event per typed message.

    All methods must be called from the event loop thread. Reconnect timers and
    waits need a running loop; without one, reconnects are skipped.
    """

    def __init__(self, url: str, options: Union[ConnectionOptions, dict[str, Any], None] = None):
        """
        Create the connection and start connecting immediately.

        Args:
            url: ws:// or wss:// URL of the agent
            options: ConnectionOptions or a dict of overrides

        Raises:
            ConfigurationError: If options are invalid
        """
        self._url = url
        self._options = coerce_options(ConnectionOptions, options)
        self._retry = self._options.retry
        self._socket_factory = self._options.socket_factory or default_socket_factory

        self._events = EventBus(name=f"connection:{url}")
        self._waiters = WaiterRegistry(self._events)

        # Connection state (only touched from socket callbacks and public methods)
        self._socket: Optional[SocketLike] = None
        self._is_open = False
        self._closed_by_user = False
        self._reconnect_attempts = 0
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._pending_sends: deque[str] = deque()

        self._connect_now()

    # Properties

    @property
    def url(self) -> str:
        return self._url

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    @property
    def is_open(self) -> bool:
        """True while the current socket is open."""
        return self._is_open

    @property
    def closed_by_user(self) -> bool:
        return self._closed_by_user

    @property
    def reconnect_attempts(self) -> int:
        """Reconnects scheduled since the last successful open."""
        return self._reconnect_attempts

    @property
    def pending_count(self) -> int:
        """Number of serialized messages waiting for the socket to open."""
        return len(self._pending_sends)

    @property
    def events(self) -> EventBus:
        return self._events

    # Subscriptions

    def on(self, event: Union[AgentEvent, str], callback: EventCallback) -> Unsubscribe:
        """Subscribe to one event. Returns an idempotent unsubscribe function."""
        return self._events.on(event, callback)

    def on_any(self, callback: WildcardCallback) -> Unsubscribe:
        """Subscribe to every event with callback(event, payload)."""
        return self._events.on_any(callback)

    def wait_for(
        self,
        event: Union[AgentEvent, str],
        predicate: Optional[Predicate] = None,
        timeout: Optional[float] = DEFAULT_WAIT_TIMEOUT,
        *,
        transform: Optional[Transform] = None,
    ) -> asyncio.Future:
        """
        Wait for the first payload of event that satisfies predicate.

        The subscription is registered before this returns, so events emitted
        right after the call are seen.

        Args:
            event: Event to wait for
            predicate: Payload filter (None accepts the first payload)
            timeout: Seconds before rejecting with WaitTimeoutError (None = never)
            transform: Maps the matching payload to the result; raising rejects

        Returns:
            Future resolved with the payload, rejected with WaitTimeoutError,
            the transform's exception, or ConnectionClosedError on close()
        """
        if self._closed_by_user:
            future = asyncio.get_running_loop().create_future()
            future.set_exception(ConnectionClosedError(f"Connection to {self._url} is closed"))
            future.exception()
            return future
        return self._waiters.register(event, predicate=predicate, timeout=timeout, transform=transform).future

    # Sending

    def send(self, message: Union[ClientMessage, Mapping[str, Any]]) -> None:
        """
        Send a client command, queueing it while the socket is not open.

        The queue holds at most max_pending_sends entries; on overflow the
        oldest entry is dropped and ws:error carries a QueueOverflowError.
        Sends after close() are dropped.
        """
        data = serialize_client_message(message)

        if self._closed_by_user:
            logger.warning(f"Dropping message on closed connection {self._url}")
            return

        socket = self._socket
        if self._is_open and socket is not None:
            try:
                socket.send(data)
                return
            except Exception as e:
                logger.debug(f"Immediate send failed, queueing: {e}")
                self._enqueue(data)
                self._handle_error(socket, e)
                return

        self._enqueue(data)

    def _enqueue(self, data: str) -> None:
        self._pending_sends.append(data)
        capacity = self._options.max_pending_sends
        if len(self._pending_sends) > capacity:
            self._pending_sends.popleft()
            logger.warning(f"Send queue full ({capacity}), dropped oldest message")
            self._events.emit(AgentEvent.ERROR, TransportErrorEvent(error=QueueOverflowError(capacity)))

    def _flush(self, socket: SocketLike) -> None:
        """Write queued messages in FIFO order while socket stays current and open."""
        flushed = 0
        while self._pending_sends and self._is_open and socket is self._socket:
            data = self._pending_sends.popleft()
            try:
                socket.send(data)
            except Exception as e:
                self._pending_sends.appendleft(data)
                self._handle_error(socket, e)
                break
            flushed += 1
        if flushed:
            logger.debug(f"Flushed {flushed} queued message(s)")

    # Lifecycle

    def close(self) -> None:
        """
        Close for good: no further reconnects, queued sends dropped, pending
        waits rejected with ConnectionClosedError. Idempotent.
        """
        if self._closed_by_user:
            return
        self._closed_by_user = True
        self._is_open = False
        self._pending_sends.clear()
        self._cancel_reconnect_timer()

        socket, self._socket = self._socket, None
        if socket is not None:
            self._close_socket(socket)
            logger.info(f"Closed connection to {self._url}")
            self._events.emit(AgentEvent.CLOSE, CloseInfo(code=1000, reason="closed by user"))

        self._waiters.cancel_all(ConnectionClosedError(f"Connection to {self._url} closed by user"))

    def _connect_now(self) -> None:
        if self._closed_by_user:
            return
        self._reconnect_timer = None

        previous, self._socket = self._socket, None
        if previous is not None:
            was_open, self._is_open = self._is_open, False
            self._close_socket(previous)
            if was_open:
                self._events.emit(AgentEvent.CLOSE, CloseInfo(code=1000, reason="reconnecting"))

        logger.debug(f"Connecting to {self._url}")
        try:
            socket = self._socket_factory(self._url, self._options.protocols, self._options.handshake_headers())
        except Exception as e:
            logger.warning(f"Socket factory failed for {self._url}: {e}")
            self._events.emit(AgentEvent.ERROR, TransportErrorEvent(error=e))
            self._schedule_reconnect("error")
            return

        self._socket = socket
        socket.on("open", lambda: self._on_open(socket))
        socket.on("close", lambda code=1006, reason="": self._on_close(socket, code, reason))
        socket.on("error", lambda error=None: self._handle_error(socket, error))
        socket.on("message", lambda data: self._on_message(socket, data))

    def _close_socket(self, socket: SocketLike) -> None:
        # The socket is already detached; anything it reports is ignored
        try:
            socket.close()
        except Exception as e:
            logger.debug(f"Error closing socket: {e}")

    # Reconnection

    def _schedule_reconnect(self, reason: str) -> None:
        if self._closed_by_user or not self._retry.allows_attempt(self._reconnect_attempts):
            return
        if self._reconnect_timer is not None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, not reconnecting to {self._url}")
            return

        attempt = self._reconnect_attempts
        delay = compute_backoff(attempt, self._retry)
        logger.info(f"Reconnecting to {self._url} in {delay:.2f}s (attempt {attempt + 1}, after {reason})")
        self._events.emit(AgentEvent.RECONNECTING, ReconnectInfo(attempt=attempt + 1, delay=delay, reason=reason))

        # A ws:reconnecting handler may have closed us, or already reconnected
        if self._closed_by_user or self._reconnect_timer is not None:
            return
        self._reconnect_attempts += 1
        self._reconnect_timer = loop.call_later(delay, self._connect_now)

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    # Socket callbacks

    def _on_open(self, socket: SocketLike) -> None:
        if socket is not self._socket:
            return
        self._is_open = True
        self._reconnect_attempts = 0
        logger.info(f"Connected to {self._url}")
        # Sends issued by open handlers go out before the queued ones
        self._events.emit(AgentEvent.OPEN, None)
        self._flush(socket)

    def _on_close(self, socket: SocketLike, code: int, reason: str) -> None:
        if socket is not self._socket:
            return
        self._is_open = False
        logger.info(f"Connection to {self._url} closed (code={code}, reason={reason!r})")
        self._events.emit(AgentEvent.CLOSE, CloseInfo(code=code, reason=reason or ""))
        self._schedule_reconnect("close")

    def _handle_error(self, socket: SocketLike, error: Any) -> None:
        if socket is not self._socket:
            return
        logger.debug(f"Transport error on {self._url}: {error}")
        self._events.emit(AgentEvent.ERROR, TransportErrorEvent(error=error))
        self._schedule_reconnect("error")

    def _on_message(self, socket: SocketLike, data: Union[str, bytes]) -> None:
        if socket is not self._socket:
            return
        try:
            raw = parse_payload(data)
        except MessageParseError as e:
            logger.warning(f"Unparseable frame from {self._url}: {e}")
            self._handle_error(socket, e)
            return

        result = classify(raw)
        if isinstance(result, Unclassified):
            logger.debug(f"Unclassified payload from {self._url}")
            self._events.emit(AgentEvent.RAW, RawPayload(raw=result.raw))
            return

        self._publish(result)

    def _publish(self, message: ServerMessage) -> None:
        self._events.emit(AgentEvent.MESSAGE, message)

        sugar = SUGAR_EVENTS.get(message.type)
        if sugar is None:
            return
        if sugar is AgentEvent.AGENT_ERROR:
            error = getattr(message, "error", None)
            self._events.emit(sugar, AgentErrorEvent(error=str(error) if error is not None else "Unknown error"))
        else:
            self._events.emit(sugar, message)
