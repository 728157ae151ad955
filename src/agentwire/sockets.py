"""
Socket abstraction used by AgentConnection, plus the default adapter built on
the ``websockets`` asyncio client.

AgentConnection only talks to a SocketLike: fire-and-forget send/close and
listener registration for open/close/error/message. Any object with that
shape can be injected through a socket factory, which is how tests (and
hosts with their own WebSocket stack) plug in.
"""

import asyncio
from collections import defaultdict
from typing import Callable, Optional, Protocol

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from agentwire.logging_config import get_logger

logger = get_logger(__name__)


class SocketLike(Protocol):
    """
    Minimal socket surface.

    Listener signatures:
        open: () -> None
        close: (code: int, reason: str) -> None
        error: (error: BaseException) -> None
        message: (data: str | bytes) -> None
    """

    def send(self, data: str) -> None: ...

    def close(self) -> None: ...

    def on(self, event: str, listener: Callable[..., None]) -> None: ...


# (url, subprotocols, headers) -> socket
SocketFactory = Callable[[str, Optional[list[str]], dict[str, str]], SocketLike]


class WebsocketsSocket:
    """
    SocketLike adapter over ``websockets.asyncio.client``.

    The connection runs as a task on the current event loop. Outgoing frames
    go through an asyncio queue drained by a writer task, so send() never
    blocks and frames keep their order. Must be created with a running loop.
    """

    def __init__(
        self,
        url: str,
        protocols: Optional[list[str]] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        """
        Start connecting.

        Args:
            url: ws:// or wss:// URL
            protocols: Optional subprotocols to offer
            headers: Extra handshake headers (Origin, Authorization, ...)
        """
        self._url = url
        self._protocols = protocols
        self._headers = dict(headers or {})
        self._listeners: defaultdict[str, list[Callable[..., None]]] = defaultdict(list)
        self._outgoing: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._ws = None
        self._closing = False

        # Listeners are attached synchronously after construction; the task
        # does not run before the caller yields to the loop.
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"agentwire-socket:{url}")

    def on(self, event: str, listener: Callable[..., None]) -> None:
        self._listeners[event].append(listener)

    def send(self, data: str) -> None:
        if self._closing:
            logger.debug(f"Dropping frame for closing socket {self._url}")
            return
        self._outgoing.put_nowait(data)

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        if self._ws is None:
            # Still handshaking: abandon the attempt
            self._task.cancel()
        else:
            self._outgoing.put_nowait(None)

    def _dispatch(self, event: str, *args) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(*args)
            except Exception as e:
                # Don't tear down the read loop on handler errors
                logger.exception(f"Error in socket '{event}' listener: {e}")

    async def _run(self) -> None:
        code, reason = 1006, ""
        try:
            async with connect(
                self._url,
                additional_headers=self._headers or None,
                subprotocols=self._protocols,
            ) as ws:
                self._ws = ws
                writer = asyncio.create_task(self._write_loop(ws))
                self._dispatch("open")
                try:
                    async for data in ws:
                        self._dispatch("message", data)
                finally:
                    writer.cancel()
            code = ws.close_code if ws.close_code is not None else 1000
            reason = ws.close_reason or ""
        except ConnectionClosed as e:
            if e.rcvd is not None:
                code, reason = e.rcvd.code, e.rcvd.reason
        except asyncio.CancelledError:
            logger.debug(f"Connection attempt to {self._url} cancelled")
            raise
        except Exception as e:
            logger.debug(f"Socket error on {self._url}: {e}")
            self._dispatch("error", e)
            reason = str(e)

        self._dispatch("close", code, reason)

    async def _write_loop(self, ws) -> None:
        while True:
            data = await self._outgoing.get()
            try:
                if data is None:
                    await ws.close()
                    return
                await ws.send(data)
            except ConnectionClosed:
                return


def default_socket_factory(
    url: str,
    protocols: Optional[list[str]] = None,
    headers: Optional[dict[str, str]] = None,
) -> WebsocketsSocket:
    """Build the default ``websockets``-backed socket."""
    return WebsocketsSocket(url, protocols, headers)
