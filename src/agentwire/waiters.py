"""
One-shot waits on the event bus.

A Waiter subscribes to one event, settles its future with the first payload
that passes the predicate, and releases its subscription and timer as soon as
it settles for any reason: match, timeout, cancellation by the registry, or
the caller cancelling the future.
"""

import asyncio
from typing import Any, Callable, Optional

from agentwire.errors import WaitTimeoutError
from agentwire.events import EventBus, event_name
from agentwire.logging_config import get_logger

logger = get_logger(__name__)

Predicate = Callable[[Any], bool]
Transform = Callable[[Any], Any]


class Waiter:
    """
    Pending wait for a single qualifying event.

    Must be created on the event loop thread with a running loop.
    """

    def __init__(
        self,
        bus: EventBus,
        event: str,
        predicate: Optional[Predicate] = None,
        timeout: Optional[float] = None,
        transform: Optional[Transform] = None,
        on_release: Optional[Callable[["Waiter"], None]] = None,
    ):
        """
        Register the subscription and arm the timeout.

        Args:
            bus: Bus to subscribe on
            event: Event name to wait for
            predicate: Payload filter; non-matching events are ignored
            timeout: Seconds before rejecting with WaitTimeoutError (None = no timeout)
            transform: Maps the matching payload to the result; exceptions it
                raises reject the wait instead
            on_release: Called once when the waiter lets go of its resources
        """
        loop = asyncio.get_running_loop()
        self.event = event
        self.timeout = timeout
        self.future: asyncio.Future = loop.create_future()
        self._predicate = predicate
        self._transform = transform
        self._on_release = on_release
        self._released = False

        self._unsubscribe = bus.on(event, self._on_event)
        self._timer: Optional[asyncio.TimerHandle] = None
        if timeout is not None:
            self._timer = loop.call_later(timeout, self._on_timeout)

        # Caller-side cancellation (e.g. asyncio.wait_for) must free resources too
        self.future.add_done_callback(lambda _: self._release())

    @property
    def settled(self) -> bool:
        return self.future.done()

    def __await__(self):
        return self.future.__await__()

    def cancel(self, error: Optional[BaseException] = None) -> bool:
        """
        Settle the wait without a matching event.

        Args:
            error: Exception to reject with; plain cancellation if None

        Returns:
            True if the waiter was still pending
        """
        if self.future.done():
            return False
        if error is None:
            self.future.cancel()
        else:
            self.future.set_exception(error)
            # Mark it retrieved: nobody may ever await a wait abandoned at close
            self.future.exception()
        self._release()
        return True

    def _on_event(self, payload: Any) -> None:
        if self.future.done():
            return
        try:
            if self._predicate is not None and not self._predicate(payload):
                return
            result = self._transform(payload) if self._transform is not None else payload
        except Exception as e:
            self._release()
            self.future.set_exception(e)
            return
        self._release()
        self.future.set_result(result)

    def _on_timeout(self) -> None:
        self._timer = None
        if self.future.done():
            return
        logger.debug(f"Wait for '{event_name(self.event)}' timed out after {self.timeout}s")
        self._release()
        self.future.set_exception(WaitTimeoutError(event_name(self.event), self.timeout))

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        self._unsubscribe()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._on_release is not None:
            self._on_release(self)


class WaiterRegistry:
    """Tracks live waiters for one bus so they can be cancelled together."""

    def __init__(self, bus: EventBus):
        self._bus = bus
        self._waiters: set[Waiter] = set()

    def __len__(self) -> int:
        return len(self._waiters)

    def register(
        self,
        event: str,
        predicate: Optional[Predicate] = None,
        timeout: Optional[float] = None,
        transform: Optional[Transform] = None,
    ) -> Waiter:
        """
        Create a waiter on this registry's bus.

        Returns:
            The live Waiter; await it or its ``future``
        """
        waiter = Waiter(
            self._bus,
            event,
            predicate=predicate,
            timeout=timeout,
            transform=transform,
            on_release=self._waiters.discard,
        )
        if not waiter.settled:
            self._waiters.add(waiter)
        return waiter

    def cancel_all(self, error: Optional[BaseException] = None) -> int:
        """
        Settle every pending waiter.

        Args:
            error: Exception each waiter is rejected with; plain cancellation if None

        Returns:
            Number of waiters that were still pending
        """
        cancelled = 0
        for waiter in list(self._waiters):
            if waiter.cancel(error):
                cancelled += 1
        if cancelled:
            logger.debug(f"Cancelled {cancelled} pending wait(s)")
        return cancelled
