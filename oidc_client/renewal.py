"""
Single-slot renewal timer. Arming always cancels whatever was armed before, so at most one
renewal is ever pending. The clock primitives are injectable (Timeouts) for hosts with their own
event loop integration and for tests.
"""
import asyncio
import logging
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class Timeouts(Protocol):
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class AsyncioTimeouts:
    """Timeouts on the running asyncio loop."""

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay_seconds, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class RenewalTimer:
    def __init__(self, timeouts: Timeouts | None = None):
        self._timeouts = timeouts or AsyncioTimeouts()
        self._handle: Any = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def start(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        self.stop()

        def fire() -> None:
            # The slot is free again once the timer has fired
            self._handle = None
            callback()

        self._handle = self._timeouts.call_later(delay_seconds, fire)

    def stop(self) -> None:
        """Cancel the armed timer, if any. Idempotent."""
        handle, self._handle = self._handle, None
        if handle is not None:
            self._timeouts.cancel(handle)
