import asyncio
from typing import Optional

from taor.exceptions import CanceledError


class CancellationToken:
    """
    Shared cancel flag for one loop run.

    The loop polls `canceled` at its suspension points; setting the flag
    never interrupts work that is already running.
    """

    def __init__(self):
        self._canceled = False
        self._event: Optional[asyncio.Event] = None
        self.reason: Optional[str] = None

    @property
    def canceled(self) -> bool:
        return self._canceled

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._canceled:
            return
        self._canceled = True
        self.reason = reason
        if self._event is not None:
            self._event.set()

    def raise_if_canceled(self) -> None:
        if self._canceled:
            raise CanceledError()

    async def wait(self) -> None:
        """Block until cancel() is called."""
        if self._canceled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()
