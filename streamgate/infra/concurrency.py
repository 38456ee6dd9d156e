import asyncio
from typing import Optional


class ExtractionSlot:
    """A held extraction slot; releasing twice is a no-op"""

    def __init__(self, limiter: "ExtractionLimiter"):
        self._limiter = limiter
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._limiter._release()


class ExtractionLimiter:
    """
    Host-wide cap on concurrent extraction processes.
    The process table and descriptors are per host, so the count is kept in
    process rather than in Redis.
    """

    def __init__(self, max_concurrent: int, acquire_timeout: float = 0.0):
        self.max_concurrent = max_concurrent
        self.acquire_timeout = acquire_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    async def try_acquire(self) -> Optional[ExtractionSlot]:
        """Wait up to `acquire_timeout` for a slot; None when the cap holds"""
        if not self._semaphore.locked():
            await self._semaphore.acquire()
        elif self.acquire_timeout <= 0:
            return None
        elif not await self._acquire_within(self.acquire_timeout):
            return None

        self._active += 1
        return ExtractionSlot(self)

    async def _acquire_within(self, timeout: float) -> bool:
        acquire = asyncio.ensure_future(self._semaphore.acquire())
        try:
            await asyncio.wait({acquire}, timeout=timeout)
        except asyncio.CancelledError:
            self._abandon(acquire)
            raise
        if acquire.done():
            return True
        self._abandon(acquire)
        return False

    def _abandon(self, acquire: "asyncio.Future[bool]") -> None:
        # A permit granted while the cancel is in flight goes straight back
        acquire.add_done_callback(self._return_permit)
        acquire.cancel()

    def _return_permit(self, acquire: "asyncio.Future[bool]") -> None:
        if not acquire.cancelled():
            self._semaphore.release()

    def _release(self) -> None:
        self._active -= 1
        self._semaphore.release()
