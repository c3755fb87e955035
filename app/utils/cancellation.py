# utils/cancellation.py
import asyncio
from typing import Optional


class OperationCancelled(Exception):
    """Raised at a suspension boundary once the owning generation was cancelled."""


class CancellationToken:
    """
    Cooperative abort signal for one pipeline invocation.

    Work in flight is never interrupted; callers check the token after each
    await and drop whatever that await produced.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Generation was cancelled.") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "Generation was cancelled.")

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds, waking early if the token is cancelled."""
        if delay > 0 and not self._event.is_set():
            try:
                await asyncio.wait_for(self._event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(0)
        self.raise_if_cancelled()


async def checkpoint_sleep(delay: float, token: Optional[CancellationToken] = None) -> None:
    """Backoff delay that honours an optional cancellation token."""
    if token is None:
        await asyncio.sleep(max(delay, 0))
        return
    await token.sleep(delay)
