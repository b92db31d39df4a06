"""Run control: deadline, cancellation and error ceilings for one crawl."""
import asyncio
import time
import logging
from typing import Awaitable, Optional, TypeVar
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CrawlInterrupted(Exception):
    """Raised at a suspension point once the crawl must stop."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass
class CrawlControl:
    """Stop conditions shared by every suspension point of a crawl.

    One instance is threaded through the walker, the rate limiter and the
    runner. Stopping never discards records already gathered: callers catch
    CrawlInterrupted and keep what they have.
    """

    stop_after_seconds: Optional[float] = None
    max_errors: Optional[int] = None
    max_403: Optional[int] = None
    max_429: Optional[int] = None

    # Internal state
    start_time: float = field(default_factory=time.monotonic)
    error_count: int = 0
    consecutive_errors: int = 0
    error_403_count: int = 0
    error_429_count: int = 0
    success_count: int = 0
    cancel_reason: Optional[str] = None
    parent: Optional["CrawlControl"] = field(default=None, repr=False)
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self.stop_after_seconds is None:
            return None
        return max(self.stop_after_seconds - self.elapsed(), 0.0)

    def child(self) -> "CrawlControl":
        """Control for one sub-crawl: same deadline and cancel signal, own error counts."""
        return CrawlControl(
            stop_after_seconds=self.remaining(),
            max_errors=self.max_errors,
            max_403=self.max_403,
            max_429=self.max_429,
            parent=self,
            _cancelled=self._cancelled,
        )

    def cancel(self, reason: str = "cancelled") -> None:
        if self.cancel_reason is None:
            self.cancel_reason = reason
            logger.info(f"Crawl cancelled: {reason}")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def should_stop(self) -> tuple[bool, Optional[str]]:
        """Check if the crawl should stop. Returns (should_stop, reason)."""
        if self.cancelled:
            reason = self.cancel_reason or (self.parent.cancel_reason if self.parent else None)
            return True, reason or "cancelled"

        if self.stop_after_seconds is not None and self.elapsed() >= self.stop_after_seconds:
            return True, f"Reached stop_after_seconds={self.stop_after_seconds}"

        if self.max_errors and self.error_count >= self.max_errors:
            return True, f"Reached max_errors={self.max_errors}"

        if self.max_403 and self.error_403_count >= self.max_403:
            return True, f"Reached max_403={self.max_403}"

        if self.max_429 and self.error_429_count >= self.max_429:
            return True, f"Reached max_429={self.max_429}"

        return False, None

    def check(self) -> None:
        """Raise CrawlInterrupted if any stop condition holds."""
        stop, reason = self.should_stop()
        if stop:
            raise CrawlInterrupted(reason or "stopped")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await awaitable unless the deadline passes or the crawl is cancelled first."""
        try:
            self.check()
        except CrawlInterrupted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, timeout=self.remaining(), return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()
        _, reason = self.should_stop()
        raise CrawlInterrupted(reason or f"Reached stop_after_seconds={self.stop_after_seconds}")

    def record_error(self, status_code: Optional[int] = None) -> None:
        self.error_count += 1
        self.consecutive_errors += 1

        if status_code == 403:
            self.error_403_count += 1
        elif status_code == 429:
            self.error_429_count += 1

    def record_success(self) -> None:
        self.success_count += 1
        self.consecutive_errors = 0

    def get_summary(self) -> dict:
        """Get summary statistics."""
        return {
            "elapsed_seconds": round(self.elapsed(), 2),
            "success_count": self.success_count,
            "error_count": self.error_count,
            "consecutive_errors": self.consecutive_errors,
            "error_403_count": self.error_403_count,
            "error_429_count": self.error_429_count,
            "cancel_reason": self.cancel_reason,
        }
