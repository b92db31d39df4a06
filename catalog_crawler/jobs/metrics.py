"""Metrics tracking for crawl progress."""
import time
import logging
from collections import defaultdict
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class Metrics:
    """Track pages and records for one crawl and estimate time left."""

    def __init__(self, total_pages: Optional[int] = None):
        self.total_pages = total_pages
        self.start_time = time.monotonic()
        self.counters: Dict[str, int] = defaultdict(int)
        self.strategies: Dict[str, int] = defaultdict(int)

    def record_page(self, records: int, strategy: Optional[str]) -> None:
        """Count one successfully fetched page."""
        self.counters["pages"] += 1
        self.counters["pages_ok"] += 1
        self.counters["records"] += records
        self.strategies[strategy or "none"] += 1

    def record_failure(self, kind: str) -> None:
        self.counters["pages"] += 1
        self.counters["pages_failed"] += 1
        self.counters[f"failed_{kind}"] += 1

    def get_rate(self) -> float:
        """Pages per second so far."""
        elapsed = time.monotonic() - self.start_time
        pages = self.counters.get("pages", 0)
        if elapsed > 0:
            return pages / elapsed
        return 0.0

    def get_eta(self) -> float:
        rate = self.get_rate()
        if rate <= 0 or not self.total_pages:
            return 0.0
        remaining = max(self.total_pages - self.counters.get("pages", 0), 0)
        return remaining / rate

    def format_eta(self) -> str:
        """Format ETA as human-readable string."""
        eta_seconds = self.get_eta()
        if eta_seconds < 60:
            return f"{eta_seconds:.0f}s"
        elif eta_seconds < 3600:
            return f"{eta_seconds / 60:.1f}m"
        else:
            return f"{eta_seconds / 3600:.1f}h"

    def report(self) -> None:
        """Log current metrics."""
        pages = self.counters.get("pages", 0)
        total = f"/{self.total_pages}" if self.total_pages else ""
        logger.info(
            f"Progress: page {pages}{total} | "
            f"Records: {self.counters.get('records', 0)} | "
            f"Rate: {self.get_rate():.2f} pages/s | "
            f"ETA: {self.format_eta()} | "
            f"OK: {self.counters.get('pages_ok', 0)} | "
            f"Failed: {self.counters.get('pages_failed', 0)}"
        )

    def get_summary(self) -> Dict:
        """Get summary statistics."""
        return {
            "total_pages": self.total_pages,
            "pages": self.counters.get("pages", 0),
            "pages_ok": self.counters.get("pages_ok", 0),
            "pages_failed": self.counters.get("pages_failed", 0),
            "records": self.counters.get("records", 0),
            "failed_by_kind": {
                key.removeprefix("failed_"): value
                for key, value in self.counters.items()
                if key.startswith("failed_")
            },
            "strategies": dict(self.strategies),
            "rate": round(self.get_rate(), 3),
            "elapsed_seconds": round(time.monotonic() - self.start_time, 3),
        }
