"""Metrics exporter for observability."""
import json
import time
from pathlib import Path
from typing import Dict, Optional
import aiofiles

from catalog_crawler.config import METRICS_FILE


class MetricsExporter:
    """Appends one JSONL line per finished crawl."""

    def __init__(self, job_id: str, metrics_file: Optional[Path] = None):
        self.job_id = job_id
        self.metrics_file = metrics_file or METRICS_FILE

    async def export_metrics(
        self,
        source_site: str,
        status: str,
        summary: Dict,
        products_added: int = 0,
        products_updated: int = 0,
    ) -> None:
        """Export metrics to JSONL file."""
        metrics = {
            "ts": time.time(),
            "job_id": self.job_id,
            "source_site": source_site,
            "status": status,
            "pages_ok": summary.get("pages_ok", 0),
            "pages_failed": summary.get("pages_failed", 0),
            "records": summary.get("records", 0),
            "products_added": products_added,
            "products_updated": products_updated,
            "strategies": summary.get("strategies", {}),
            "failed_by_kind": summary.get("failed_by_kind", {}),
            "elapsed_seconds": summary.get("elapsed_seconds", 0.0),
        }

        line = json.dumps(metrics) + "\n"
        self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.metrics_file, "a") as f:
            await f.write(line)
