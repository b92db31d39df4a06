"""DEV mode storage: save crawl outputs to data/dev/ for inspection."""
import json
import logging
from pathlib import Path
from typing import Any, Optional
import orjson

from catalog_crawler.config import DEV_DIR
from catalog_crawler.parse.models import ScrapedRecord

logger = logging.getLogger(__name__)


class DevStorage:
    """Stores scraped records and a summary per job in DEV mode."""

    def __init__(self, dev_dir: Optional[Path] = None):
        self.dev_dir = dev_dir or DEV_DIR
        self.dev_dir.mkdir(parents=True, exist_ok=True)

    def save_job_data(
        self,
        job_id: str,
        records: list[ScrapedRecord],
        summary: dict[str, Any],
    ) -> Path:
        """Save all data for a single job in DEV mode. Returns the job directory."""
        job_dir = self.dev_dir / job_id
        job_dir.mkdir(exist_ok=True)

        summary_path = job_dir / "summary.json"
        with open(summary_path, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2, ensure_ascii=False, default=str)
        logger.info(f"Saved summary to {summary_path}")

        records_path = job_dir / "records.json"
        with open(records_path, "wb") as f:
            f.write(
                orjson.dumps(
                    [record.model_dump(mode="json") for record in records],
                    option=orjson.OPT_INDENT_2,
                )
            )
        logger.info(f"Saved {len(records)} records to {records_path}")
        return job_dir
