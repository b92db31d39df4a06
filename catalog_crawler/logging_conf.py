"""Logging setup."""
import logging
import sys

from catalog_crawler.config import config

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once for CLI and API processes."""
    root = logging.getLogger()
    root.setLevel((level or config.LOG_LEVEL).upper())

    if not any(getattr(h, "_catalog_crawler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._catalog_crawler = True
        root.addHandler(handler)

    # Request lines from httpx are noise at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
