"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
STATE_DB = DATA_DIR / "catalog.db"
DEV_DIR = DATA_DIR / "dev"
METRICS_FILE = DATA_DIR / "metrics.jsonl"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)


class Config:
    """Application configuration."""

    # Fetching
    FETCH_TIMEOUT: float = float(os.getenv("FETCH_TIMEOUT", "8"))
    PAGE_DELAY: float = float(os.getenv("PAGE_DELAY", "1.0"))
    SITE_DELAY: float = float(os.getenv("SITE_DELAY", "2.0"))
    STOP_AFTER_SECONDS: float = float(os.getenv("STOP_AFTER_SECONDS", "290"))
    MAX_PAGE_RANGE: int = int(os.getenv("MAX_PAGE_RANGE", "50"))

    # Extraction
    IMAGE_WIDTH: int = int(os.getenv("IMAGE_WIDTH", "800"))
    JPY_TO_USD_RATE: float = float(os.getenv("JPY_TO_USD_RATE", str(1 / 150)))
    TARGET_CURRENCY: str = os.getenv("TARGET_CURRENCY", "USD")
    DEFAULT_BRAND: str = os.getenv("DEFAULT_BRAND", "Unknown")
    DEFAULT_CATEGORY: str = os.getenv("DEFAULT_CATEGORY", "General")

    # Storage
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "sqlite")
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")
    SUPABASE_PRODUCTS_TABLE: str = os.getenv("SUPABASE_PRODUCTS_TABLE", "scraped_products")
    SUPABASE_JOBS_TABLE: str = os.getenv("SUPABASE_JOBS_TABLE", "scraping_jobs")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")
    CRON_SECRET: str | None = os.getenv("CRON_SECRET")

    @classmethod
    def validate(cls, require_supabase: bool = False) -> None:
        """Validate required configuration."""
        errors = []
        if require_supabase:
            if not cls.SUPABASE_URL:
                errors.append("SUPABASE_URL is required")
            if not cls.SUPABASE_SERVICE_ROLE:
                errors.append("SUPABASE_SERVICE_ROLE is required")
        if cls.STORE_BACKEND not in ("sqlite", "supabase", "memory"):
            errors.append(f"STORE_BACKEND must be sqlite, supabase or memory (got {cls.STORE_BACKEND!r})")
        if cls.FETCH_TIMEOUT <= 0:
            errors.append("FETCH_TIMEOUT must be positive")
        if cls.PAGE_DELAY < 0 or cls.SITE_DELAY < 0:
            errors.append("PAGE_DELAY and SITE_DELAY must not be negative")
        if cls.JPY_TO_USD_RATE <= 0:
            errors.append("JPY_TO_USD_RATE must be positive")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
