"""Build the configured product store."""
import logging
from pathlib import Path
from typing import Optional

from catalog_crawler.config import STATE_DB, config
from catalog_crawler.store.base import ProductStore

logger = logging.getLogger(__name__)


def create_store(backend: Optional[str] = None, db_path: Optional[Path] = None) -> ProductStore:
    """Instantiate a store for backend (defaults to STORE_BACKEND)."""
    backend = (backend or config.STORE_BACKEND).lower()
    if backend == "memory":
        from catalog_crawler.store.memory import MemoryStore

        store = MemoryStore()
    elif backend == "sqlite":
        from catalog_crawler.store.state import StateDB

        store = StateDB(db_path or STATE_DB)
    elif backend == "supabase":
        config.validate(require_supabase=True)
        from catalog_crawler.store.supabase_writer import SupabaseWriter

        store = SupabaseWriter()
    else:
        raise ValueError(f"Unknown store backend: {backend}")
    logger.debug(f"Using {backend} store")
    return store
