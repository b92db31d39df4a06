#!/usr/bin/env python3
"""Utility script to clean the local SQLite product store."""
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_crawler.config import STATE_DB
from catalog_crawler.parse.models import utcnow
from catalog_crawler.store.state import StateDB


async def show_stats(db: StateDB) -> None:
    """Show statistics about the product store."""
    stats = await db.get_stats()
    jobs = await db.list_jobs(limit=5)

    print(f"State database: {STATE_DB}")
    print(f"Products: {stats['total']} ({stats['active']} active)")
    print(f"In stock: {stats['in_stock']}, out of stock: {stats['out_of_stock']}")
    print(f"By site: {stats['by_site']}")
    print(f"Last scraped: {stats['last_scraped'] or '(never)'}")
    print("Recent jobs:")
    for job in jobs:
        print(f"  {job.id} {job.status:<9} {job.source_site} scraped={job.products_scraped}")


async def purge_jobs(db: StateDB, days: int) -> None:
    """Delete jobs that started more than `days` days ago."""
    cutoff = utcnow() - timedelta(days=days)
    deleted = await db.delete_jobs_before(cutoff.isoformat())
    print(f"Deleted {deleted} jobs started before {cutoff:%Y-%m-%d %H:%M}")


async def clear_products(db: StateDB, source_site: str | None) -> None:
    deleted = await db.clear_products(source_site)
    scope = f"for {source_site}" if source_site else "in total"
    print(f"Deleted {deleted} products {scope}")


async def deactivate_site(db: StateDB, source_site: str) -> None:
    """Soft-delete every product of a site."""
    keys = await db.product_keys(source_site)
    count = await db.mark_inactive(keys)
    print(f"Marked {count} of {len(keys)} products inactive for {source_site}")


async def run(argv: list[str]) -> int:
    db = StateDB()
    await db.initialize()
    command = argv[1]

    if command == "stats":
        await show_stats(db)
    elif command == "purge-jobs":
        days = int(argv[2]) if len(argv) > 2 else 30
        await purge_jobs(db, days)
    elif command == "clear-products":
        source_site = argv[2] if len(argv) > 2 else None
        target = source_site or "ALL sites"
        confirm = input(f"Are you sure you want to delete products for {target}? (yes/no): ")
        if confirm.lower() != "yes":
            print("Cancelled")
            return 0
        await clear_products(db, source_site)
    elif command == "deactivate":
        if len(argv) < 3:
            print("Error: Please provide a site name")
            return 1
        await deactivate_site(db, argv[2])
    else:
        print(f"Unknown command: {command}")
        return 1
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python scripts/clean_state.py stats                   # Show statistics")
        print("  python scripts/clean_state.py purge-jobs [days]       # Delete jobs older than days (default 30)")
        print("  python scripts/clean_state.py clear-products [site]   # Delete products (one site or all)")
        print("  python scripts/clean_state.py deactivate <site>       # Mark a site's products inactive")
        sys.exit(1)

    sys.exit(asyncio.run(run(sys.argv)))
