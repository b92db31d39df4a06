"""Main entry point with CLI."""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from catalog_crawler.config import config, Config
from catalog_crawler.errors import ConfigError, CrawlFailed
from catalog_crawler.logging_conf import setup_logging
from catalog_crawler.jobs.run_control import CrawlControl
from catalog_crawler.jobs.runner import CrawlRequest, CrawlRunner
from catalog_crawler.jobs.sites import SiteRegistry
from catalog_crawler.parse.presets import list_presets
from catalog_crawler.store.factory import create_store

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Catalog Crawler")

    # Single crawl
    parser.add_argument("--url", default=None, help="Catalog URL to crawl")
    parser.add_argument(
        "--config",
        default=None,
        help=f"Preset name ({', '.join(list_presets())}; default: generic)",
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=None,
        help="JSON file with a custom extraction config",
    )
    parser.add_argument("--start", type=int, default=None, help="First page of a page range")
    parser.add_argument("--end", type=int, default=None, help="Last page of a page range")
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Override the preset's page cap when following next links",
    )
    parser.add_argument("--site-name", default=None, help="Site name stored with the products")

    # Multi-site runs
    parser.add_argument(
        "--sites",
        nargs="+",
        default=None,
        help="Registry site keys to crawl (e.g. amnibus animeStore)",
    )
    parser.add_argument(
        "--pages-per-site",
        type=int,
        default=None,
        help="Crawl pages 1..N of each site instead of following next links",
    )
    parser.add_argument(
        "--concurrent",
        action="store_true",
        help="Crawl sites as concurrent tasks instead of one after another",
    )
    parser.add_argument(
        "--scheduled",
        action="store_true",
        help="Crawl the registry sites whose interval has elapsed",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --scheduled, crawl every enabled site",
    )

    # Mode flags
    parser.add_argument(
        "--store",
        choices=["sqlite", "supabase", "memory"],
        default=None,
        help=f"Storage backend (default: {config.STORE_BACKEND})",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode (verbose logs, records saved under data/dev/)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run: keep products in memory only",
    )
    parser.add_argument(
        "--export-metrics",
        action="store_true",
        help="Append a metrics line per crawl to data/metrics.jsonl",
    )

    # Run control flags
    parser.add_argument(
        "--stop-after-seconds",
        type=float,
        default=None,
        help=f"Stop after S seconds, keeping what was scraped (default: {config.STOP_AFTER_SECONDS})",
    )
    parser.add_argument("--max-errors", type=int, default=None, help="Stop if page errors reach N")
    parser.add_argument("--max-403", type=int, default=None, help="Stop if 403 errors reach N")
    parser.add_argument("--max-429", type=int, default=None, help="Stop if 429 errors reach N")
    parser.add_argument("--page-delay", type=float, default=None, help=f"Seconds between pages (default: {config.PAGE_DELAY})")

    return parser.parse_args(argv)


def load_custom_config(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e


async def run(args: argparse.Namespace) -> int:
    backend = "memory" if args.dry_run else args.store
    store = create_store(backend)
    await store.initialize()

    control = CrawlControl(
        stop_after_seconds=args.stop_after_seconds if args.stop_after_seconds is not None else config.STOP_AFTER_SECONDS,
        max_errors=args.max_errors,
        max_403=args.max_403,
        max_429=args.max_429,
    )

    async with CrawlRunner(
        store,
        page_delay=args.page_delay,
        dev_mode=args.dev,
        export_metrics=args.export_metrics,
    ) as runner:
        try:
            if args.scheduled or args.sites:
                registry = SiteRegistry()
                if args.scheduled:
                    outcomes = await runner.run_scheduled(
                        registry, force=args.force, pages_per_site=args.pages_per_site,
                        concurrent=args.concurrent, control=control,
                    )
                else:
                    outcomes = await runner.run_sites(
                        registry.select(args.sites), args.pages_per_site,
                        concurrent=args.concurrent, triggered_by="manual", control=control,
                    )
                for outcome in outcomes:
                    status = "OK" if outcome.success else f"FAILED ({outcome.error})"
                    logger.info(
                        f"{outcome.name}: {status} | scraped {outcome.products_scraped}, "
                        f"added {outcome.products_added}, updated {outcome.products_updated}"
                    )
                return 0 if all(o.success for o in outcomes) else 2

            custom_config = load_custom_config(args.config_file) if args.config_file else None
            result = await runner.run(
                CrawlRequest(
                    target_url=args.url,
                    config_name=args.config,
                    custom_config=custom_config,
                    start_page=args.start,
                    end_page=args.end,
                    max_pages=args.max_pages,
                    site_name=args.site_name,
                    triggered_by="manual",
                ),
                control,
            )
            return 0 if result.status == "completed" else 2
        except KeyError as e:
            logger.error(f"Unknown site: {e}")
            return 1
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            return 1
        except CrawlFailed as e:
            logger.error(f"Crawl failed after {e.duration_seconds or 0:.2f}s ({e.kind}): {e.message}")
            return 1
        finally:
            await store.close()


def main(argv=None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging("DEBUG" if args.dev else None)

    if not (args.url or args.sites or args.scheduled):
        logger.error("Must specify --url, --sites or --scheduled")
        sys.exit(1)

    backend = "memory" if args.dry_run else (args.store or config.STORE_BACKEND)
    try:
        Config.validate(require_supabase=backend == "supabase")
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Catalog Crawler Starting")
    logger.info(f"Mode: {'DEV' if args.dev else 'PROD'}")
    logger.info(f"Store: {backend}")
    if args.url:
        config_label = "custom" if args.config_file else (args.config or "generic")
        logger.info(f"URL: {args.url} (config: {config_label})")
    if args.start is not None:
        logger.info(f"Pages: {args.start} - {args.end}")
    logger.info("=" * 60)

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
