"""Command line entry point (`catalog`).

    catalog init-db
    catalog worker [--workers N] [--once]
    catalog enqueue CONFIG_ID [--option k=v ...] [--single-page] [--max-pages N]
    catalog enqueue --all
    catalog scrape URL --type SHOPIFY [--reseller NAME] [--all-pages] [--save]
    catalog prune [--days N] [--dry-run]
    catalog plugins
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from typing import Optional, Sequence

from catalog import __version__
from catalog.config import Settings, load_resellers
from catalog.context import RunContext
from catalog.db.crud import ProductRepository
from catalog.db.session import current_engine_url, init_db, test_connection
from catalog.errors import CatalogError
from catalog.jobs.handlers import ScrapeAllSitesHandler, ScrapeJobHandler
from catalog.jobs.models import JobPriority
from catalog.jobs.queue import DatabaseQueue
from catalog.jobs.retention import DEFAULT_SAMPLE_SIZE, prune_jobs
from catalog.jobs.scheduler import JobScheduler
from catalog.jobs.service import JobService
from catalog.scraper.plugins import build_default_manager
from catalog.scraper.types import ScrapeRequest

LOGGER = logging.getLogger("catalog.cli")


def _parse_options(pairs: Optional[Sequence[str]]) -> dict[str, str]:
    options: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"option must look like key=value, got {pair!r}")
        options[key.strip()] = value.strip()
    return options


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _service(settings: Settings, queue: DatabaseQueue) -> JobService:
    return JobService(queue, load_resellers(settings.resellers_file))


# -------------------------
# Subcommands
# -------------------------
def cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    LOGGER.info("Initializing database schema url=%s", current_engine_url())
    init_db()
    return 0


def cmd_worker(args: argparse.Namespace, settings: Settings) -> int:
    if not test_connection():
        LOGGER.error("database unreachable url=%s", current_engine_url())
        return 1

    queue = DatabaseQueue()
    service = _service(settings, queue)
    manager = build_default_manager(settings)
    scheduler = JobScheduler(
        queue,
        workers=args.workers or settings.workers,
        poll_interval=settings.poll_interval,
        job_timeout=settings.job_timeout,
        retention=lambda: prune_jobs(settings.retention_days),
        retention_interval=settings.retention_interval,
    )
    scheduler.register_handler(ScrapeJobHandler(manager, ProductRepository()))
    scheduler.register_handler(ScrapeAllSitesHandler(service))

    if args.once:
        processed = 0
        while scheduler.process_next_job():
            processed += 1
        LOGGER.info("worker-once processed=%d", processed)
        return 0

    root = RunContext.background().with_cancel()
    stop_requested = threading.Event()

    def _graceful(signum, _frame):
        LOGGER.info("signal=%s received; stopping", signal.Signals(signum).name)
        stop_requested.set()

    signal.signal(signal.SIGINT, _graceful)
    signal.signal(signal.SIGTERM, _graceful)

    scheduler.start(root)
    LOGGER.info("worker up plugins=%s", ",".join(p.name for p in manager.registry.list_plugins()))
    while not stop_requested.wait(1.0):
        pass

    if not scheduler.stop(timeout=args.grace):
        LOGGER.warning("in-flight jobs still running after %.0fs; cancelling", args.grace)
        root.cancel()
        scheduler.stop(timeout=10.0)
    root.release()
    return 0


def cmd_enqueue(args: argparse.Namespace, settings: Settings) -> int:
    service = _service(settings, DatabaseQueue())
    if args.all:
        job = service.create_scrape_all_job(priority=args.priority)
    elif args.config_id:
        job = service.create_scrape_job(
            args.config_id,
            _parse_options(args.option),
            all_pages=not args.single_page,
            max_pages=args.max_pages,
            priority=args.priority,
        )
    else:
        LOGGER.error("enqueue needs a CONFIG_ID or --all")
        return 2
    _print(job.to_dict())
    return 0


def cmd_scrape(args: argparse.Namespace, settings: Settings) -> int:
    """Run one scrape in-process, without the queue."""
    manager = build_default_manager(settings)
    req = ScrapeRequest(
        url=args.url,
        source_type=args.type.upper(),
        reseller=args.reseller or "",
        reseller_id=args.reseller_id or "",
        category=args.category or "",
        options=_parse_options(args.option),
    )
    if args.all_pages:
        result = manager.scrape_multiple_pages(req, args.max_pages)
    else:
        result = manager.scrape_by_type(req)

    summary = {
        "stats": result.stats.model_dump(),
        "errors": result.errors,
        "products": [
            {"name": p.name, "brand": p.brand, "source_id": p.source_id, "variants": len(p.variants)}
            for p in result.products
        ],
    }
    if args.save:
        if not req.reseller_id:
            LOGGER.error("--save needs --reseller-id")
            return 2
        repo = ProductRepository()
        summary["saved"] = [repo.save(p, req.reseller_id).product_id for p in result.products]
    _print(summary)
    return 0


def cmd_prune(args: argparse.Namespace, settings: Settings) -> int:
    summary = prune_jobs(
        args.days or settings.retention_days,
        dry_run=args.dry_run,
        sample_size=args.sample_size,
    )
    _print(summary.to_dict())
    return 0


def cmd_plugins(args: argparse.Namespace, settings: Settings) -> int:
    manager = build_default_manager(settings)
    _print({name: info.model_dump() for name, info in manager.list_available_plugins().items()})
    return 0


# -------------------------
# Parser
# -------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="catalog", description="Catalog Radar job queue and scrapers")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create database tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("worker", help="Run the job scheduler")
    p.add_argument("--workers", type=int, default=None, help="Worker threads (default: env CATALOG_WORKERS or 3)")
    p.add_argument("--once", action="store_true", help="Drain eligible jobs synchronously and exit")
    p.add_argument("--grace", type=float, default=30.0,
                   help="Seconds to wait for in-flight jobs on shutdown before cancelling them")
    p.set_defaults(func=cmd_worker)

    p = sub.add_parser("enqueue", help="Queue a scrape job for a reseller config")
    p.add_argument("config_id", nargs="?")
    p.add_argument("--all", action="store_true", help="Queue a scrape-all-sites job instead")
    p.add_argument("--option", action="append", metavar="KEY=VALUE", help="Scraper option (repeatable)")
    p.add_argument("--single-page", action="store_true", help="Scrape only the first page")
    p.add_argument("--max-pages", type=int, default=10)
    p.add_argument("--priority", type=int, default=int(JobPriority.NORMAL), choices=[int(x) for x in JobPriority])
    p.set_defaults(func=cmd_enqueue)

    p = sub.add_parser("scrape", help="Scrape a URL directly and print a summary")
    p.add_argument("url")
    p.add_argument("--type", required=True, help="Source type, e.g. SHOPIFY or STACKS")
    p.add_argument("--reseller", default="")
    p.add_argument("--reseller-id", default="")
    p.add_argument("--category", default="")
    p.add_argument("--option", action="append", metavar="KEY=VALUE")
    p.add_argument("--all-pages", action="store_true")
    p.add_argument("--max-pages", type=int, default=10)
    p.add_argument("--save", action="store_true", help="Persist products to the database")
    p.set_defaults(func=cmd_scrape)

    p = sub.add_parser("prune", help="Delete finished jobs older than the retention window")
    p.add_argument("--days", type=int, default=None, help="Retention window in days (default: env CATALOG_RETENTION_DAYS or 7)")
    p.add_argument("--dry-run", action="store_true", help="Report what would be deleted without modifying the database")
    p.add_argument("--sample-size", type=int, default=DEFAULT_SAMPLE_SIZE)
    p.set_defaults(func=cmd_prune)

    p = sub.add_parser("plugins", help="List registered scraper plugins")
    p.set_defaults(func=cmd_plugins)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("CATALOG_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = Settings.from_env()
        return args.func(args, settings)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    except CatalogError as exc:
        LOGGER.error("%s: %s", args.command, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
