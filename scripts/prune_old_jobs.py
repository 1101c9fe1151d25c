"""Prune finished job rows based on a configurable retention window.

Deletes completed, failed and cancelled jobs last updated more than
CATALOG_RETENTION_DAYS (7 days) ago. Designed to be run from a cronjob when
the worker's own retention thread is disabled.
"""

from __future__ import annotations

import argparse
import os
from typing import Optional

from catalog.jobs.retention import DEFAULT_RETENTION_DAYS, DEFAULT_SAMPLE_SIZE, prune_jobs


def _parse_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def main() -> None:
    parser = argparse.ArgumentParser(description="Prune finished job rows from the database")
    parser.add_argument(
        "--days",
        type=int,
        default=int(os.getenv("CATALOG_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)),
        help="Retention window in days (default: env CATALOG_RETENTION_DAYS or 7)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=_parse_bool(os.getenv("CATALOG_RETENTION_DRY_RUN")),
        help="Report what would be deleted without modifying the database",
    )
    parser.add_argument(
        "--sample-size",
        type=int,
        default=int(os.getenv("CATALOG_RETENTION_SAMPLE", DEFAULT_SAMPLE_SIZE)),
        help="How many representative rows to include in the summary output",
    )

    args = parser.parse_args()

    summary = prune_jobs(args.days, dry_run=args.dry_run, sample_size=args.sample_size)

    print(summary.to_dict())


if __name__ == "__main__":
    main()
