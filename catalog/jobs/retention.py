"""Prune finished job rows based on a configurable retention window.

Completed, failed and cancelled jobs whose last update is older than the
window are deleted. Pending and running jobs are never touched. The scheduler
runs this periodically; `catalog prune` runs it once.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import sessionmaker

from catalog.db.models import TERMINAL_STATUSES, JobRecord
from catalog.db.session import get_session
from catalog.jobs.models import utcnow

DEFAULT_RETENTION_DAYS = 7
DEFAULT_SAMPLE_SIZE = 10

log = logging.getLogger(__name__)


@dataclass
class PruneSummary:
    cutoff_utc: str
    matched: int
    deleted: int
    dry_run: bool
    sample: list[dict]

    def to_dict(self) -> dict:
        return asdict(self)


def prune_jobs(
    days: int = DEFAULT_RETENTION_DAYS,
    *,
    dry_run: bool = False,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    session_factory: Optional[sessionmaker] = None,
) -> PruneSummary:
    if days <= 0:
        raise ValueError("Retention 'days' must be positive")

    cutoff = utcnow() - timedelta(days=days)

    with get_session(session_factory) as session:
        query = session.query(JobRecord).filter(
            JobRecord.status.in_(TERMINAL_STATUSES),
            JobRecord.updated_at < cutoff,
        )

        total = query.count()

        sample_rows = (
            query.order_by(JobRecord.updated_at.asc(), JobRecord.id.asc())
            .limit(sample_size)
            .all()
        ) if total else []

        sample_payload: list[dict] = [
            {
                "id": row.id,
                "type": row.type,
                "status": row.status,
                "attempts": row.attempts,
                "updated_at": row.updated_at.isoformat() if row.updated_at else None,
            }
            for row in sample_rows
        ]

        deleted = 0
        if total and not dry_run:
            deleted = query.delete(synchronize_session=False)
            session.commit()

    log.info("job-prune cutoff=%s matched=%d deleted=%d dry_run=%s", cutoff.isoformat(), total, deleted, dry_run)
    return PruneSummary(
        cutoff_utc=cutoff.isoformat(),
        matched=total,
        deleted=deleted,
        dry_run=dry_run,
        sample=sample_payload,
    )


__all__ = ["PruneSummary", "prune_jobs", "DEFAULT_RETENTION_DAYS"]
