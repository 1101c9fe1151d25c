"""Durable job queue on top of the `jobs` table.

The queue is the only writer of job rows. `claim_next` is the single point
that decides which worker owns a job: on PostgreSQL the candidate row is
selected with ``FOR UPDATE SKIP LOCKED`` so competing claimants skip it
instead of blocking; the transition itself is a compare-and-set UPDATE, which
also keeps SQLite (no row locks) at one winner per row.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from catalog.db.models import JobRecord
from catalog.db.session import SessionLocal, get_session
from catalog.errors import JobNotFound, JobStateError, JobValidationError
from catalog.jobs.models import DEFAULT_MAX_ATTEMPTS, Job, JobPriority, JobStatus, utcnow

log = logging.getLogger(__name__)


def _to_job(row: JobRecord) -> Job:
    return Job(
        id=row.id,
        type=row.type,
        status=JobStatus(row.status),
        priority=row.priority,
        payload=dict(row.payload or {}),
        result=dict(row.result) if row.result is not None else None,
        error=row.error or "",
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        scheduled_at=row.scheduled_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _write(row: JobRecord, job: Job) -> None:
    row.type = job.type
    row.status = JobStatus(job.status).value
    row.priority = int(job.priority)
    row.payload = job.payload
    row.result = job.result
    row.error = job.error or None
    row.attempts = job.attempts
    row.max_attempts = job.max_attempts
    row.scheduled_at = job.scheduled_at
    row.started_at = job.started_at
    row.completed_at = job.completed_at
    row.created_at = job.created_at
    row.updated_at = job.updated_at


class DatabaseQueue:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._factory = session_factory or SessionLocal

    def enqueue(self, job: Job) -> Job:
        if not job.id:
            raise JobValidationError("job id is required")
        if not job.type:
            raise JobValidationError("job type is required")

        now = utcnow()
        if job.status is None:
            job.status = JobStatus.PENDING
        if not job.priority:
            job.priority = JobPriority.NORMAL
        if job.max_attempts <= 0:
            job.max_attempts = DEFAULT_MAX_ATTEMPTS
        if job.attempts < 0 or job.attempts > job.max_attempts:
            raise JobValidationError(
                f"job attempts {job.attempts} outside 0..{job.max_attempts}"
            )
        if job.scheduled_at is None:
            job.scheduled_at = now
        if job.created_at is None:
            job.created_at = now
        job.updated_at = now

        with get_session(self._factory) as session:
            row = JobRecord(id=job.id)
            _write(row, job)
            session.add(row)
            session.commit()
        log.info("job-enqueue id=%s type=%s scheduled_at=%s", job.id, job.type, job.scheduled_at.isoformat())
        return job

    def claim_next(self) -> Optional[Job]:
        """Claim one eligible pending job for the caller, or return None."""
        while True:
            with get_session(self._factory) as session:
                now = utcnow()
                candidate = session.execute(
                    select(JobRecord.id, JobRecord.attempts)
                    .where(
                        JobRecord.status == JobStatus.PENDING.value,
                        JobRecord.scheduled_at <= now,
                        JobRecord.attempts < JobRecord.max_attempts,
                    )
                    .order_by(
                        JobRecord.priority.desc(),
                        JobRecord.scheduled_at.asc(),
                        JobRecord.created_at.asc(),
                        JobRecord.id.asc(),
                    )
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).first()
                if candidate is None:
                    session.rollback()
                    return None

                claimed = session.execute(
                    update(JobRecord)
                    .where(
                        JobRecord.id == candidate.id,
                        JobRecord.status == JobStatus.PENDING.value,
                        JobRecord.attempts == candidate.attempts,
                    )
                    .values(
                        status=JobStatus.RUNNING.value,
                        attempts=JobRecord.attempts + 1,
                        started_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    # Another claimant won this row; every lost race means
                    # progress elsewhere, so retrying terminates.
                    session.rollback()
                    log.debug("job-claim lost race id=%s", candidate.id)
                    continue

                session.commit()
                row = session.get(JobRecord, candidate.id, populate_existing=True)
                return _to_job(row)

    def update_job(self, job: Job) -> Job:
        """Overwrite the stored state of `job` (keyed by id)."""
        job.updated_at = utcnow()
        with get_session(self._factory) as session:
            row = session.get(JobRecord, job.id)
            if row is None:
                raise JobNotFound(job.id)
            _write(row, job)
            session.commit()
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with get_session(self._factory) as session:
            row = session.get(JobRecord, job_id)
            return _to_job(row) if row is not None else None

    def list_jobs(
        self, status: Union[JobStatus, str, None] = None, limit: int = 50
    ) -> Sequence[Job]:
        with get_session(self._factory) as session:
            stmt = select(JobRecord).order_by(JobRecord.created_at.desc(), JobRecord.id.desc())
            if status:
                stmt = stmt.where(JobRecord.status == JobStatus(status).value)
            rows = session.execute(stmt.limit(limit)).scalars().all()
            return [_to_job(r) for r in rows]

    def delete_job(self, job_id: str) -> bool:
        with get_session(self._factory) as session:
            row = session.get(JobRecord, job_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
        log.info("job-delete id=%s", job_id)
        return True

    def cancel_job(self, job_id: str) -> Job:
        """Move a pending job to cancelled. Running or finished jobs are rejected."""
        now = utcnow()
        with get_session(self._factory) as session:
            changed = session.execute(
                update(JobRecord)
                .where(JobRecord.id == job_id, JobRecord.status == JobStatus.PENDING.value)
                .values(status=JobStatus.CANCELLED.value, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if changed.rowcount != 1:
                session.rollback()
                row = session.get(JobRecord, job_id)
                if row is None:
                    raise JobNotFound(job_id)
                raise JobStateError(f"job {job_id} is {row.status}; only pending jobs can be cancelled")
            session.commit()
            row = session.get(JobRecord, job_id, populate_existing=True)
            log.info("job-cancel id=%s", job_id)
            return _to_job(row)


__all__ = ["DatabaseQueue"]
