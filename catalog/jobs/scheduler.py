"""Worker pool that drains the job queue.

Each worker thread polls `DatabaseQueue.claim_next` on a fixed interval,
runs the handler registered for the claimed job's type under a per-job
deadline, then records the outcome:

- success: completed, `completed_at` set, handler result kept
- failure with attempts left: back to pending, `scheduled_at` pushed out by
  `backoff_delay(attempts)`, `started_at` cleared
- failure on the last attempt: failed, `completed_at` set

A retention thread prunes old finished jobs; its failures are logged only.
All scheduling state lives in the queue, so a restarted scheduler simply
resumes claiming.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Optional

from catalog.context import RunContext
from catalog.errors import DeadlineExceeded
from catalog.jobs.handlers import Handler
from catalog.jobs.models import Job, JobStatus, utcnow
from catalog.jobs.queue import DatabaseQueue

log = logging.getLogger(__name__)

DEFAULT_WORKERS = 3
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_JOB_TIMEOUT = 30 * 60.0
DEFAULT_RETENTION_INTERVAL = 60 * 60.0


def backoff_delay(attempts: int) -> timedelta:
    """Delay before retry number `attempts + 1`: attempts² minutes."""
    return timedelta(minutes=max(attempts, 0) ** 2)


class JobScheduler:
    def __init__(
        self,
        queue: DatabaseQueue,
        *,
        workers: int = DEFAULT_WORKERS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        job_timeout: float = DEFAULT_JOB_TIMEOUT,
        retention: Optional[Callable[[], object]] = None,
        retention_interval: float = DEFAULT_RETENTION_INTERVAL,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._queue = queue
        self._workers = workers
        self._poll_interval = poll_interval
        self._job_timeout = job_timeout
        self._retention = retention
        self._retention_interval = retention_interval

        self._handlers: dict[str, Handler] = {}
        self._lock = threading.RLock()
        self._threads: list[threading.Thread] = []
        self._scope: Optional[RunContext] = None
        self._poll_ctx: Optional[RunContext] = None

    # --- public surface -----------------------------------------------------

    def register_handler(self, handler: Handler) -> None:
        job_type = str(getattr(handler.job_type, "value", handler.job_type))
        with self._lock:
            self._handlers[job_type] = handler
        log.info("scheduler-register job_type=%s handler=%s", job_type, type(handler).__name__)

    def add_job(self, job: Job) -> Job:
        return self._queue.enqueue(job)

    def remove_job(self, job_id: str) -> bool:
        return self._queue.delete_job(job_id)

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self, ctx: Optional[RunContext] = None) -> None:
        """Launch the worker threads and the retention thread.

        Cancelling `ctx` stops polling and also signals in-flight handlers;
        `stop()` only stops polling.
        """
        with self._lock:
            if self._threads:
                raise RuntimeError("scheduler already started")
            self._scope = (ctx or RunContext.background()).with_cancel()
            self._poll_ctx = self._scope.with_cancel()

            for worker_id in range(self._workers):
                self._threads.append(
                    threading.Thread(
                        target=self._worker,
                        args=(worker_id,),
                        name=f"catalog-worker-{worker_id}",
                        daemon=True,
                    )
                )
            if self._retention is not None:
                self._threads.append(
                    threading.Thread(target=self._retention_loop, name="catalog-retention", daemon=True)
                )
            for t in self._threads:
                t.start()
        log.info("scheduler-start workers=%d poll_interval=%.1fs job_timeout=%.0fs",
                 self._workers, self._poll_interval, self._job_timeout)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop polling and wait for the threads to exit.

        In-flight handlers keep running until they finish or hit their own
        deadline. Returns False if `timeout` elapsed with threads still busy.
        """
        with self._lock:
            if self._poll_ctx is None:
                return True
            log.info("scheduler-stop requested")
            self._poll_ctx.cancel()
            threads = list(self._threads)

        deadline = None if timeout is None else time.monotonic() + timeout
        for t in threads:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            t.join(remaining)

        alive = [t.name for t in threads if t.is_alive()]
        if alive:
            log.warning("scheduler-stop timed out; still running: %s", ", ".join(alive))
            return False

        with self._lock:
            if self._scope is not None:
                self._scope.release()
            self._scope = None
            self._poll_ctx = None
            self._threads = []
        log.info("scheduler-stop complete")
        return True

    # --- one tick -------------------------------------------------------------

    def process_next_job(self, worker_id: int = 0) -> bool:
        """Claim and run at most one job. Returns True if a job was claimed."""
        job = self._queue.claim_next()
        if job is None:
            return False

        log.info("worker=%d job-start id=%s type=%s attempt=%d/%d",
                 worker_id, job.id, job.type, job.attempts, job.max_attempts)

        with self._lock:
            handler = self._handlers.get(job.type)

        scope = self._scope or RunContext.background()
        started = time.monotonic()
        with scope.with_timeout(self._job_timeout) as job_ctx:
            error = self._execute(handler, job_ctx, job)

        if error is None:
            job.status = JobStatus.COMPLETED
            job.completed_at = utcnow()
            job.error = ""
            self._queue.update_job(job)
            log.info("worker=%d job-done id=%s took=%.2fs", worker_id, job.id, time.monotonic() - started)
        else:
            self._mark_failed(job, error)
        return True

    def _execute(self, handler: Optional[Handler], job_ctx: RunContext, job: Job) -> Optional[str]:
        if handler is None:
            return f"no handler found for job type {job.type}"
        try:
            handler.handle(job_ctx, job)
        except DeadlineExceeded:
            log.warning("job-timeout id=%s type=%s timeout=%gs", job.id, job.type, self._job_timeout)
            return f"job exceeded timeout of {self._job_timeout:g}s"
        except Exception as exc:
            log.warning("job-error id=%s type=%s err=%s", job.id, job.type, exc)
            return str(exc) or type(exc).__name__
        return None

    def _mark_failed(self, job: Job, error: str) -> None:
        job.error = error
        now = utcnow()
        if job.attempts < job.max_attempts:
            delay = backoff_delay(job.attempts)
            job.status = JobStatus.PENDING
            job.scheduled_at = now + delay
            job.started_at = None
            log.info("job-retry id=%s in=%s attempt=%d/%d", job.id, delay, job.attempts, job.max_attempts)
        else:
            job.status = JobStatus.FAILED
            job.completed_at = now
            log.error("job-failed id=%s attempts=%d err=%s", job.id, job.attempts, error)
        self._queue.update_job(job)

    # --- threads ------------------------------------------------------------------

    def _worker(self, worker_id: int) -> None:
        poll = self._poll_ctx
        log.debug("worker=%d started", worker_id)
        while not poll.done():
            try:
                claimed = self.process_next_job(worker_id)
            except Exception:
                log.exception("worker=%d tick failed", worker_id)
                claimed = False
            if not claimed:
                poll.wait(self._poll_interval)
        log.debug("worker=%d stopped", worker_id)

    def _retention_loop(self) -> None:
        poll = self._poll_ctx
        while not poll.wait(self._retention_interval):
            self.run_retention()

    def run_retention(self) -> None:
        if self._retention is None:
            return
        try:
            self._retention()
        except Exception:
            log.exception("retention run failed")


__all__ = ["JobScheduler", "backoff_delay"]
