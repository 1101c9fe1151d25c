from .models import (
    Job,
    JobPriority,
    JobStatus,
    JobType,
    ScrapeJobPayload,
    ScrapeJobResult,
    new_job_id,
    utcnow,
)
from .queue import DatabaseQueue
from .scheduler import JobScheduler, backoff_delay

__all__ = [
    "Job",
    "JobPriority",
    "JobStatus",
    "JobType",
    "ScrapeJobPayload",
    "ScrapeJobResult",
    "new_job_id",
    "utcnow",
    "DatabaseQueue",
    "JobScheduler",
    "backoff_delay",
]
