from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, Field

from catalog.scraper.types import ScrapeRequest


def utcnow() -> datetime:
    """Naive UTC timestamp; every column in the store is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(str, Enum):
    SCRAPE_PRODUCTS = "scrape_products"
    SCRAPE_ALL_SITES = "scrape_all_sites"


class JobPriority(IntEnum):
    LOW = 1
    NORMAL = 2
    HIGH = 3
    URGENT = 4


DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class Job:
    """In-memory view of a job row.

    `type` is kept as a plain string so rows written by newer code (unknown
    types) still load and fail through the normal no-handler path.
    """

    id: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    status: Optional[JobStatus] = None
    priority: int = JobPriority.NORMAL
    result: Optional[dict[str, Any]] = None
    error: str = ""
    attempts: int = 0
    max_attempts: int = 0
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def new(cls, job_type: str, payload: Optional[dict[str, Any]] = None, **kwargs: Any) -> "Job":
        return cls(id=new_job_id(), type=str(getattr(job_type, "value", job_type)), payload=payload or {}, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        def iso(dt: Optional[datetime]) -> Optional[str]:
            return dt.isoformat() if dt else None

        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value if self.status else None,
            "priority": int(self.priority),
            "payload": self.payload,
            "result": self.result,
            "error": self.error or None,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "scheduled_at": iso(self.scheduled_at),
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


# --- Scrape job documents ----------------------------------------------------

class ScrapeJobPayload(BaseModel):
    config_id: str = ""
    reseller_id: str
    reseller_name: str = ""
    url: str
    source_type: str
    category: str = ""
    options: dict[str, str] = Field(default_factory=dict)
    all_pages: bool = False
    max_pages: int = Field(default=10, ge=1)

    def to_request(self) -> ScrapeRequest:
        return ScrapeRequest(
            url=self.url,
            source_type=self.source_type,
            reseller=self.reseller_name,
            reseller_id=self.reseller_id,
            category=self.category,
            options=dict(self.options),
        )


class ScrapeJobResult(BaseModel):
    products_created: int = 0
    products_updated: int = 0
    variants_saved: int = 0
    images_processed: int = 0
    total_errors: int = 0
    # Soft errors from the scrape itself and from saving products
    scrape_errors: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    scrape_stats: dict[str, Any] = Field(default_factory=dict)
    duration: float = 0.0
    scraped_at: str = ""


__all__ = [
    "utcnow",
    "new_job_id",
    "JobStatus",
    "JobType",
    "JobPriority",
    "DEFAULT_MAX_ATTEMPTS",
    "Job",
    "ScrapeJobPayload",
    "ScrapeJobResult",
]
