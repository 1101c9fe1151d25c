from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from catalog import __version__
from catalog.api.deps import get_manager, get_service, require_admin
from catalog.errors import JobNotFound, JobStateError, JobValidationError, ResellerConfigNotFound
from catalog.jobs.models import JobPriority, JobStatus
from catalog.jobs.service import JobService
from catalog.scraper.manager import ScraperManager
from catalog.scraper.types import PluginInfo

# -------------------------
# FastAPI setup
# -------------------------
app = FastAPI(title="Catalog Radar Jobs API", version=__version__)
LOGGER = logging.getLogger(__name__)


# -------------------------
# Pydantic request/response models
# -------------------------
class JobOut(BaseModel):
    id: str
    type: str
    status: JobStatus
    priority: int
    payload: dict[str, Any] = {}
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int
    max_attempts: int
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True  # pydantic v2


class JobsResponse(BaseModel):
    items: List[JobOut]
    total: int
    limit: int


class ScrapeJobIn(BaseModel):
    config_id: str
    options: dict[str, str] = Field(default_factory=dict)
    all_pages: bool = True
    max_pages: int = Field(default=10, ge=1, le=100)
    priority: int = Field(default=int(JobPriority.NORMAL), ge=1, le=4)


# -------------------------
# Routes
# -------------------------
@app.get("/healthz", tags=["meta"])
async def healthz():
    return {"status": "ok", "version": __version__}


@app.get("/plugins", response_model=List[PluginInfo], tags=["meta"])
def list_plugins(manager: ScraperManager = Depends(get_manager)):
    return list(manager.list_available_plugins().values())


@app.get("/jobs", response_model=JobsResponse, tags=["jobs"])
def list_jobs(
    status: Optional[JobStatus] = Query(None, description="pending|running|completed|failed|cancelled"),
    limit: int = Query(50, ge=1, le=500),
    service: JobService = Depends(get_service),
):
    jobs = service.list_jobs(status=status, limit=limit)
    items = [JobOut.model_validate(j) for j in jobs]
    return JobsResponse(items=items, total=len(items), limit=limit)


@app.get("/jobs/{job_id}", response_model=JobOut, tags=["jobs"])
def get_job(job_id: str, service: JobService = Depends(get_service)):
    job = service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobOut.model_validate(job)


@app.post("/jobs/scrape", response_model=JobOut, status_code=201, tags=["admin"])
def create_scrape_job(
    body: ScrapeJobIn,
    service: JobService = Depends(get_service),
    _: None = Depends(require_admin),
):
    try:
        job = service.create_scrape_job(
            body.config_id,
            body.options,
            all_pages=body.all_pages,
            max_pages=body.max_pages,
            priority=body.priority,
        )
    except ResellerConfigNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JobOut.model_validate(job)


@app.post("/jobs/scrape-all", response_model=JobOut, status_code=201, tags=["admin"])
def create_scrape_all_job(
    service: JobService = Depends(get_service),
    _: None = Depends(require_admin),
):
    try:
        job = service.create_scrape_all_job()
    except JobValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JobOut.model_validate(job)


@app.delete("/jobs/{job_id}", response_model=JobOut, tags=["admin"])
def cancel_job(
    job_id: str,
    service: JobService = Depends(get_service),
    _: None = Depends(require_admin),
):
    try:
        job = service.cancel_job(job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    LOGGER.info("api cancel job=%s", job_id)
    return JobOut.model_validate(job)
