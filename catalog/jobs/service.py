from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Union
from urllib.parse import urlparse

from catalog.config import ResellerConfig
from catalog.errors import JobValidationError, ResellerConfigNotFound
from catalog.jobs.models import (
    DEFAULT_MAX_ATTEMPTS,
    Job,
    JobPriority,
    JobStatus,
    JobType,
    ScrapeJobPayload,
)
from catalog.jobs.queue import DatabaseQueue

log = logging.getLogger(__name__)

AUTO = "AUTO"


def determine_source_type(config: ResellerConfig) -> str:
    """Scraper source type for a reseller config.

    An explicit type wins. Otherwise the URL decides: StacksKB hosts and
    WooCommerce-style /store/ or /shop/ paths are STACKS, anything else
    (including *.myshopify.com and products.json feeds) is SHOPIFY.
    """
    explicit = (config.source_type or "").strip().upper()
    if explicit and explicit != AUTO:
        return explicit

    parsed = urlparse(config.url.strip().lower())
    host = parsed.hostname or ""
    path = parsed.path or ""
    if "stackskb" in host or "stackskb" in config.reseller_name.lower():
        return "STACKS"
    if host.endswith(".myshopify.com") or path.rstrip("/").endswith("/products.json"):
        return "SHOPIFY"
    if "/store/" in path or "/shop/" in path or "/product-category/" in path:
        return "STACKS"
    return "SHOPIFY"


class JobService:
    """Builds scrape jobs from reseller configs and manages their lifecycle."""

    def __init__(self, queue: DatabaseQueue, configs: Iterable[ResellerConfig] = ()):
        self.queue = queue
        self._configs = {c.id: c for c in configs}

    @property
    def configs(self) -> list[ResellerConfig]:
        return list(self._configs.values())

    def get_config(self, config_id: str) -> ResellerConfig:
        config = self._configs.get(config_id)
        if config is None:
            raise ResellerConfigNotFound(f"reseller config {config_id!r} not found")
        return config

    def active_configs(self) -> list[ResellerConfig]:
        return [c for c in self._configs.values() if c.active]

    def build_payload(
        self,
        config: ResellerConfig,
        options: Optional[dict[str, str]] = None,
        *,
        all_pages: bool = True,
        max_pages: int = 10,
    ) -> ScrapeJobPayload:
        merged = dict(config.options)
        merged.update(options or {})
        return ScrapeJobPayload(
            config_id=config.id,
            reseller_id=config.reseller_id,
            reseller_name=config.reseller_name,
            url=config.url,
            source_type=determine_source_type(config),
            category=config.category,
            options=merged,
            all_pages=all_pages,
            max_pages=max_pages,
        )

    def create_scrape_job(
        self,
        config_id: str,
        options: Optional[dict[str, str]] = None,
        *,
        all_pages: bool = True,
        max_pages: int = 10,
        priority: int = JobPriority.NORMAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> Job:
        config = self.get_config(config_id)
        if not config.active:
            raise JobValidationError(f"reseller config {config_id!r} is not active")

        payload = self.build_payload(config, options, all_pages=all_pages, max_pages=max_pages)
        job = Job.new(
            JobType.SCRAPE_PRODUCTS,
            payload.model_dump(),
            priority=priority,
            max_attempts=max_attempts,
        )
        self.queue.enqueue(job)
        log.info("scrape-job created id=%s config=%s type=%s url=%s",
                 job.id, config.id, payload.source_type, payload.url)
        return job

    def create_scrape_all_job(self, priority: int = JobPriority.NORMAL) -> Job:
        """Queue a job that fans out one scrape job per active config when it runs."""
        if not self.active_configs():
            raise JobValidationError("no active reseller configs")
        job = Job.new(JobType.SCRAPE_ALL_SITES, {}, priority=priority, max_attempts=1)
        return self.queue.enqueue(job)

    def scrape_all_sites(self) -> tuple[list[Job], list[str]]:
        """Enqueue a scrape job for every active config. Returns (jobs, errors)."""
        jobs: list[Job] = []
        errors: list[str] = []
        for config in self.active_configs():
            try:
                jobs.append(self.create_scrape_job(config.id))
            except Exception as exc:
                errors.append(f"config {config.id}: {exc}")
                log.warning("scrape-all enqueue failed config=%s err=%s", config.id, exc)
        log.info("scrape-all jobs=%d errors=%d", len(jobs), len(errors))
        return jobs, errors

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.queue.get_job(job_id)

    def list_jobs(self, status: Union[JobStatus, str, None] = None, limit: int = 50) -> Sequence[Job]:
        return self.queue.list_jobs(status=status, limit=limit)

    def cancel_job(self, job_id: str) -> Job:
        return self.queue.cancel_job(job_id)


__all__ = ["JobService", "determine_source_type", "AUTO"]
