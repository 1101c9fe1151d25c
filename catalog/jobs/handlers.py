from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import ValidationError

from catalog.context import RunContext
from catalog.db.crud import ProductRepository
from catalog.errors import CatalogError, JobPayloadError
from catalog.jobs.models import Job, JobType, ScrapeJobPayload, ScrapeJobResult, utcnow
from catalog.scraper.manager import ScraperManager

if TYPE_CHECKING:
    from catalog.jobs.service import JobService

log = logging.getLogger(__name__)


@runtime_checkable
class Handler(Protocol):
    """Executes jobs of one type.

    `handle` raises to report failure (the scheduler applies the retry
    policy) and may set `job.result`. Instances are shared by all workers.
    """

    job_type: str

    def handle(self, ctx: RunContext, job: Job) -> None:
        ...


class ScrapeJobHandler:
    job_type = JobType.SCRAPE_PRODUCTS.value

    def __init__(self, manager: ScraperManager, repository: ProductRepository):
        self.manager = manager
        self.repository = repository

    def handle(self, ctx: RunContext, job: Job) -> None:
        try:
            payload = ScrapeJobPayload.model_validate(job.payload or {})
        except ValidationError as exc:
            raise JobPayloadError(f"invalid scrape payload: {exc}") from exc

        req = payload.to_request()
        started = time.monotonic()
        scraped_at = utcnow()

        if payload.all_pages:
            scrape = self.manager.scrape_multiple_pages(req, payload.max_pages, ctx)
        else:
            scrape = self.manager.scrape_by_type(req, ctx)

        result = ScrapeJobResult(
            scrape_errors=list(scrape.errors),
            scrape_stats=scrape.stats.model_dump(),
            scraped_at=scraped_at.isoformat(),
        )
        for product in scrape.products:
            try:
                outcome = self.repository.save(product, payload.reseller_id)
            except Exception as exc:
                result.errors.append(f"failed to save product {product.source_id or product.name!r}: {exc}")
                log.warning("job=%s product-save failed source_id=%s err=%s", job.id, product.source_id, exc)
                continue
            if outcome.created:
                result.products_created += 1
            else:
                result.products_updated += 1
            result.variants_saved += outcome.variants
            result.images_processed += outcome.images

        result.total_errors = len(result.errors) + len(result.scrape_errors)
        result.duration = round(time.monotonic() - started, 3)
        job.result = result.model_dump()

        log.info("job=%s scrape done reseller=%s created=%d updated=%d variants=%d errors=%d",
                 job.id, payload.reseller_id, result.products_created, result.products_updated,
                 result.variants_saved, result.total_errors)


class ScrapeAllSitesHandler:
    job_type = JobType.SCRAPE_ALL_SITES.value

    def __init__(self, service: "JobService"):
        self.service = service

    def handle(self, ctx: RunContext, job: Job) -> None:
        ctx.check()
        jobs, errors = self.service.scrape_all_sites()
        job.result = {
            "jobs_created": len(jobs),
            "job_ids": [j.id for j in jobs],
            "errors": errors,
        }
        if errors and not jobs:
            raise CatalogError(f"no scrape jobs created: {'; '.join(errors)}")


__all__ = ["Handler", "ScrapeJobHandler", "ScrapeAllSitesHandler"]
