from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from fastapi import Depends, Header, HTTPException

from catalog.config import ResellerConfig, Settings, load_resellers
from catalog.jobs.queue import DatabaseQueue
from catalog.jobs.service import JobService
from catalog.scraper.manager import ScraperManager
from catalog.scraper.plugins import build_default_manager

LOGGER = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache
def get_queue() -> DatabaseQueue:
    return DatabaseQueue()


@lru_cache
def get_manager() -> ScraperManager:
    return build_default_manager(get_settings())


@lru_cache
def _reseller_configs(path: str) -> tuple[ResellerConfig, ...]:
    if not Path(path).exists():
        LOGGER.warning("reseller config file missing path=%s; no configs loaded", path)
        return ()
    return tuple(load_resellers(path))


def get_service(
    queue: DatabaseQueue = Depends(get_queue),
    settings: Settings = Depends(get_settings),
) -> JobService:
    """FastAPI dependency that yields a :class:`JobService`.

    Usage in route handlers:
        def handler(service: JobService = Depends(get_service)):
            ...
    """
    return JobService(queue, _reseller_configs(settings.resellers_file))


def require_admin(
    x_token: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if settings.admin_token and x_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Unauthorized")


__all__ = ["get_settings", "get_queue", "get_manager", "get_service", "require_admin"]
