"""Process configuration for Catalog Radar.

Values come from environment variables. If a `.env` file exists (path
overridable via CATALOG_DOTENV) it is loaded on import so the worker, the API
and the CLI all point at the same database without extra flags.

Environment variables (all optional)
------------------------------------
CATALOG_DATABASE_URL / DATABASE_URL   SQLAlchemy URL (default sqlite:///./catalog.db)
CATALOG_WORKERS                       worker threads (default 3)
CATALOG_POLL_INTERVAL                 seconds between queue polls (default 5)
CATALOG_JOB_TIMEOUT                   per-job execution budget, seconds (default 1800)
CATALOG_SCRAPE_TIMEOUT                default scrape deadline, seconds (default 300)
CATALOG_RETENTION_DAYS                terminal job retention (default 7)
CATALOG_RETENTION_INTERVAL            seconds between retention sweeps (default 3600)
CATALOG_PAGE_DELAY                    delay between HTML listing pages (default 2)
CATALOG_HTTP_TIMEOUT                  per-request HTTP timeout (default 30)
CATALOG_CURRENCY                      default currency (default INR)
CATALOG_RESELLERS_FILE                reseller configs JSON (default resellers.json)
CATALOG_BRANDS_FILE                   brand lexicon JSON (optional)
CATALOG_ADMIN_TOKEN                   x-token required by mutating API routes
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from catalog.errors import ConfigError

_ = load_dotenv(dotenv_path=os.getenv("CATALOG_DOTENV", ".env"))


def database_url() -> str:
    url = (
        os.getenv("CATALOG_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or "sqlite:///./catalog.db"
    )
    # Normalize legacy PostgreSQL scheme if present
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    # Prefer psycopg v3 driver if a bare postgresql:// URL is provided
    if url.startswith("postgresql://") and "+" not in url:
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    workers: int = 3
    poll_interval: float = 5.0
    job_timeout: float = 30 * 60.0
    scrape_timeout: float = 5 * 60.0
    retention_days: int = 7
    retention_interval: float = 60 * 60.0
    page_delay: float = 2.0
    http_timeout: float = 30.0
    default_currency: str = "INR"
    resellers_file: str = "resellers.json"
    brands_file: Optional[str] = None
    admin_token: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            workers=_env_int("CATALOG_WORKERS", 3, minimum=1),
            poll_interval=_env_float("CATALOG_POLL_INTERVAL", 5.0, minimum=0.1),
            job_timeout=_env_float("CATALOG_JOB_TIMEOUT", 30 * 60.0, minimum=1.0),
            scrape_timeout=_env_float("CATALOG_SCRAPE_TIMEOUT", 5 * 60.0, minimum=1.0),
            retention_days=_env_int("CATALOG_RETENTION_DAYS", 7, minimum=1),
            retention_interval=_env_float("CATALOG_RETENTION_INTERVAL", 60 * 60.0, minimum=1.0),
            page_delay=_env_float("CATALOG_PAGE_DELAY", 2.0),
            http_timeout=_env_float("CATALOG_HTTP_TIMEOUT", 30.0, minimum=1.0),
            default_currency=os.getenv("CATALOG_CURRENCY", "INR").strip().upper() or "INR",
            resellers_file=os.getenv("CATALOG_RESELLERS_FILE", "resellers.json"),
            brands_file=os.getenv("CATALOG_BRANDS_FILE") or None,
            admin_token=os.getenv("CATALOG_ADMIN_TOKEN", ""),
        )


class ResellerConfig(BaseModel):
    """One scrape target: a reseller website section and how to read it."""

    id: str
    reseller_id: str
    reseller_name: str
    url: str
    source_type: str = "AUTO"
    category: str = ""
    active: bool = True
    options: dict[str, str] = Field(default_factory=dict)


def _load_json(path: Union[str, Path]):
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {path}: {exc}") from exc


def load_resellers(path: Union[str, Path]) -> list[ResellerConfig]:
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("configs", [data])
    if not isinstance(data, list):
        return []
    configs: list[ResellerConfig] = []
    for entry in data:
        try:
            configs.append(ResellerConfig.model_validate(entry))
        except ValueError as exc:
            raise ConfigError(f"invalid reseller config in {path}: {exc}") from exc
    return configs


def load_brand_lexicon(path: Union[str, Path]) -> tuple[dict[str, str], list[str]]:
    """Return (keyword -> display name, vendor denylist) from a JSON file.

    Expected shape:
        {"keywords": {"gmk": "GMK", "wuque studio": "Wuque Studio"},
         "denylist": ["default vendor", "my store"]}
    A plain list of keywords is accepted too; display names are title-cased.
    """
    data = _load_json(path)
    if isinstance(data, list):
        return {str(k).lower(): str(k).title() for k in data}, []
    if not isinstance(data, dict):
        raise ConfigError(f"brand lexicon in {path} must be an object or a list")
    raw_keywords = data.get("keywords") or {}
    if isinstance(raw_keywords, list):
        keywords = {str(k).lower(): str(k).title() for k in raw_keywords}
    else:
        keywords = {str(k).lower(): str(v) for k, v in raw_keywords.items()}
    denylist = [str(v).lower() for v in data.get("denylist") or []]
    return keywords, denylist
