from __future__ import annotations


class CatalogError(Exception):
    """Base class for every error raised by the catalog package."""


class ConfigError(CatalogError):
    pass


class ResellerConfigNotFound(ConfigError):
    pass


# --- Queue / job lifecycle ---------------------------------------------------

class JobValidationError(CatalogError):
    """A job was rejected before it reached the store (e.g. empty id)."""


class JobNotFound(CatalogError):
    pass


class JobStateError(CatalogError):
    """The requested transition is not allowed from the job's current status."""


class JobPayloadError(CatalogError):
    """A handler could not decode the job's payload."""


# --- Scraping ----------------------------------------------------------------

class ScraperError(CatalogError):
    pass


class NoPluginFound(ScraperError):
    pass


class DuplicatePluginError(ScraperError):
    pass


class RequestValidationError(ScraperError):
    """Structurally invalid scrape request; raised before any network activity."""


class ScrapeFailed(ScraperError):
    """The remote source could not be scraped (network, HTTP, parse)."""


# --- Run scope ---------------------------------------------------------------

class Cancelled(CatalogError):
    pass


class DeadlineExceeded(CatalogError):
    pass


__all__ = [
    "CatalogError",
    "ConfigError",
    "ResellerConfigNotFound",
    "JobValidationError",
    "JobNotFound",
    "JobStateError",
    "JobPayloadError",
    "ScraperError",
    "NoPluginFound",
    "DuplicatePluginError",
    "RequestValidationError",
    "ScrapeFailed",
    "Cancelled",
    "DeadlineExceeded",
]
