from __future__ import annotations

import logging
import time
from typing import Optional

from catalog.context import RunContext
from catalog.errors import RequestValidationError, ScrapeFailed
from catalog.scraper.registry import PluginRegistry
from catalog.scraper.types import Plugin, PluginInfo, ScrapeRequest, ScrapeResult

log = logging.getLogger(__name__)

DEFAULT_SCRAPE_TIMEOUT = 5 * 60.0
DEFAULT_MAX_PAGES = 10


def _backfill_stats(result: ScrapeResult, *, started: float, source: str) -> ScrapeResult:
    stats = result.stats
    if stats.duration is None:
        stats.duration = round(time.monotonic() - started, 3)
    if stats.products_found is None:
        stats.products_found = len(result.products)
    if stats.variants_found is None:
        stats.variants_found = sum(len(p.variants) for p in result.products)
    if stats.error_count is None:
        stats.error_count = len(result.errors)
    if stats.source is None:
        stats.source = source
    return result


class ScraperManager:
    """Runs scrape requests through the plugin registered for them.

    Every call validates the request before touching the network, makes sure
    the run context carries a deadline, and returns a result whose stats are
    fully populated whatever the plugin filled in.
    """

    def __init__(
        self,
        registry: Optional[PluginRegistry] = None,
        *,
        default_timeout: float = DEFAULT_SCRAPE_TIMEOUT,
    ):
        self.registry = registry or PluginRegistry()
        self.default_timeout = default_timeout

    def register_plugin(self, plugin: Plugin) -> None:
        self.registry.register(plugin)

    def scrape_by_type(self, req: ScrapeRequest, ctx: Optional[RunContext] = None) -> ScrapeResult:
        plugin = self.registry.get_plugin_for_type(req.source_type)
        return self._scrape_with_plugin(plugin, req, ctx)

    def scrape_by_plugin(
        self, name: str, req: ScrapeRequest, ctx: Optional[RunContext] = None
    ) -> ScrapeResult:
        plugin = self.registry.get_plugin(name)
        return self._scrape_with_plugin(plugin, req, ctx)

    def scrape_multiple_pages(
        self,
        base_req: ScrapeRequest,
        max_pages: int = DEFAULT_MAX_PAGES,
        ctx: Optional[RunContext] = None,
    ) -> ScrapeResult:
        """Walk pages 1..max_pages through the `page` option.

        Stops early at the first page that yields no products. A failure on
        page 1 is raised; a failure on a later page is kept as a soft error
        and ends the walk. Plugins that paginate on their own
        (`handles_pagination`) are run once.
        """
        plugin = self.registry.get_plugin_for_type(base_req.source_type)
        if getattr(plugin, "handles_pagination", False):
            if "max_pages" not in base_req.options:
                base_req = base_req.with_options(max_pages=str(max(max_pages, 1)))
            return self._scrape_with_plugin(plugin, base_req, ctx)

        ctx = ctx or RunContext.background()
        started = time.monotonic()
        combined = ScrapeResult()
        pages = 0
        for page in range(1, max(max_pages, 1) + 1):
            req = base_req.with_options(page=str(page))
            try:
                page_result = self._scrape_with_plugin(plugin, req, ctx)
            except ScrapeFailed as exc:
                if page == 1:
                    raise
                combined.errors.append(f"page {page}: {exc}")
                log.warning("scrape-pages plugin=%s page=%d err=%s", plugin.name, page, exc)
                break
            pages += 1
            if not page_result.products:
                combined.errors.extend(page_result.errors)
                break
            combined.products.extend(page_result.products)
            combined.errors.extend(page_result.errors)

        log.info("scrape-pages plugin=%s url=%s pages=%d products=%d errors=%d",
                 plugin.name, base_req.url, pages, len(combined.products), len(combined.errors))
        return _backfill_stats(combined, started=started, source=base_req.reseller or plugin.name)

    def _scrape_with_plugin(
        self, plugin: Plugin, req: ScrapeRequest, ctx: Optional[RunContext]
    ) -> ScrapeResult:
        try:
            plugin.validate_request(req)
        except (RequestValidationError, ValueError) as exc:
            raise RequestValidationError(f"validation failed: {exc}") from exc

        ctx = ctx or RunContext.background()
        scoped = ctx if ctx.has_deadline else ctx.with_timeout(self.default_timeout)
        started = time.monotonic()
        try:
            result = plugin.scrape(scoped, req)
        except Exception as exc:
            raise ScrapeFailed(f"scraping failed: {exc}") from exc
        finally:
            if scoped is not ctx:
                scoped.release()

        _backfill_stats(result, started=started, source=req.reseller or plugin.name)
        log.info("scrape plugin=%s url=%s products=%d variants=%d errors=%d took=%.2fs",
                 plugin.name, req.url, result.stats.products_found, result.stats.variants_found,
                 result.stats.error_count, result.stats.duration)
        return result

    # --- introspection -------------------------------------------------------

    def plugin_info(self, name: str) -> PluginInfo:
        return _describe(self.registry.get_plugin(name))

    def list_available_plugins(self) -> dict[str, PluginInfo]:
        return {p.name: _describe(p) for p in self.registry.list_plugins()}


def _describe(plugin: Plugin) -> PluginInfo:
    return PluginInfo(
        name=plugin.name,
        version=getattr(plugin, "version", ""),
        description=getattr(plugin, "description", ""),
        supported_types=list(plugin.supported_types),
        supported_options=dict(getattr(plugin, "supported_options", {}) or {}),
        handles_pagination=bool(getattr(plugin, "handles_pagination", False)),
    )


__all__ = ["ScraperManager", "DEFAULT_SCRAPE_TIMEOUT", "DEFAULT_MAX_PAGES"]
