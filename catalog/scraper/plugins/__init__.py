from __future__ import annotations

import logging
from typing import Optional

from catalog.config import Settings, load_brand_lexicon
from catalog.scraper.brands import BrandResolver
from catalog.scraper.manager import ScraperManager
from catalog.scraper.plugins.shopify import ShopifyPlugin
from catalog.scraper.plugins.woocommerce import WooCommercePlugin

log = logging.getLogger(__name__)


def build_brand_resolver(settings: Settings) -> BrandResolver:
    if not settings.brands_file:
        return BrandResolver()
    keywords, denylist = load_brand_lexicon(settings.brands_file)
    log.info("brand lexicon loaded file=%s keywords=%d denylist=%d",
             settings.brands_file, len(keywords), len(denylist))
    return BrandResolver(keywords or None, denylist or None)


def build_default_manager(settings: Optional[Settings] = None) -> ScraperManager:
    """Manager with the built-in plugins, in lookup order (first match wins)."""
    settings = settings or Settings.from_env()
    brands = build_brand_resolver(settings)
    manager = ScraperManager(default_timeout=settings.scrape_timeout)
    manager.register_plugin(
        ShopifyPlugin(brands, currency=settings.default_currency, http_timeout=settings.http_timeout)
    )
    manager.register_plugin(
        WooCommercePlugin(
            brands,
            page_delay=settings.page_delay,
            currency=settings.default_currency,
            http_timeout=settings.http_timeout,
        )
    )
    return manager


__all__ = ["ShopifyPlugin", "WooCommercePlugin", "build_brand_resolver", "build_default_manager"]
