from .types import (
    Plugin,
    PluginInfo,
    ScrapedProduct,
    ScrapedVariant,
    ScrapeRequest,
    ScrapeResult,
    ScrapeStats,
)
from .registry import PluginRegistry
from .manager import ScraperManager

__all__ = [
    "Plugin",
    "PluginInfo",
    "ScrapedProduct",
    "ScrapedVariant",
    "ScrapeRequest",
    "ScrapeResult",
    "ScrapeStats",
    "PluginRegistry",
    "ScraperManager",
]
