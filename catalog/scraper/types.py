"""Contract between the scraper manager and source plugins."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from catalog.context import RunContext


class ScrapeRequest(BaseModel):
    url: str
    source_type: str
    reseller: str = ""
    reseller_id: str = ""
    category: str = ""
    options: dict[str, str] = Field(default_factory=dict)

    def with_options(self, **overrides: str) -> "ScrapeRequest":
        """Copy of the request with some options replaced."""
        options = dict(self.options)
        options.update({k: str(v) for k, v in overrides.items()})
        return self.model_copy(update={"options": options})

    def option(self, key: str, default: str = "") -> str:
        return self.options.get(key, default)


class ScrapedVariant(BaseModel):
    name: str
    sku: str = ""
    price: float = 0.0
    currency: str = "INR"
    available: bool = True
    url: str = ""
    images: list[str] = Field(default_factory=list)
    options: dict[str, str] = Field(default_factory=dict)
    source_id: str = ""


class ScrapedProduct(BaseModel):
    name: str
    description: str = ""
    handle: str = ""
    url: str = ""
    brand: str = ""
    category: str = ""
    tags: set[str] = Field(default_factory=set)
    images: list[str] = Field(default_factory=list)
    variants: list[ScrapedVariant] = Field(default_factory=list)
    source_type: str = ""
    source_id: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class ScrapeStats(BaseModel):
    # None means "not set by the plugin"; the manager back-fills these.
    products_found: Optional[int] = None
    variants_found: Optional[int] = None
    error_count: Optional[int] = None
    duration: Optional[float] = None
    source: Optional[str] = None


class ScrapeResult(BaseModel):
    products: list[ScrapedProduct] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    stats: ScrapeStats = Field(default_factory=ScrapeStats)


class PluginInfo(BaseModel):
    name: str
    version: str = ""
    description: str = ""
    supported_types: list[str] = Field(default_factory=list)
    supported_options: dict[str, str] = Field(default_factory=dict)
    handles_pagination: bool = False


@runtime_checkable
class Plugin(Protocol):
    """A source-specific scraping strategy.

    Plugins are shared by every worker thread, so they hold configuration
    only. `version`, `description`, `supported_options` and
    `handles_pagination` are optional attributes.
    """

    name: str
    supported_types: tuple[str, ...]

    def validate_request(self, req: ScrapeRequest) -> None:
        ...

    def scrape(self, ctx: "RunContext", req: ScrapeRequest) -> ScrapeResult:
        ...


__all__ = [
    "ScrapeRequest",
    "ScrapedVariant",
    "ScrapedProduct",
    "ScrapeStats",
    "ScrapeResult",
    "PluginInfo",
    "Plugin",
]
