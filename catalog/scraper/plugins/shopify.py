"""Shopify storefront plugin (public `products.json` feed).

One request per scrape: `{url}[/collections/<handle>]/products.json` with
`limit` and `page` query parameters. Each feed product becomes one
ScrapedProduct with one variant per feed variant. Use the manager's
`scrape_multiple_pages` to walk pages.
"""
from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode, urlparse

from catalog.context import RunContext
from catalog.core.normalize import generate_handle, generate_source_id, normalize_text, parse_price
from catalog.errors import RequestValidationError
from catalog.scraper.brands import BrandResolver
from catalog.scraper.http import DEFAULT_TIMEOUT, JSON_HEADERS, safe_get
from catalog.scraper.types import ScrapedProduct, ScrapedVariant, ScrapeRequest, ScrapeResult

log = logging.getLogger(__name__)

MAX_LIMIT = 250


def _fetch_json(url: str, timeout: float = DEFAULT_TIMEOUT) -> Any:
    return safe_get(url, timeout=timeout, headers=JSON_HEADERS).json()


def _flag(req: ScrapeRequest, key: str, default: bool = True) -> bool:
    raw = req.option(key).strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "no", "off"}


def _positive_int(req: ScrapeRequest, key: str, *, maximum: Optional[int] = None) -> Optional[int]:
    raw = req.option(key).strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value <= 0 or (maximum is not None and value > maximum):
        bound = f"between 1 and {maximum}" if maximum else "a positive integer"
        raise RequestValidationError(f"{key} must be {bound}, got {raw!r}")
    return value


def _source_tags(raw: Any) -> set[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        return set()
    return {normalize_text(str(t)).lower() for t in raw if normalize_text(str(t))}


class ShopifyPlugin:
    name = "shopify"
    version = "1.1.0"
    description = "Shopify storefronts via the public products.json feed"
    supported_types = ("SHOPIFY",)
    supported_options = {
        "limit": f"Products per page (default {MAX_LIMIT}, max {MAX_LIMIT})",
        "page": "Page number (default 1)",
        "collection_handle": "Only scrape this collection (e.g. 'keycaps')",
        "include_images": "Include product images (true/false, default true)",
        "include_variants": "Include all variants or only the first (true/false, default true)",
        "currency": "Currency code for prices (default from settings)",
    }
    handles_pagination = False

    def __init__(
        self,
        brands: Optional[BrandResolver] = None,
        *,
        currency: str = "INR",
        http_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.brands = brands or BrandResolver()
        self.currency = currency
        self.http_timeout = http_timeout

    def validate_request(self, req: ScrapeRequest) -> None:
        url = (req.url or "").strip()
        if not url:
            raise RequestValidationError("url is required")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise RequestValidationError("url must include http:// or https:// and a host")
        _positive_int(req, "limit", maximum=MAX_LIMIT)
        _positive_int(req, "page")

    def build_api_url(self, req: ScrapeRequest) -> str:
        base = req.url.strip().rstrip("/")
        if base.endswith("/products.json"):
            base = base[: -len("/products.json")]
        collection = req.option("collection_handle").strip().strip("/")
        if collection:
            base += f"/collections/{collection}"
        params = {"limit": _positive_int(req, "limit", maximum=MAX_LIMIT) or MAX_LIMIT}
        page = _positive_int(req, "page")
        if page:
            params["page"] = page
        return f"{base}/products.json?{urlencode(params)}"

    def scrape(self, ctx: RunContext, req: ScrapeRequest) -> ScrapeResult:
        api_url = self.build_api_url(req)
        data = _fetch_json(api_url, timeout=ctx.timeout_for(self.http_timeout))
        feed = data.get("products") if isinstance(data, dict) else None
        if not isinstance(feed, list):
            raise ValueError(f"unexpected response from {api_url}: no 'products' list")

        include_variants = _flag(req, "include_variants")
        include_images = _flag(req, "include_images")
        currency = req.option("currency").strip().upper() or self.currency

        result = ScrapeResult()
        for raw in feed:
            ctx.check()
            if not isinstance(raw, dict):
                result.errors.append(f"skipping malformed feed entry: {raw!r:.80}")
                continue
            product, errors = self._convert_product(
                raw, req, include_variants=include_variants, include_images=include_images, currency=currency
            )
            result.errors.extend(errors)
            if product is not None:
                result.products.append(product)

        log.debug("shopify url=%s feed=%d products=%d errors=%d",
                  api_url, len(feed), len(result.products), len(result.errors))
        return result

    # --- conversion ----------------------------------------------------------

    def _convert_product(
        self,
        raw: dict,
        req: ScrapeRequest,
        *,
        include_variants: bool,
        include_images: bool,
        currency: str,
    ) -> tuple[Optional[ScrapedProduct], list[str]]:
        title = normalize_text(raw.get("title"))
        product_id = raw.get("id")
        handle = raw.get("handle") or generate_handle(title)
        product_url = f"{req.url.strip().rstrip('/')}/products/{handle}"
        label = f"product {product_id} ({title or 'untitled'})"

        images: list[str] = []
        if include_images:
            for img in raw.get("images") or []:
                src = img.get("src") if isinstance(img, dict) else None
                if src and src not in images:
                    images.append(src)

        options = sorted(
            (o for o in raw.get("options") or [] if isinstance(o, dict)),
            key=lambda o: o.get("position") or 0,
        )
        option_names = [normalize_text(o.get("name")) for o in options]

        raw_variants = [v for v in raw.get("variants") or []]
        if not include_variants:
            raw_variants = raw_variants[:1]

        variants: list[ScrapedVariant] = []
        errors: list[str] = []
        for raw_variant in raw_variants:
            try:
                variants.append(self._convert_variant(raw_variant, product_url, option_names, currency))
            except (KeyError, TypeError, ValueError) as exc:
                errors.append(f"{label}: variant skipped: {exc}")

        if not variants:
            reason = "; ".join(errors) if errors else "feed lists no variants"
            return None, [f"{label}: no convertible variants ({reason})"]

        metadata = {
            "shopify_product_id": str(product_id or ""),
            "handle": str(handle),
            "vendor": normalize_text(raw.get("vendor")),
            "product_type": normalize_text(raw.get("product_type")),
            "published_at": str(raw.get("published_at") or ""),
            "created_at": str(raw.get("created_at") or ""),
            "updated_at": str(raw.get("updated_at") or ""),
        }

        product = ScrapedProduct(
            name=title,
            description=raw.get("body_html") or "",
            handle=str(handle),
            url=product_url,
            brand=self.brands.resolve(title, vendor=raw.get("vendor"), reseller=req.reseller),
            category=req.category or normalize_text(raw.get("product_type")),
            tags=_source_tags(raw.get("tags")),
            images=images,
            variants=variants,
            source_type=req.source_type,
            source_id=str(product_id) if product_id else generate_source_id(product_url, title),
            metadata={k: v for k, v in metadata.items() if v},
        )
        return product, errors

    def _convert_variant(
        self, raw: Any, product_url: str, option_names: list[str], currency: str
    ) -> ScrapedVariant:
        if not isinstance(raw, dict):
            raise TypeError(f"variant is not an object: {raw!r:.60}")
        variant_id = raw.get("id")
        if variant_id in (None, ""):
            raise ValueError("variant has no id")

        name = normalize_text(raw.get("title")) or "Default"
        if name == "Default Title":
            name = "Default"

        options: dict[str, str] = {}
        for i in range(3):
            value = raw.get(f"option{i + 1}")
            if value in (None, "", "Default Title"):
                continue
            key = option_names[i] if i < len(option_names) and option_names[i] else f"option{i + 1}"
            options[key] = str(value)

        featured = raw.get("featured_image")
        images = [featured["src"]] if isinstance(featured, dict) and featured.get("src") else []

        return ScrapedVariant(
            name=name,
            sku=str(raw.get("sku") or ""),
            price=parse_price(raw.get("price")),
            currency=currency,
            available=bool(raw.get("available", True)),
            url=f"{product_url}?variant={variant_id}",
            images=images,
            options=options,
            source_id=str(variant_id),
        )


__all__ = ["ShopifyPlugin"]
