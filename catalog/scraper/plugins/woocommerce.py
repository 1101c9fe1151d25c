"""WooCommerce HTML plugin (server-rendered catalog and product pages).

The default configuration targets StacksKB (stackskb.com), but any WooCommerce
theme using the stock class names works with a different `name`,
`supported_types` and `allowed_domains`.

- Listing URLs (`/product-category/...`) yield lightweight stubs with one
  "Default" variant. Pagination is read from the pager on page 1 and pages
  2..N are fetched one after another with `page_delay` seconds between them.
  A page that fails is recorded as a soft error and the walk continues.
- Any other URL is treated as a product page and yields the full description,
  gallery, categories and variants. Variants come from the inline
  `data-product_variations` JSON when present, else from the cross-product
  of the option selects (every combination gets the page's base price, since
  per-combination prices are not rendered), else a single "Default".
"""
from __future__ import annotations

import itertools
import json
import logging
import re
from typing import Iterable, Optional
from urllib.parse import urlparse, urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup, Tag

from catalog.context import RunContext
from catalog.core.normalize import (
    ensure_max_length,
    generate_handle,
    generate_source_id,
    generate_tags,
    normalize_text,
    parse_price,
)
from catalog.errors import RequestValidationError
from catalog.scraper.brands import BrandResolver
from catalog.scraper.http import DEFAULT_TIMEOUT, safe_get
from catalog.scraper.types import ScrapedProduct, ScrapedVariant, ScrapeRequest, ScrapeResult

log = logging.getLogger(__name__)

DEFAULT_PAGE_DELAY = 2.0
LISTING_MARKER = "/product-category/"
SKIP_BREADCRUMBS = {"home", "store", "shop"}
CHOOSE_OPTION = "choose an option"

_PAGE_SUFFIX = re.compile(r"/page/\d+/?$")


def _fetch_html(url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    return safe_get(url, timeout=timeout).text


def _text(el: Optional[Tag]) -> str:
    return normalize_text(el.get_text(" ")) if el is not None else ""


def _inner_html(el: Tag) -> str:
    return "".join(str(child) for child in el.contents).strip()


def is_listing_url(url: str) -> bool:
    return LISTING_MARKER in url


def base_category_url(url: str) -> str:
    """Category URL without any /page/N/ suffix, with a trailing slash.

    The query string is kept after the path, so `?orderby=price` survives.
    """
    parts = urlsplit(url.strip())
    path = _PAGE_SUFFIX.sub("/", parts.path).rstrip("/") + "/"
    return urlunsplit(parts._replace(path=path, fragment=""))


def category_page_url(url: str, page: int) -> str:
    base = base_category_url(url)
    if page <= 1:
        return base
    parts = urlsplit(base)
    return urlunsplit(parts._replace(path=f"{parts.path}page/{page}/"))


def extract_price(el: Optional[Tag]) -> float:
    """Sale price (<ins>) if present, else the first (lowest) listed amount."""
    if el is None:
        return 0.0
    amount = el.select_one("ins span.woocommerce-Price-amount") or el.select_one("span.woocommerce-Price-amount")
    return parse_price(amount.get_text()) if amount is not None else 0.0


def extract_total_pages(soup: BeautifulSoup) -> int:
    total = 1
    for a in soup.select("nav.woocommerce-pagination ul.page-numbers a.page-numbers"):
        label = _text(a).replace(",", "")
        if label.isdigit():
            total = max(total, int(label))
    return total


def categories_from_classes(item: Tag) -> list[str]:
    cats = []
    for cls in item.get("class") or []:
        if cls.startswith("product_cat-"):
            cats.append(cls[len("product_cat-"):].replace("-", " ").title())
    return cats


def _default_variant(price: float, currency: str, images: list[str], url: str) -> ScrapedVariant:
    return ScrapedVariant(
        name="Default",
        price=price,
        currency=currency,
        available=True,
        url=url,
        images=list(images),
        source_id="default",
    )


def _option_lists(soup: BeautifulSoup) -> dict[str, list[tuple[str, str]]]:
    """label -> [(value, text), ...] from the variations table selects."""
    lists: dict[str, list[tuple[str, str]]] = {}
    for row in soup.select("table.variations tr"):
        label = _text(row.select_one("label"))
        select = row.select_one("select")
        if not label or select is None:
            continue
        choices = []
        for opt in select.select("option"):
            value = (opt.get("value") or "").strip()
            text = _text(opt)
            if not value or not text or text.lower() == CHOOSE_OPTION:
                continue
            choices.append((value, text))
        if choices:
            lists[label] = choices
    return lists


def variants_from_json(
    raw: str, currency: str, images: list[str], url: str, labels: Optional[dict[str, dict[str, str]]] = None
) -> list[ScrapedVariant]:
    """Variants from a `data-product_variations` blob. Returns [] if unusable."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(data, list):
        # WooCommerce renders "false" when it defers variations to AJAX
        return []

    labels = labels or {}
    variants = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        options: dict[str, str] = {}
        name_parts: list[str] = []
        for key, value in (entry.get("attributes") or {}).items():
            if not isinstance(value, str) or not value:
                continue
            clean = key.replace("attribute_", "").replace("pa_", "")
            options[clean] = value
            name_parts.append(labels.get(clean, {}).get(value, value))

        variation_id = entry.get("variation_id")
        if isinstance(variation_id, float):
            variation_id = int(variation_id)
        source_id = str(variation_id) if variation_id not in (None, "") else ""

        image = entry.get("image")
        full_src = image.get("full_src") if isinstance(image, dict) else None
        in_stock = entry.get("is_in_stock")

        variants.append(
            ScrapedVariant(
                name=" - ".join(name_parts) or "Default",
                sku=str(entry.get("sku") or ""),
                price=parse_price(entry.get("display_price")),
                currency=currency,
                available=in_stock if isinstance(in_stock, bool) else True,
                url=f"{url}?variant={source_id}" if source_id and url else url,
                images=[full_src] if full_src else list(images),
                options=options,
                source_id=source_id or "unknown",
            )
        )
    return variants


def variants_from_options(
    option_lists: dict[str, list[tuple[str, str]]],
    base_price: float,
    currency: str,
    images: list[str],
    url: str,
) -> list[ScrapedVariant]:
    """Every combination of the option lists, all priced at `base_price`."""
    if not option_lists:
        return []
    labels = list(option_lists)
    variants = []
    for combo in itertools.product(*(option_lists[label] for label in labels)):
        variants.append(
            ScrapedVariant(
                name=" - ".join(text for _, text in combo),
                price=base_price,
                currency=currency,
                available=True,
                url=url,
                images=list(images),
                options={label.lower(): value for label, (value, _) in zip(labels, combo)},
                source_id="-".join(value for value, _ in combo),
            )
        )
    return variants


class WooCommercePlugin:
    version = "1.1.0"
    supported_options = {
        "max_pages": "Stop a listing walk after this many pages (default: all)",
        "currency": "Currency code for prices (default from settings)",
    }
    handles_pagination = True

    def __init__(
        self,
        brands: Optional[BrandResolver] = None,
        *,
        name: str = "stackskb",
        supported_types: Iterable[str] = ("STACKS", "STACKSKB"),
        allowed_domains: Iterable[str] = ("stackskb.com",),
        fallback_brand: str = "StacksKB",
        page_delay: float = DEFAULT_PAGE_DELAY,
        currency: str = "INR",
        http_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.name = name
        self.supported_types = tuple(supported_types)
        self.allowed_domains = tuple(d.lower() for d in allowed_domains)
        self.description = f"WooCommerce HTML catalog ({', '.join(self.allowed_domains) or 'any host'})"
        self.brands = brands or BrandResolver()
        self.fallback_brand = fallback_brand
        self.page_delay = page_delay
        self.currency = currency
        self.http_timeout = http_timeout

    @property
    def source_type(self) -> str:
        return self.supported_types[0]

    def validate_request(self, req: ScrapeRequest) -> None:
        url = (req.url or "").strip()
        if not url:
            raise RequestValidationError("url is required")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise RequestValidationError("url must include http:// or https:// and a host")
        host = parsed.hostname or ""
        if self.allowed_domains and not any(
            host == d or host.endswith("." + d) for d in self.allowed_domains
        ):
            raise RequestValidationError(f"url must be on {', '.join(self.allowed_domains)}")
        raw_max = req.option("max_pages").strip()
        if raw_max and (not raw_max.isdigit() or int(raw_max) < 1):
            raise RequestValidationError(f"max_pages must be a positive integer, got {raw_max!r}")

    def scrape(self, ctx: RunContext, req: ScrapeRequest) -> ScrapeResult:
        if is_listing_url(req.url):
            return self._scrape_listing(ctx, req)
        return self._scrape_detail(ctx, req)

    # --- listing -------------------------------------------------------------

    def _fetch_soup(self, ctx: RunContext, url: str) -> BeautifulSoup:
        html = _fetch_html(url, timeout=ctx.timeout_for(self.http_timeout))
        return BeautifulSoup(html, "html.parser")

    def _scrape_listing(self, ctx: RunContext, req: ScrapeRequest) -> ScrapeResult:
        base = base_category_url(req.url)
        currency = req.option("currency").strip().upper() or self.currency
        result = ScrapeResult()

        soup = self._fetch_soup(ctx, base)
        self._collect_listing(soup, req, currency, result, page=1)

        total = extract_total_pages(soup)
        if req.option("max_pages").strip():
            total = min(total, int(req.option("max_pages")))

        for page in range(2, total + 1):
            ctx.sleep(self.page_delay)
            page_url = category_page_url(base, page)
            try:
                page_soup = self._fetch_soup(ctx, page_url)
            except requests.RequestException as exc:
                result.errors.append(f"page {page}: {exc}")
                log.warning("woocommerce page failed url=%s err=%s", page_url, exc)
                continue
            self._collect_listing(page_soup, req, currency, result, page=page)

        log.debug("woocommerce listing url=%s pages=%d products=%d errors=%d",
                  base, total, len(result.products), len(result.errors))
        return result

    def _collect_listing(
        self, soup: BeautifulSoup, req: ScrapeRequest, currency: str, result: ScrapeResult, *, page: int
    ) -> None:
        for i, item in enumerate(soup.select("li.product")):
            try:
                result.products.append(self._listing_item(item, req, currency))
            except ValueError as exc:
                result.errors.append(f"page {page} item {i}: {exc}")

    def _listing_item(self, item: Tag, req: ScrapeRequest, currency: str) -> ScrapedProduct:
        link = item.select_one("h2.woocommerce-loop-product__title a")
        if link is None:
            raise ValueError("no title link found")
        name = _text(link)
        url = (link.get("href") or "").strip()
        if not url:
            raise ValueError(f"no product url for {name!r}")

        images = []
        img = item.select_one("a.woocommerce-loop-image-link img")
        if img is not None:
            src = img.get("data-src") or img.get("src")
            if src:
                images.append(src)

        price = extract_price(item.select_one("span.price"))
        categories = categories_from_classes(item)

        return ScrapedProduct(
            name=name,
            handle=generate_handle(name),
            url=url,
            brand=self.brands.resolve(name, reseller=req.reseller, fallback=self.fallback_brand),
            category=req.category,
            tags=generate_tags(name, categories),
            images=images,
            variants=[_default_variant(price, currency, images, url)],
            source_type=self.source_type,
            source_id=generate_source_id(url, name),
            metadata={"listing_page": "true", "categories": ",".join(categories)},
        )

    # --- detail --------------------------------------------------------------

    def _scrape_detail(self, ctx: RunContext, req: ScrapeRequest) -> ScrapeResult:
        url = req.url.strip()
        soup = self._fetch_soup(ctx, url)
        currency = req.option("currency").strip().upper() or self.currency
        return ScrapeResult(products=[self.parse_product_page(soup, req, url=url, currency=currency)])

    def parse_product_page(
        self, soup: BeautifulSoup, req: ScrapeRequest, *, url: str, currency: Optional[str] = None
    ) -> ScrapedProduct:
        title = _text(soup.select_one("h1.product_title"))
        if not title:
            raise ValueError(f"no product title found on {url}")
        currency = currency or self.currency

        images = self._gallery(soup)
        base_price = extract_price(soup.select_one("p.price"))
        categories = self._categories(soup)

        return ScrapedProduct(
            name=title,
            description=self._description(soup),
            handle=generate_handle(title),
            url=url,
            brand=self.brands.resolve(
                title, vendor=self._attribute_brand(soup), reseller=req.reseller, fallback=self.fallback_brand
            ),
            category=req.category,
            tags=generate_tags(title, categories),
            images=images,
            variants=self._variants(soup, base_price, currency, images, url),
            source_type=self.source_type,
            source_id=self._source_id(soup, url, title),
            metadata={"detail_page": "true", "categories": ",".join(categories)},
        )

    def _description(self, soup: BeautifulSoup) -> str:
        parts = []
        short = soup.select_one("div.woocommerce-product-details__short-description")
        if short is not None:
            parts.append(_inner_html(short))
        tab = soup.select_one("div#tab-description")
        if tab is not None:
            for heading in tab.select("h2"):
                heading.decompose()
            parts.append(_inner_html(tab))
        return "".join(parts)

    def _gallery(self, soup: BeautifulSoup) -> list[str]:
        images: list[str] = []
        for slide in soup.select(
            "div.woocommerce-product-gallery__wrapper div.woocommerce-product-gallery__image"
        ):
            link = slide.select_one("a")
            img = slide.select_one("img")
            src = link.get("href") if link is not None else None
            if not src and img is not None:
                src = img.get("data-src") or img.get("src")
            if src and src not in images:
                images.append(src)
        return images

    def _attribute_brand(self, soup: BeautifulSoup) -> Optional[str]:
        brand = None
        for row in soup.select("table.woocommerce-product-attributes tr"):
            label = _text(row.select_one("th.woocommerce-product-attributes-item__label")).lower()
            if "manufacturer" in label or "brand" in label:
                value = _text(row.select_one("td.woocommerce-product-attributes-item__value"))
                if value:
                    brand = value
        return brand

    def _categories(self, soup: BeautifulSoup) -> list[str]:
        seen: dict[str, None] = {}
        crumbs = soup.select("nav.kadence-breadcrumbs div.kadence-breadcrumb-container a")
        for a in crumbs:
            name = _text(a)
            if name and name.lower() not in SKIP_BREADCRUMBS:
                seen.setdefault(name.upper(), None)
        for a in soup.select("div.product_meta span.posted_in a"):
            name = _text(a)
            if name:
                seen.setdefault(name.upper(), None)
        return list(seen)

    def _variants(
        self, soup: BeautifulSoup, base_price: float, currency: str, images: list[str], url: str
    ) -> list[ScrapedVariant]:
        form = soup.select_one("form.variations_form")
        if form is None:
            return [_default_variant(base_price, currency, images, url)]

        option_lists = _option_lists(soup)
        variants: list[ScrapedVariant] = []
        raw = form.get("data-product_variations")
        if raw:
            labels = {
                label.lower().replace(" ", "-"): dict(choices) for label, choices in option_lists.items()
            }
            variants = variants_from_json(raw, currency, images, url, labels)
        if not variants:
            variants = variants_from_options(option_lists, base_price, currency, images, url)
        return variants or [_default_variant(base_price, currency, images, url)]

    def _source_id(self, soup: BeautifulSoup, url: str, title: str) -> str:
        sku = _text(soup.select_one("div.product_meta span.sku_wrapper span.sku"))
        if sku and sku.upper() != "N/A":
            return ensure_max_length(sku)
        return generate_source_id(url, title)


__all__ = [
    "WooCommercePlugin",
    "is_listing_url",
    "base_category_url",
    "category_page_url",
    "extract_price",
    "extract_total_pages",
    "variants_from_json",
    "variants_from_options",
]
