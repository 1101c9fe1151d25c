import json
import unittest
from html import escape
from unittest import mock

import requests
from bs4 import BeautifulSoup

from catalog.context import RunContext
from catalog.errors import Cancelled, RequestValidationError
from catalog.scraper.plugins.woocommerce import (
    WooCommercePlugin,
    base_category_url,
    category_page_url,
    extract_price,
    extract_total_pages,
    variants_from_json,
)
from catalog.scraper.types import ScrapeRequest

CATEGORY_URL = "https://stackskb.com/product-category/keycaps/"

PAGER = """
<nav class="woocommerce-pagination"><ul class="page-numbers">
<li><span aria-current="page" class="page-numbers current">1</span></li>
<li><a class="page-numbers" href="https://stackskb.com/product-category/keycaps/page/2/">2</a></li>
<li><a class="page-numbers" href="https://stackskb.com/product-category/keycaps/page/3/">3</a></li>
<li><a class="next page-numbers" href="https://stackskb.com/product-category/keycaps/page/2/">&rarr;</a></li>
</ul></nav>
"""


def listing_item(name, slug, price_html, classes="product_cat-keycaps"):
    return f"""
<li class="product type-product {classes}">
  <a class="woocommerce-loop-image-link" href="https://stackskb.com/product/{slug}/">
    <img data-src="https://stackskb.com/img/{slug}.jpg" src="data:image/gif;base64,R0lGOD"/>
  </a>
  <h2 class="woocommerce-loop-product__title"><a href="https://stackskb.com/product/{slug}/">{name}</a></h2>
  <span class="price">{price_html}</span>
</li>
"""


def listing_page(items, pager=""):
    return f"<html><body><ul class='products'>{''.join(items)}</ul>{pager}</body></html>"


PAGE_1 = listing_page(
    [
        listing_item(
            "GMK Botanical",
            "gmk-botanical",
            '<del><span class="woocommerce-Price-amount amount">&#8377;15,000.00</span></del>'
            '<ins><span class="woocommerce-Price-amount amount">&#8377;12,500.00</span></ins>',
            classes="product_cat-keycaps product_cat-gmk-sets",
        ),
        listing_item(
            "Tofu65 Case",
            "tofu65-case",
            '<span class="woocommerce-Price-amount amount">&#8377;8,999.00</span>',
        ),
    ],
    PAGER,
)
PAGE_3 = listing_page(
    [listing_item("ePBT Kuro Shiro", "epbt-kuro-shiro", '<span class="woocommerce-Price-amount amount">&#8377;9,000</span>')]
)


def detail_page(form_attrs=""):
    return f"""
<html><body>
<nav class="kadence-breadcrumbs"><div class="kadence-breadcrumb-container">
  <a href="/">Home</a><a href="/store/">Store</a><a href="/product-category/keycaps/">Keycaps</a>
</div></nav>
<div class="woocommerce-product-gallery__wrapper">
  <div class="woocommerce-product-gallery__image"><a href="https://stackskb.com/img/morandi-1.jpg"><img src="thumb1.jpg"/></a></div>
  <div class="woocommerce-product-gallery__image"><a href="https://stackskb.com/img/morandi-2.jpg"><img src="thumb2.jpg"/></a></div>
</div>
<h1 class="product_title entry-title">Wuque Morandi Artisan</h1>
<p class="price"><span class="woocommerce-Price-amount amount">&#8377;1,000.00</span> &ndash; <span class="woocommerce-Price-amount amount">&#8377;1,500.00</span></p>
<div class="woocommerce-product-details__short-description"><p>Short.</p></div>
<form class="variations_form cart" {form_attrs}>
<table class="variations"><tbody>
<tr><th class="label"><label for="pa_colour">Colour</label></th>
<td class="value"><select id="pa_colour" name="attribute_pa_colour">
<option value="">Choose an option</option><option value="red">Red</option><option value="blue">Blue</option>
</select></td></tr>
<tr><th class="label"><label for="pa_size">Size</label></th>
<td class="value"><select id="pa_size" name="attribute_pa_size">
<option value="">Choose an option</option><option value="s">Small</option><option value="m">Medium</option><option value="l">Large</option>
</select></td></tr>
</tbody></table>
</form>
<div class="product_meta">
  <span class="sku_wrapper">SKU: <span class="sku">WQ-MORANDI-01</span></span>
  <span class="posted_in">Categories: <a href="#">Keycaps</a>, <a href="#">Artisan</a></span>
</div>
<div id="tab-description"><h2>Description</h2><p>Long.</p></div>
<table class="woocommerce-product-attributes shop_attributes">
<tr><th class="woocommerce-product-attributes-item__label">Brand</th>
<td class="woocommerce-product-attributes-item__value"><p>Wuque Studio</p></td></tr>
</table>
</body></html>
"""


def stacks_request(url, **options):
    return ScrapeRequest(url=url, source_type="STACKS", reseller="StacksKB", reseller_id="stacks", options=options)


class HelperTests(unittest.TestCase):
    def test_base_category_url(self):
        self.assertEqual(base_category_url(CATEGORY_URL + "page/4/"), CATEGORY_URL)
        self.assertEqual(base_category_url("https://stackskb.com/product-category/keycaps"), CATEGORY_URL)

    def test_category_urls_keep_query_apart(self):
        url = CATEGORY_URL + "page/3/?orderby=price"
        self.assertEqual(base_category_url(url), CATEGORY_URL + "?orderby=price")
        self.assertEqual(category_page_url(url, 2), CATEGORY_URL + "page/2/?orderby=price")
        self.assertEqual(category_page_url(CATEGORY_URL, 1), CATEGORY_URL)

    def test_extract_price_prefers_sale(self):
        soup = BeautifulSoup(PAGE_1, "html.parser")
        prices = [extract_price(el) for el in soup.select("span.price")]
        self.assertEqual(prices, [12500.0, 8999.0])
        self.assertEqual(extract_price(None), 0.0)

    def test_total_pages_from_pager(self):
        self.assertEqual(extract_total_pages(BeautifulSoup(PAGE_1, "html.parser")), 3)
        self.assertEqual(extract_total_pages(BeautifulSoup(PAGE_3, "html.parser")), 1)

    def test_variants_from_json_false_blob(self):
        self.assertEqual(variants_from_json("false", "INR", [], "u"), [])
        self.assertEqual(variants_from_json("{not json", "INR", [], "u"), [])


class ValidationTests(unittest.TestCase):
    def setUp(self):
        self.plugin = WooCommercePlugin(page_delay=0)

    def test_rejects_foreign_domain(self):
        with self.assertRaises(RequestValidationError):
            self.plugin.validate_request(stacks_request("https://example.com/product-category/keycaps/"))

    def test_accepts_subdomain(self):
        self.plugin.validate_request(stacks_request("https://www.stackskb.com/product/x/"))

    def test_rejects_bad_max_pages(self):
        for value in ("0", "-2", "two"):
            with self.subTest(value=value):
                with self.assertRaises(RequestValidationError):
                    self.plugin.validate_request(stacks_request(CATEGORY_URL, max_pages=value))


class ListingScrapeTests(unittest.TestCase):
    def setUp(self):
        self.plugin = WooCommercePlugin(page_delay=0, http_timeout=20)
        self.fetched = []

    def fake_fetch(self, url, timeout=None):
        self.fetched.append(url)
        if url == CATEGORY_URL:
            return PAGE_1
        if url.endswith("/page/2/"):
            raise requests.ConnectionError("connection reset")
        if url.endswith("/page/3/"):
            return PAGE_3
        raise AssertionError(f"unexpected fetch {url}")

    def test_walks_pager_and_keeps_going_after_failed_page(self):
        with mock.patch("catalog.scraper.plugins.woocommerce._fetch_html", side_effect=self.fake_fetch):
            result = self.plugin.scrape(RunContext.background(), stacks_request(CATEGORY_URL))

        self.assertEqual(
            self.fetched,
            [CATEGORY_URL, CATEGORY_URL + "page/2/", CATEGORY_URL + "page/3/"],
        )
        self.assertEqual([p.name for p in result.products], ["GMK Botanical", "Tofu65 Case", "ePBT Kuro Shiro"])
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("page 2:"))

        botanical, tofu, kuro = result.products
        self.assertEqual(botanical.brand, "GMK")
        self.assertEqual(tofu.brand, "StacksKB")
        self.assertEqual(kuro.brand, "ePBT")
        self.assertEqual(botanical.source_id, "gmk-botanical")
        self.assertEqual(botanical.source_type, "STACKS")
        self.assertEqual(botanical.images, ["https://stackskb.com/img/gmk-botanical.jpg"])
        self.assertEqual(botanical.tags, {"keycaps", "gmk-sets", "gmk", "botanical"})
        self.assertEqual(len(botanical.variants), 1)
        self.assertEqual(botanical.variants[0].name, "Default")
        self.assertEqual(botanical.variants[0].price, 12500.0)

    def test_max_pages_caps_the_walk(self):
        with mock.patch("catalog.scraper.plugins.woocommerce._fetch_html", side_effect=self.fake_fetch):
            result = self.plugin.scrape(RunContext.background(), stacks_request(CATEGORY_URL, max_pages="1"))

        self.assertEqual(self.fetched, [CATEGORY_URL])
        self.assertEqual(len(result.products), 2)
        self.assertEqual(result.errors, [])

    def test_first_page_failure_raises(self):
        with mock.patch(
            "catalog.scraper.plugins.woocommerce._fetch_html",
            side_effect=requests.HTTPError("503 Server Error"),
        ):
            with self.assertRaises(requests.HTTPError):
                self.plugin.scrape(RunContext.background(), stacks_request(CATEGORY_URL))

    def test_cancelled_context_stops_between_pages(self):
        ctx = RunContext.background().with_cancel()

        def fetch_then_cancel(url, timeout=None):
            ctx.cancel()
            return PAGE_1

        with mock.patch("catalog.scraper.plugins.woocommerce._fetch_html", side_effect=fetch_then_cancel) as fetch:
            with self.assertRaises(Cancelled):
                self.plugin.scrape(ctx, stacks_request(CATEGORY_URL))
        self.assertEqual(fetch.call_count, 1)


class DetailScrapeTests(unittest.TestCase):
    URL = "https://stackskb.com/product/wuque-morandi/"

    def setUp(self):
        self.plugin = WooCommercePlugin(page_delay=0)

    def scrape(self, html):
        with mock.patch("catalog.scraper.plugins.woocommerce._fetch_html", return_value=html):
            result = self.plugin.scrape(RunContext.background(), stacks_request(self.URL))
        self.assertEqual(len(result.products), 1)
        return result.products[0]

    def test_option_matrix_fallback_uses_base_price(self):
        product = self.scrape(detail_page())

        self.assertEqual(len(product.variants), 6)
        self.assertTrue(all(v.price == 1000.0 for v in product.variants))
        self.assertEqual(product.variants[0].name, "Red - Small")
        self.assertEqual(product.variants[0].options, {"colour": "red", "size": "s"})
        self.assertEqual(product.variants[-1].source_id, "blue-l")
        self.assertEqual(len({v.source_id for v in product.variants}), 6)

    def test_detail_fields(self):
        product = self.scrape(detail_page())

        self.assertEqual(product.name, "Wuque Morandi Artisan")
        self.assertEqual(product.brand, "Wuque Studio")
        self.assertEqual(product.source_id, "WQ-MORANDI-01")
        self.assertEqual(product.handle, "wuque-morandi-artisan")
        self.assertEqual(
            product.images,
            ["https://stackskb.com/img/morandi-1.jpg", "https://stackskb.com/img/morandi-2.jpg"],
        )
        self.assertEqual(product.metadata["categories"], "KEYCAPS,ARTISAN")
        self.assertIn("<p>Short.</p>", product.description)
        self.assertIn("<p>Long.</p>", product.description)
        self.assertNotIn("Description", product.description)

    def test_inline_variation_json_wins(self):
        variations = [
            {
                "variation_id": 501,
                "attributes": {"attribute_pa_colour": "red", "attribute_pa_size": "m"},
                "display_price": 1200,
                "sku": "WQ-R-M",
                "is_in_stock": True,
                "image": {"full_src": "https://stackskb.com/img/red.jpg"},
            },
            {
                "variation_id": 502,
                "attributes": {"attribute_pa_colour": "blue", "attribute_pa_size": "l"},
                "display_price": 1500,
                "is_in_stock": False,
            },
        ]
        attrs = f'data-product_variations="{escape(json.dumps(variations))}"'

        product = self.scrape(detail_page(attrs))

        self.assertEqual(len(product.variants), 2)
        red, blue = product.variants
        self.assertEqual(red.name, "Red - Medium")
        self.assertEqual(red.price, 1200.0)
        self.assertEqual(red.source_id, "501")
        self.assertEqual(red.url, self.URL + "?variant=501")
        self.assertEqual(red.images, ["https://stackskb.com/img/red.jpg"])
        self.assertFalse(blue.available)
        self.assertEqual(blue.images, product.images)

    def test_deferred_variations_fall_back_to_matrix(self):
        product = self.scrape(detail_page('data-product_variations="false"'))
        self.assertEqual(len(product.variants), 6)

    def test_simple_product_gets_default_variant(self):
        html = detail_page().replace('class="variations_form cart"', 'class="cart"')
        product = self.scrape(html)
        self.assertEqual([v.name for v in product.variants], ["Default"])
        self.assertEqual(product.variants[0].source_id, "default")

    def test_missing_title_raises(self):
        html = detail_page().replace("product_title", "other_title")
        with mock.patch("catalog.scraper.plugins.woocommerce._fetch_html", return_value=html):
            with self.assertRaises(ValueError):
                self.plugin.scrape(RunContext.background(), stacks_request(self.URL))


if __name__ == "__main__":
    unittest.main()
