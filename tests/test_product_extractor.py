"""
Tests for field resolution, image accumulation and the validation gate of
ProductExtractor.
"""

import json

import pytest

from fashion_compare.exceptions import InvalidProductData
from fashion_compare.models.schemas import ExtractionFailure, Product
from fashion_compare.scrapers.page_source import HtmlPageSource, PageSignalSource
from fashion_compare.scrapers.product_extractor import ProductExtractor

PAGE_URL = "https://shop.example.com/products/trench"


def extract(html, url=PAGE_URL, clock=None):
    return ProductExtractor(HtmlPageSource(html, url), clock=clock).extract()


def page(head="", body=""):
    return f"<html><head>{head}</head><body>{body}</body></html>"


def json_ld(data):
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


class FakePageSource(PageSignalSource):
    """Synthetic page signals, no HTML involved."""

    def __init__(self, url, scripts=(), meta=None, texts=None, images=None, title=None):
        self._url = url
        self.scripts = list(scripts)
        self.meta = meta or {}
        self.texts = texts or {}
        self.images = images or {}
        self.title = title

    @property
    def url(self):
        return self._url

    def json_ld_scripts(self):
        return self.scripts

    def meta_content(self, prop):
        return self.meta.get(prop)

    def meta_properties(self, prefixes):
        return [(k, v) for k, v in self.meta.items() if k.startswith(tuple(prefixes))]

    def first_text(self, selector):
        return self.texts.get(selector)

    def image_sources(self, selector):
        return self.images.get(selector, [])

    def exists(self, selector):
        return selector in self.texts

    def document_title(self):
        return self.title


class TestFullPage:

    def test_json_ld_wins_per_field(self, product_page, clock):
        product = extract(product_page, clock=clock)

        assert isinstance(product, Product)
        assert product.url == PAGE_URL
        assert product.title == "Classic Trench Coat"
        assert product.price == 179.5
        assert product.description == "Water-resistant cotton gabardine."
        assert product.brand == "Heritage & Co"
        assert product.timestamp == clock()
        assert product.saved_timestamp is None

    def test_images_accumulate_in_discovery_order(self, product_page):
        product = extract(product_page)

        assert product.images == [
            "https://cdn.example.com/a.jpg",
            "https://cdn.example.com/b.jpg",
            "https://cdn.example.com/og.jpg",
            "https://shop.example.com/images/c.jpg",
        ]

    def test_metadata_merge_keeps_first_value(self, product_page):
        product = extract(product_page)

        assert product.metadata["sku"] == "TC-001"
        assert product.metadata["color"] == "khaki"
        assert product.metadata["availability"] == "https://schema.org/InStock"
        assert product.metadata["condition"] == "https://schema.org/NewCondition"
        assert product.metadata["amount"] == "199.00"
        assert product.metadata["type"] == "product"
        assert product.metadata["title"] == "OG Trench Coat"
        assert "category" not in product.metadata

    def test_absent_fields_are_omitted(self):
        html = page(json_ld({"@type": "Product", "name": "Plain Tee", "offers": {"price": 12}}))
        product = extract(html)

        record = product.to_record()
        assert "description" not in record
        assert "brand" not in record
        assert "savedTimestamp" not in record
        assert record["images"] == []


class TestFallbackOrder:

    def test_meta_tags_when_no_json_ld(self):
        html = page(
            '<meta property="og:title" content="Linen Shirt">'
            '<meta property="product:price:amount" content="59.90">'
            '<meta property="product:brand" content="Atelier">'
            '<meta property="og:description" content="Breathable">',
            '<h1>Ignored heading</h1><span class="price">$10</span>',
        )
        product = extract(html)

        assert product.title == "Linen Shirt"
        assert product.price == 59.9
        assert product.brand == "Atelier"
        assert product.description == "Breathable"

    def test_microdata_before_class_heuristics(self):
        html = page(body=(
            '<div class="product-title">Class Title</div>'
            '<span itemprop="name">Microdata Title</span>'
            '<span class="price">$25.00</span>'
            '<span itemprop="price">$30.00</span>'
        ))
        product = extract(html)

        assert product.title == "Microdata Title"
        assert product.price == 30.0

    def test_h1_is_the_last_selector_for_title(self):
        html = page(body='<h1>Heading</h1><div class="product-name">Named Product</div><span class="price">5</span>')
        assert extract(html).title == "Named Product"

        html = page(body='<h1> Heading Only </h1><span class="price">5</span>')
        assert extract(html).title == "Heading Only"

    def test_document_title_before_pipe(self):
        html = page("<title>Wool Scarf | Shop Name</title>", '<span class="price">€45</span>')
        product = extract(html)

        assert product.title == "Wool Scarf"
        assert product.price == 45.0

    def test_unparseable_price_falls_through(self):
        html = page(
            '<meta property="og:title" content="Boots">',
            '<span itemprop="price">Call for price</span><span class="product-price">$120</span>',
        )
        assert extract(html).price == 120.0

    def test_json_ld_array_and_offer_list(self):
        data = [
            {"@type": "BreadcrumbList"},
            {"@type": "Product", "name": "Sneakers", "offers": [{"price": "89.00"}, {"price": "99.00"}]},
        ]
        product = extract(page(json_ld(data)))

        assert product.title == "Sneakers"
        assert product.price == 89.0

    def test_json_ld_graph_and_low_price(self):
        data = {"@graph": [{"@type": "WebPage"}, {"@type": ["Product"], "name": "Bag", "offers": {"lowPrice": 300}}]}
        product = extract(page(json_ld(data)))

        assert product.title == "Bag"
        assert product.price == 300.0

    def test_malformed_json_ld_is_skipped(self):
        head = (
            '<script type="application/ld+json">{not json</script>'
            + json_ld({"@type": "Organization", "name": "Shop"})
            + json_ld({"@type": "Product", "name": "Second Block", "offers": {"price": 15}})
        )
        assert extract(page(head)).title == "Second Block"

    def test_plain_string_brand_and_image_object(self):
        data = {
            "@type": "Product",
            "name": "Cap",
            "brand": "Capco",
            "image": {"@type": "ImageObject", "url": "https://img.example.com/cap.png?x=1"},
            "offers": {"price": 20},
        }
        product = extract(page(json_ld(data)))

        assert product.brand == "Capco"
        assert product.images == ["https://img.example.com/cap.png"]


class TestValidationGate:

    def test_missing_price_fails(self):
        result = extract(page(body="<h1>No Price Here</h1>"))

        assert isinstance(result, ExtractionFailure)
        assert result.reason == "InvalidProductData"
        assert result.url == PAGE_URL

    def test_zero_price_fails(self):
        result = extract(page(json_ld({"@type": "Product", "name": "Freebie", "offers": {"price": "0"}})))
        assert isinstance(result, ExtractionFailure)

    def test_missing_title_fails(self):
        result = extract(page(body='<span class="price">$10</span>'))
        assert isinstance(result, ExtractionFailure)
        assert result.detail == "missing title"

    @pytest.mark.parametrize("url", ["ftp://shop.example.com/p/1", "file:///tmp/page.html", ""])
    def test_non_http_url_fails(self, url):
        result = extract(page(json_ld({"@type": "Product", "name": "Hat", "offers": {"price": 10}})), url=url)
        assert isinstance(result, ExtractionFailure)
        assert result.reason == "InvalidProductData"

    def test_invalid_data_raised_by_a_field_is_not_an_extraction_error(self):
        class StrictExtractor(ProductExtractor):
            def extract_price(self):
                raise InvalidProductData("price is a range")

        result = StrictExtractor(HtmlPageSource(page(body="<h1>Hat</h1>"), PAGE_URL)).extract()

        assert isinstance(result, ExtractionFailure)
        assert result.reason == "InvalidProductData"
        assert result.detail == "price is a range"

    def test_accepts_title_price_and_url(self):
        result = extract(page(json_ld({"@type": "Product", "name": "Hat", "offers": {"price": 10}})))
        assert isinstance(result, Product)


class TestSyntheticSource:

    def test_resolution_without_html(self):
        source = FakePageSource(
            "https://store.example.org/item/9",
            meta={"og:title": "Silk Tie", "og:site_name": "Store"},
            texts={".price": "USD 35.5"},
            images={'[itemprop="image"]': ["https://store.example.org/tie.jpg?size=l"]},
        )
        product = ProductExtractor(source).extract()

        assert product.title == "Silk Tie"
        assert product.price == 35.5
        assert product.images == ["https://store.example.org/tie.jpg"]
        assert product.metadata == {"title": "Silk Tie", "site_name": "Store"}

    def test_internal_errors_become_failures(self):
        class BrokenSource(FakePageSource):
            def json_ld_scripts(self):
                raise RuntimeError("page went away")

        result = ProductExtractor(BrokenSource("https://store.example.org/item/9")).extract()

        assert isinstance(result, ExtractionFailure)
        assert result.reason == "ExtractionError"
        assert "page went away" in result.detail
