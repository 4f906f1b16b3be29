import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from fashion_compare.exceptions import InvalidProductData
from fashion_compare.models.schemas import ExtractionFailure, Product, is_http_url, utcnow
from fashion_compare.scrapers.normalizer import clean_image_urls, normalize_price, strip_html
from fashion_compare.scrapers.page_source import PageSignalSource

logger = logging.getLogger('scraper.extractor')

ExtractionResult = Union[Product, ExtractionFailure]

METADATA_TAG_PREFIXES = ("product:", "og:")


class ProductExtractor:
    """Builds one validated Product from the signals of a single page.

    Every field is resolved independently: JSON-LD first, then meta tags,
    then the CSS selector lists below (in order), then a field-specific last
    resort. Images are the exception and accumulate across all sources.
    """

    TITLE_SELECTORS = [
        '[itemprop="name"]',
        '.product-title',
        '.product-name',
        '[data-product-title]',
        '[class*="product"][class*="title"]',
        '[class*="product"][class*="name"]',
        'h1',
    ]

    PRICE_SELECTORS = [
        '[itemprop="price"]',
        '.product-price',
        '.price',
        '[data-price]',
        '[class*="product"][class*="price"]',
        '.current-price',
        '[data-product-price]',
    ]

    IMAGE_SELECTORS = [
        '[itemprop="image"]',
        '.product-image img',
        '.product-gallery img',
        '[data-product-image]',
        '[class*="product"][class*="image"] img',
        '[class*="gallery"] img',
    ]

    DESCRIPTION_SELECTORS = [
        '[itemprop="description"]',
        '.product-description',
        '[data-product-description]',
        '[class*="product"][class*="description"]',
        '#description',
    ]

    BRAND_SELECTORS = [
        '[itemprop="brand"]',
        '.product-brand',
        '[data-brand]',
        '[class*="product"][class*="brand"]',
        '.brand',
    ]

    def __init__(self, source: PageSignalSource, clock: Optional[Callable[[], datetime]] = None):
        self.source = source
        self.clock = clock or utcnow
        self._json_ld: Optional[Dict[str, Any]] = None
        self._json_ld_loaded = False

    def extract(self) -> ExtractionResult:
        url = None
        try:
            url = self.source.url
            raw = {
                "url": url,
                "timestamp": self.clock(),
                "title": self.extract_title(),
                "price": self.extract_price(),
                "images": self.extract_images(),
                "description": self.extract_description(),
                "brand": self.extract_brand(),
                "metadata": self.extract_metadata(),
            }
            record = self.clean_product(raw)

            problem = self.validation_problem(record)
            if problem:
                raise InvalidProductData(problem)

            product = Product(**record)
            logger.info(f"Extracted product '{product.title}' ({product.price}) from {url}")
            return product
        except (InvalidProductData, ValidationError) as e:
            logger.warning(f"Invalid product data extracted from {url}: {e}")
            return ExtractionFailure(reason="InvalidProductData", url=url, detail=str(e))
        except Exception as e:
            logger.error(f"Product extraction failed for {url}: {e}")
            return ExtractionFailure(reason="ExtractionError", url=url, detail=str(e))

    def extract_json_ld(self) -> Optional[Dict[str, Any]]:
        """First JSON-LD object typed as Product, parsed once per extractor."""
        if self._json_ld_loaded:
            return self._json_ld
        self._json_ld_loaded = True

        for script in self.source.json_ld_scripts():
            try:
                data = json.loads(script)
            except (json.JSONDecodeError, TypeError) as e:
                logger.error(f"Error parsing JSON-LD: {e}")
                continue

            product = _find_product_node(data)
            if product is not None:
                self._json_ld = product
                break

        return self._json_ld

    def extract_title(self) -> Optional[str]:
        json_ld = self.extract_json_ld() or {}
        if _text(json_ld.get("name")):
            return _text(json_ld.get("name"))

        meta_title = self.source.meta_content("og:title")
        if meta_title and meta_title.strip():
            return meta_title

        found = self._first_selector_text(self.TITLE_SELECTORS)
        if found:
            return found

        doc_title = self.source.document_title()
        if doc_title:
            return doc_title.split('|')[0].strip() or None
        return None

    def extract_price(self) -> Optional[float]:
        offer = self._offer()
        for key in ("price", "lowPrice"):
            price = normalize_price(offer.get(key))
            if price is not None:
                return price

        price = normalize_price(self.source.meta_content("product:price:amount"))
        if price is not None:
            return price

        for selector in self.PRICE_SELECTORS:
            text = self.source.first_text(selector)
            if text is None:
                continue
            price = normalize_price(text)
            if price is not None:
                logger.debug(f"Found price {price} with selector '{selector}'")
                return price

        return None

    def extract_images(self) -> List[str]:
        images = []
        json_ld = self.extract_json_ld() or {}
        image = json_ld.get("image")
        for item in (image if isinstance(image, list) else [image]):
            if isinstance(item, dict):
                item = item.get("url") or item.get("contentUrl")
            if isinstance(item, str) and item:
                images.append(item)

        meta_image = self.source.meta_content("og:image")
        if meta_image:
            images.append(meta_image)

        for selector in self.IMAGE_SELECTORS:
            images.extend(self.source.image_sources(selector))

        return list(dict.fromkeys(images))

    def extract_description(self) -> Optional[str]:
        json_ld = self.extract_json_ld() or {}
        if _text(json_ld.get("description")):
            return _text(json_ld.get("description"))

        meta_description = self.source.meta_content("og:description")
        if meta_description and meta_description.strip():
            return meta_description

        return self._first_selector_text(self.DESCRIPTION_SELECTORS)

    def extract_brand(self) -> Optional[str]:
        json_ld = self.extract_json_ld() or {}
        brand = json_ld.get("brand")
        if isinstance(brand, dict):
            brand = brand.get("name")
        if _text(brand):
            return _text(brand)

        meta_brand = self.source.meta_content("product:brand")
        if meta_brand and meta_brand.strip():
            return meta_brand

        return self._first_selector_text(self.BRAND_SELECTORS)

    def extract_metadata(self) -> Dict[str, str]:
        metadata: Dict[str, str] = {}
        json_ld = self.extract_json_ld()
        if json_ld:
            offer = self._offer()
            candidates = {
                "sku": json_ld.get("sku"),
                "color": json_ld.get("color"),
                "category": json_ld.get("category"),
                "availability": offer.get("availability"),
                "condition": offer.get("itemCondition"),
            }
            for key, value in candidates.items():
                value = _text(value)
                if value is not None:
                    metadata[key] = value

        for prop, content in self.source.meta_properties(METADATA_TAG_PREFIXES):
            key = prop.split(':')[-1]
            if key and key not in metadata:
                metadata[key] = content

        return metadata

    def clean_product(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = dict(raw)
        cleaned["title"] = strip_html(raw.get("title"))
        cleaned["description"] = strip_html(raw.get("description"))
        cleaned["brand"] = strip_html(raw.get("brand"))
        cleaned["images"] = clean_image_urls(raw.get("images") or [])
        return {key: value for key, value in cleaned.items() if value is not None}

    @staticmethod
    def validation_problem(record: Dict[str, Any]) -> Optional[str]:
        if not record.get("title"):
            return "missing title"
        price = record.get("price")
        if not isinstance(price, (int, float)) or isinstance(price, bool) or price <= 0:
            return f"invalid price {price!r}"
        if not is_http_url(record.get("url")):
            return f"invalid url {record.get('url')!r}"
        return None

    def _offer(self) -> Dict[str, Any]:
        json_ld = self.extract_json_ld() or {}
        offers = json_ld.get("offers")
        if isinstance(offers, list):
            offers = offers[0] if offers else None
        return offers if isinstance(offers, dict) else {}

    def _first_selector_text(self, selectors: List[str]) -> Optional[str]:
        for selector in selectors:
            text = self.source.first_text(selector)
            if text and text.strip():
                return text.strip()
        return None


def _is_product_type(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    declared = node.get("@type")
    if isinstance(declared, list):
        return "Product" in declared
    return declared == "Product"


def _find_product_node(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            if _is_product_type(item):
                return item
        return None

    if _is_product_type(data):
        return data

    if isinstance(data, dict) and isinstance(data.get("@graph"), list):
        return _find_product_node(data["@graph"])
    return None


def _text(value: Any) -> Optional[str]:
    """Scalar JSON-LD value as a string; structured values are ignored."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    value = str(value)
    return value if value.strip() else None
