"""Task definitions for capturing and comparing products."""
import asyncio
import logging
from typing import List, Optional

from fashion_compare.models.schemas import Product
from fashion_compare.models.store import ProductStore
from fashion_compare.scrapers.page_source import HtmlPageSource, fetch_page
from fashion_compare.scrapers.product_extractor import ProductExtractor
from fashion_compare.services.similarity import Record, SimilarityEngine
from fashion_compare.tasks.extraction_trigger import ExtractionTrigger, is_product_page

logger = logging.getLogger('tasks')


async def capture_product(
    url: str,
    store: ProductStore,
    html: Optional[str] = None,
    check_page: bool = True,
) -> Optional[Product]:
    """Fetch ``url`` (unless ``html`` is given), extract its product and save it.

    With ``check_page`` the page must look like a product page first.
    """
    try:
        if html is None:
            html = await asyncio.to_thread(fetch_page, url)
    except Exception as e:
        logger.error(f"Error fetching product page {url}: {e}")
        return None

    source = HtmlPageSource(html, url)
    captured: List[Product] = []

    async def submit(product: Product):
        if await store.save(product):
            captured.append(product)

    trigger = ExtractionTrigger(
        extract=ProductExtractor(source).extract,
        submit=submit,
        is_ready=(lambda: is_product_page(source)) if check_page else None,
    )
    if not await trigger.on_timeout():
        logger.info(f"{url} does not look like a product page")
        return None

    if not captured:
        logger.error(f"No product captured from {url}")
        return None

    product = captured[0]
    logger.info(f"Successfully captured {product.title}: {product.price}")
    return product


async def find_similar_for_url(url: str, store: ProductStore, engine: SimilarityEngine) -> List[Record]:
    product = await store.get(url)
    if product is None:
        logger.info(f"No stored product for {url}")
        return []

    matches = await engine.similar_to(product)
    logger.info(f"Found {len(matches)} similar products for {product.title}")
    return matches
