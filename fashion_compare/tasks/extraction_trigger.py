"""Fires product extraction at most once per page view.

Two paths race to fire: the mutation observer (``on_mutation``) and a fallback
timer started by ``start``. Whichever gets there first runs the extraction;
the ``extracted`` flag is set before any await, so the other path is a no-op.
"""
import re
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from fashion_compare.models.schemas import Product
from fashion_compare.scrapers.page_source import PageSignalSource

logger = logging.getLogger('trigger')

PRODUCT_URL_PATTERN = re.compile(r'/product|/p/|/item|/dp/|/stores/')

PRODUCT_PAGE_SELECTORS = [
    '[data-product-id], [data-pid], #product, .product, [itemtype*="Product"]',
    '.price, [data-price], .product-price, [itemprop="price"]',
    'button:-soup-contains("Add to Cart")',
    '.product-gallery, .product-images, [data-gallery]',
]


def is_product_page(source: PageSignalSource) -> bool:
    if PRODUCT_URL_PATTERN.search(source.url or ""):
        return True
    for selector in PRODUCT_PAGE_SELECTORS:
        try:
            if source.exists(selector):
                return True
        except Exception as e:
            logger.error(f"Product detection error for '{selector}': {e}")
    return False


class ExtractionTrigger:

    def __init__(
        self,
        extract: Callable[[], Any],
        submit: Callable[[Product], Union[Awaitable[Any], Any]],
        is_ready: Optional[Callable[[], bool]] = None,
        fallback_delay: float = 2.0,
    ):
        self.extract = extract
        self.submit = submit
        self.is_ready = is_ready or (lambda: True)
        self.fallback_delay = fallback_delay
        self.extracted = False
        self.observer_connected = True
        self._timer: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        """Schedule the fallback timer on the running loop."""
        self._timer = asyncio.create_task(self._fallback())
        return self._timer

    async def on_mutation(self) -> bool:
        if not self.observer_connected:
            return False
        fired = await self._fire("observer")
        if fired:
            self.observer_connected = False
            self.cancel()
        return fired

    async def on_timeout(self) -> bool:
        return await self._fire("timer")

    def reset(self) -> None:
        """Start a new page view, e.g. after the tab navigated."""
        self.cancel()
        self.extracted = False
        self.observer_connected = True

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _fallback(self) -> None:
        await asyncio.sleep(self.fallback_delay)
        await self.on_timeout()

    async def _fire(self, path: str) -> bool:
        if self.extracted:
            logger.debug(f"Extraction already fired, ignoring {path}")
            return False
        try:
            if not self.is_ready():
                return False
        except Exception as e:
            logger.error(f"Product page check failed on {path}: {e}")
            return False

        self.extracted = True
        logger.info(f"Extraction triggered by {path}")

        try:
            result = self.extract()
            if inspect.isawaitable(result):
                result = await result

            if not isinstance(result, Product):
                logger.error(f"Invalid product data extracted: {getattr(result, 'detail', result)}")
                return True

            outcome = self.submit(result)
            if inspect.isawaitable(outcome):
                await outcome
            logger.info(f"Product detected: {result.title}")
        except Exception as e:
            logger.error(f"Product extraction failed: {e}")
        return True
