import os
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union

from dotenv import load_dotenv
from pydantic import ValidationError

from fashion_compare.models.database import KeyValueStorage
from fashion_compare.models.schemas import Product, utcnow

load_dotenv()
logger = logging.getLogger('store')

STORAGE_KEY = "fashion_compare_data_v2"

try:
    MAX_STORAGE_ITEMS = int(os.getenv("STORE_MAX_ITEMS", "100"))
    RETENTION_DAYS = float(os.getenv("STORE_RETENTION_DAYS", "30"))
except ValueError as e:
    logger.warning(f"Invalid store configuration: {e}. Using 100 items / 30 days")
    MAX_STORAGE_ITEMS = 100
    RETENTION_DAYS = 30.0


class ProductStore:
    """Bounded product persistence over one blob in host key-value storage.

    The whole blob is read, evicted, updated and written back on every save.
    The lock below only serializes saves within this process; two processes
    sharing a backend still race and the last writer wins.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        storage_key: str = STORAGE_KEY,
        max_items: Optional[int] = None,
        retention: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.storage_key = storage_key
        self.max_items = MAX_STORAGE_ITEMS if max_items is None else max_items
        self.retention = timedelta(days=RETENTION_DAYS) if retention is None else retention
        self.clock = clock or utcnow
        self._lock = asyncio.Lock()

    async def get_all(self) -> Dict[str, Product]:
        try:
            blob = await self._read_blob()
        except Exception as e:
            logger.error(f"Get all products error: {e}")
            return {}

        products = {}
        for url, record in blob.items():
            try:
                products[url] = Product.model_validate(record)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable stored record for {url}: {e}")
        return products

    async def get(self, url: str) -> Optional[Product]:
        products = await self.get_all()
        return products.get(url)

    async def save(self, product: Union[Product, Dict[str, Any]]) -> bool:
        try:
            if not isinstance(product, Product):
                product = Product.model_validate(product)

            async with self._lock:
                blob = await self._read_blob()
                now = self.clock()
                self.clean_old_entries(blob, now, incoming=product.url)

                blob.pop(product.url, None)
                saved = product.model_copy(update={"saved_timestamp": now})
                blob[product.url] = saved.to_record()

                await self.storage.set({self.storage_key: blob})

            logger.info(f"Saved product {product.url} ({len(blob)} stored)")
            return True
        except Exception as e:
            logger.error(f"Save product error: {e}")
            return False

    async def clear(self) -> bool:
        try:
            async with self._lock:
                await self.storage.remove(self.storage_key)
            logger.info("Cleared all stored products")
            return True
        except Exception as e:
            logger.error(f"Clear data error: {e}")
            return False

    def clean_old_entries(self, blob: Dict[str, Any], now: datetime, incoming: Optional[str] = None) -> None:
        """Evict expired entries, then the oldest ones until a new record fits.

        ``incoming`` is the URL about to be written; when it is already stored
        it replaces its own entry and needs no extra room.
        """
        for url in list(blob):
            saved_at = _saved_at(blob[url])
            if saved_at is None or now - saved_at > self.retention:
                logger.info(f"Evicting expired product {url}")
                del blob[url]

        capacity = self.max_items
        if incoming is not None and incoming not in blob:
            capacity -= 1
        if len(blob) <= capacity:
            return

        oldest_first = sorted(
            enumerate(blob),
            key=lambda item: (_sort_time(blob[item[1]]), item[0]),
        )
        for _, url in oldest_first[:len(blob) - capacity]:
            logger.info(f"Evicting product {url} to stay within {self.max_items} items")
            del blob[url]

    async def _read_blob(self) -> Dict[str, Any]:
        result = await self.storage.get(self.storage_key)
        blob = (result or {}).get(self.storage_key) or {}
        if not isinstance(blob, dict):
            raise ValueError(f"Stored blob under '{self.storage_key}' is not a mapping")
        return blob


def _saved_at(record: Any) -> Optional[datetime]:
    if not isinstance(record, dict):
        return None
    value = record.get("savedTimestamp")
    try:
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            # epoch milliseconds written by older clients
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sort_time(record: Any) -> datetime:
    return _saved_at(record) or datetime.min.replace(tzinfo=timezone.utc)
