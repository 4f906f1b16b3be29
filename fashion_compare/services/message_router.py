import logging
from typing import Any, Dict

from fashion_compare.exceptions import InvalidCandidateData
from fashion_compare.models.store import ProductStore
from fashion_compare.services.similarity import SimilarityEngine, as_record

logger = logging.getLogger('message_router')

SAVE_PRODUCT = "SAVE_PRODUCT"
GET_SIMILAR_PRODUCTS = "GET_SIMILAR_PRODUCTS"


class BackgroundService:
    """Answers messages sent by page extractors and the popup.

    ``SAVE_PRODUCT`` persists ``data`` and replies ``{"success": bool}``;
    ``GET_SIMILAR_PRODUCTS`` ranks candidates against ``data`` and replies
    ``{"products": [...]}``.
    """

    def __init__(self, store: ProductStore, engine: SimilarityEngine):
        self.store = store
        self.engine = engine

    async def handle_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        message_type = str((message or {}).get("type") or "").strip()
        data = (message or {}).get("data")

        if message_type == SAVE_PRODUCT:
            success = await self.store.save(data or {})
            if success:
                self.engine.cache.invalidate()
            return {"success": success}

        if message_type == GET_SIMILAR_PRODUCTS:
            try:
                query = as_record(data)
            except InvalidCandidateData as e:
                logger.warning(f"Rejected similar-products request: {e}")
                return {"products": []}
            products = await self.engine.similar_to(query)
            return {"products": [p.model_dump(mode="json", by_alias=True, exclude_none=True) for p in products]}

        logger.warning(f"Unknown message type: {message_type!r}")
        return {"error": "unknown message type"}
