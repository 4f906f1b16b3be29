import os
import math
import re
import time
import logging
from typing import Any, Callable, List, Optional, Protocol, Sequence, Union

from dotenv import load_dotenv
from pydantic import ValidationError

from fashion_compare.exceptions import InvalidCandidateData
from fashion_compare.models.schemas import Candidate, Product

load_dotenv()
logger = logging.getLogger('similarity')

TITLE_WEIGHT = 0.6
PRICE_WEIGHT = 0.4
SAME_DOMAIN_PENALTY = 0.5


def _env_number(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    numeric_part = re.search(r'^\d+\.?\d*', raw.strip())
    if numeric_part:
        return float(numeric_part.group(0))
    logger.warning(f"Error parsing {name}={raw!r}. Using default value of {default}")
    return default


SIMILARITY_THRESHOLD = _env_number("SIMILARITY_THRESHOLD", 0.6)
MAX_RESULTS = int(_env_number("SIMILARITY_MAX_RESULTS", 5))

Record = Union[Product, Candidate]


class CandidateSource(Protocol):
    async def fetch_candidates(self) -> List[Record]:
        ...


class PlaceholderCandidateSource:
    """Stand-in feed until a real comparison catalogue exists."""

    RECORDS = [
        {"title": "Blue Denim Jacket", "price": 89.99, "domain": "example.com"},
        {"title": "Vintage Blue Jeans", "price": 79.99, "domain": "shop.com"},
    ]

    async def fetch_candidates(self) -> List[Candidate]:
        return [Candidate(**record) for record in self.RECORDS]


class StoreCandidateSource:
    """Previously captured products as comparison candidates."""

    def __init__(self, store):
        self.store = store

    async def fetch_candidates(self) -> List[Product]:
        products = await self.store.get_all()
        return list(products.values())


class CandidateCache:
    """Holds the last fetched candidate list for ``ttl_seconds``.

    ``invalidate()`` forces the next lookup to refetch, e.g. after a save.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock or time.monotonic
        self._candidates: Optional[List[Record]] = None
        self._fetched_at = 0.0

    async def get(self, source: CandidateSource) -> List[Record]:
        now = self.clock()
        if self._candidates is None or now - self._fetched_at > self.ttl_seconds:
            self._candidates = list(await source.fetch_candidates())
            self._fetched_at = now
            logger.debug(f"Fetched {len(self._candidates)} candidates")
        return list(self._candidates)

    def invalidate(self) -> None:
        self._candidates = None


class SimilarityEngine:

    def __init__(
        self,
        candidate_source: Optional[CandidateSource] = None,
        cache: Optional[CandidateCache] = None,
        threshold: Optional[float] = None,
        max_results: Optional[int] = None,
    ):
        self.candidate_source = candidate_source or PlaceholderCandidateSource()
        self.cache = cache or CandidateCache()
        self.threshold = SIMILARITY_THRESHOLD if threshold is None else threshold
        self.max_results = MAX_RESULTS if max_results is None else max_results
        logger.info(f"Similarity engine initialized with threshold {self.threshold}")

    @staticmethod
    def text_similarity(text1: str, text2: str) -> float:
        words1 = set((text1 or "").lower().split())
        words2 = set((text2 or "").lower().split())
        if not words1 or not words2:
            return 0.0
        return len(words1 & words2) / max(len(words1), len(words2))

    @staticmethod
    def price_similarity(query_price: float, candidate_price: float) -> float:
        # Relative to the query price only, so the measure is not symmetric.
        return 1 - abs(query_price - candidate_price) / query_price

    def calculate_similarity(self, query: Record, candidate: Record) -> float:
        query_price = _price_of(query, "query")
        candidate_price = _price_of(candidate, "candidate")

        title_score = self.text_similarity(query.title, candidate.title)
        price_score = self.price_similarity(query_price, candidate_price)

        penalty = 1.0
        if query.domain and query.domain == candidate.domain:
            penalty = SAME_DOMAIN_PENALTY

        similarity = (title_score * TITLE_WEIGHT + price_score * PRICE_WEIGHT) * penalty
        return max(0.0, min(1.0, similarity))

    def find_similar_products(self, query: Any, candidates: Sequence[Any]) -> List[Record]:
        """Candidates scoring above the threshold, best first, at most ``max_results``."""
        try:
            query = as_record(query)
            _price_of(query, "query")
        except InvalidCandidateData as e:
            logger.warning(f"Cannot rank candidates for an invalid query: {e}")
            return []

        scored = []
        for candidate in candidates:
            try:
                candidate = as_record(candidate)
                score = self.calculate_similarity(query, candidate)
            except InvalidCandidateData as e:
                logger.warning(f"Skipping candidate: {e}")
                continue
            if score > self.threshold:
                scored.append((score, candidate))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [candidate for _, candidate in scored[:self.max_results]]

    async def similar_to(self, query: Any) -> List[Record]:
        try:
            candidates = await self.cache.get(self.candidate_source)
        except Exception as e:
            logger.error(f"Similar product search error: {e}")
            return []

        query_url = getattr(query, "url", None) or (query.get("url") if isinstance(query, dict) else None)
        if query_url:
            candidates = [c for c in candidates if getattr(c, "url", None) != query_url]
        return self.find_similar_products(query, candidates)


def as_record(value: Any) -> Record:
    if isinstance(value, (Product, Candidate)):
        return value
    if not isinstance(value, dict):
        raise InvalidCandidateData(f"cannot score a {type(value).__name__}")
    try:
        return Candidate.model_validate(value)
    except ValidationError as e:
        raise InvalidCandidateData(str(e)) from e


def _price_of(record: Record, role: str) -> float:
    price = record.price
    if price is None or not math.isfinite(price):
        raise InvalidCandidateData(f"{role} has no usable price")
    if role == "query" and price <= 0:
        raise InvalidCandidateData(f"query price must be positive, got {price}")
    return price
