import math
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fashion_compare.scrapers.normalizer import clean_image_urls


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_http_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url)
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)


def domain_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


class Product(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(..., description="Product page URL, used as the storage key")
    title: str = Field(..., description="Plain-text product title")
    price: float = Field(..., description="Price in the page's native currency")
    images: List[str] = Field(default_factory=list, description="Absolute image URLs without query strings")
    description: Optional[str] = Field(None, description="Plain-text description")
    brand: Optional[str] = Field(None, description="Plain-text brand name")
    metadata: Dict[str, str] = Field(default_factory=dict, description="Merged JSON-LD and meta tag values")
    timestamp: datetime = Field(default_factory=utcnow, description="Extraction timestamp")
    saved_timestamp: Optional[datetime] = Field(
        None, alias="savedTimestamp", description="Set by the store when the record is accepted"
    )

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError(f"url must be an absolute http(s) URL, got {value!r}")
        return value

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("title must not be empty")
        return value

    @field_validator("price")
    @classmethod
    def _check_price(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"price must be a positive number, got {value!r}")
        return value

    @field_validator("images")
    @classmethod
    def _clean_images(cls, value: List[str]) -> List[str]:
        # relative URLs are dropped here; the extractor resolves them first
        return clean_image_urls(value)

    @field_validator("description", "brand")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value

    @property
    def domain(self) -> Optional[str]:
        return domain_of(self.url)

    def to_record(self) -> dict:
        """Serialized form used inside the storage blob; absent fields are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Candidate(BaseModel):
    """Loosely validated record the similarity engine can rank.

    Candidate suppliers do not always know a URL (the placeholder feed only
    carries a domain), so nothing here is required beyond being parseable.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    title: str = ""
    price: Optional[float] = None
    url: Optional[str] = None
    domain: Optional[str] = None
    images: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("title") is None:
            data["title"] = ""
        if data.get("domain"):
            data["domain"] = domain_of(f"http://{data['domain']}")
        else:
            data["domain"] = domain_of(data.get("url"))
        return data


class ExtractionFailure(BaseModel):
    reason: str = Field(..., description="InvalidProductData or ExtractionError")
    url: Optional[str] = None
    detail: Optional[str] = None
