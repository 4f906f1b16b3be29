# conftest.py
# Shared fixtures: a controllable clock, in-memory host storage and a store
# wired to both, plus product page HTML used by the extractor tests.

from datetime import datetime, timedelta, timezone

import pytest

from fashion_compare.models.database import MemoryKeyValueStorage
from fashion_compare.models.schemas import Product
from fashion_compare.models.store import ProductStore


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryKeyValueStorage()


@pytest.fixture
def store(storage, clock):
    return ProductStore(storage, max_items=100, retention=timedelta(days=30), clock=clock)


@pytest.fixture
def make_product(clock):
    def _make(url="https://shop.example.com/p/1", title="Blue Denim Jacket", price=89.99, **extra):
        return Product(url=url, title=title, price=price, timestamp=clock(), **extra)
    return _make


PRODUCT_PAGE = """
<html>
<head>
  <title>Classic Trench Coat | Example Store</title>
  <meta property="og:title" content="OG Trench Coat">
  <meta property="og:image" content="https://cdn.example.com/og.jpg?w=600">
  <meta property="og:description" content="From the og tag">
  <meta property="product:price:amount" content="199.00">
  <meta property="product:brand" content="Meta Brand">
  <meta property="product:color" content="beige">
  <meta property="og:type" content="product">
  <script type="application/ld+json">
  {
    "@context": "https://schema.org",
    "@type": "Product",
    "name": "Classic <b>Trench</b> Coat",
    "image": ["https://cdn.example.com/a.jpg?v=1", "https://cdn.example.com/b.jpg"],
    "description": "<p>Water-resistant cotton gabardine.</p>",
    "sku": "TC-001",
    "color": "khaki",
    "brand": {"@type": "Brand", "name": "Heritage &amp; Co"},
    "offers": {
      "@type": "Offer",
      "price": "179.50",
      "priceCurrency": "USD",
      "availability": "https://schema.org/InStock",
      "itemCondition": "https://schema.org/NewCondition"
    }
  }
  </script>
</head>
<body>
  <h1>Heading Trench</h1>
  <div class="product-gallery">
    <img src="/images/c.jpg?crop=1">
    <img data-src="https://cdn.example.com/b.jpg">
    <img src="data:image/gif;base64,R0lGOD">
  </div>
  <span class="price">$149.00</span>
</body>
</html>
"""


@pytest.fixture
def product_page():
    return PRODUCT_PAGE
