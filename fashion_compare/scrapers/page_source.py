import os
import random
import time
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from dotenv import load_dotenv


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('scraper.page_source')


load_dotenv()

try:
    FETCH_MAX_RETRIES = int(os.getenv("FETCH_MAX_RETRIES", "3"))
    FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
except ValueError as e:
    logger.warning(f"Invalid fetch configuration: {e}. Using defaults")
    FETCH_MAX_RETRIES = 3
    FETCH_TIMEOUT_SECONDS = 30.0


class PageSignalSource(ABC):
    """Read-only view of a loaded product page.

    The extractor only talks to this interface, so it can run against a real
    HTML document or against synthetic fixtures.
    """

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    def json_ld_scripts(self) -> Sequence[str]:
        """Raw text of every ``application/ld+json`` script, in document order."""

    @abstractmethod
    def meta_content(self, prop: str) -> Optional[str]:
        """``content`` of the first ``<meta property=prop>`` tag."""

    @abstractmethod
    def meta_properties(self, prefixes: Sequence[str]) -> List[Tuple[str, str]]:
        """``(property, content)`` for every meta tag whose property starts with a prefix."""

    @abstractmethod
    def first_text(self, selector: str) -> Optional[str]:
        """Text content of the first element matching ``selector``, or None."""

    @abstractmethod
    def image_sources(self, selector: str) -> List[str]:
        """``src`` (or ``data-src``) of every element matching ``selector``."""

    @abstractmethod
    def exists(self, selector: str) -> bool:
        pass

    @abstractmethod
    def document_title(self) -> Optional[str]:
        pass


class HtmlPageSource(PageSignalSource):

    def __init__(self, html: str, url: str):
        self._url = url
        self.soup = BeautifulSoup(html, 'lxml')

    @property
    def url(self) -> str:
        return self._url

    def json_ld_scripts(self) -> List[str]:
        scripts = self.soup.find_all("script", type=lambda t: t and "ld+json" in t.lower())
        return [tag.string or tag.get_text() or "" for tag in scripts]

    def meta_content(self, prop: str) -> Optional[str]:
        tag = self.soup.find("meta", attrs={"property": prop})
        if tag is None:
            return None
        return tag.get("content")

    def meta_properties(self, prefixes: Sequence[str]) -> List[Tuple[str, str]]:
        found = []
        for tag in self.soup.find_all("meta", attrs={"property": True}):
            prop = tag.get("property", "")
            content = tag.get("content")
            if content is not None and prop.startswith(tuple(prefixes)):
                found.append((prop, content))
        return found

    def first_text(self, selector: str) -> Optional[str]:
        elem = self.soup.select_one(selector)
        if elem is None:
            return None
        return elem.get_text()

    def image_sources(self, selector: str) -> List[str]:
        sources = []
        for elem in self.soup.select(selector):
            src = elem.get('src') or elem.get('data-src')
            if src:
                sources.append(urljoin(self._url, src.strip()))
        return sources

    def exists(self, selector: str) -> bool:
        return self.soup.select_one(selector) is not None

    def document_title(self) -> Optional[str]:
        if self.soup.title is None:
            return None
        return self.soup.title.get_text()


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.5 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0",
]

DEFAULT_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


def fetch_page(url: str, max_retries: Optional[int] = None, retry_delay: float = 2) -> str:
    """Download ``url`` and return its HTML.

    Retries with a fresh user agent when the request fails or a captcha page
    comes back; the last error is re-raised.
    """
    max_retries = max_retries or FETCH_MAX_RETRIES
    headers = dict(DEFAULT_HEADERS)
    headers["User-Agent"] = random.choice(USER_AGENTS)

    for attempt in range(max_retries):
        try:
            logger.info(f"Fetching {url} (Attempt {attempt+1}/{max_retries})")

            if attempt > 0:
                headers["Referer"] = "https://www.google.com/"

            response = requests.get(url, headers=headers, timeout=FETCH_TIMEOUT_SECONDS, allow_redirects=True)
            response.raise_for_status()

            text = response.text.lower()
            if "captcha" in text or "robot check" in text:
                logger.warning(f"Captcha detected on attempt {attempt+1}")
                raise requests.RequestException("Captcha detected, could not bypass")

            return response.text
        except requests.RequestException as e:
            logger.error(f"Failed to fetch {url} on attempt {attempt+1}: {e}")
            if attempt < max_retries - 1:
                headers["User-Agent"] = random.choice(USER_AGENTS)
                time.sleep(retry_delay * (attempt + 1))
            else:
                raise
