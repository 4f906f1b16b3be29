import re
import math
import logging
from typing import Iterable, List, Optional, Union

from bs4 import BeautifulSoup

logger = logging.getLogger('scraper.normalizer')

NUMERIC_RUN = re.compile(r'[0-9.]+')
DECIMAL_PREFIX = re.compile(r'[0-9]*(?:\.[0-9]*)?')


def normalize_price(raw: Union[str, int, float, None]) -> Optional[float]:
    """Parse the first run of digits and dots in ``raw`` as a float.

    Currency symbols, thousands separators and trailing text are not
    interpreted: ``"$1,299.00"`` yields ``1.0`` because the comma ends the
    first run. Inside the run only the longest valid decimal prefix is kept,
    so ``"1.2.3"`` yields ``1.2``.
    """
    if raw is None or isinstance(raw, bool):
        return None

    match = NUMERIC_RUN.search(str(raw))
    if not match:
        return None

    prefix = DECIMAL_PREFIX.match(match.group(0)).group(0)
    if not any(ch.isdigit() for ch in prefix):
        logger.debug(f"Numeric run '{match.group(0)}' has no digits")
        return None

    value = float(prefix)
    if not math.isfinite(value):
        return None
    return value


def strip_html(raw) -> Optional[str]:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raw = str(raw)
    if not raw.strip():
        return None

    text = BeautifulSoup(raw, 'lxml').get_text().strip()
    return text or None


def clean_image_urls(urls: Iterable[Optional[str]]) -> List[str]:
    cleaned = []
    seen = set()
    for url in urls:
        if not url or not isinstance(url, str):
            continue
        if not url.lower().startswith(('http://', 'https://')):
            continue
        url = url.split('?')[0]
        if url not in seen:
            seen.add(url)
            cleaned.append(url)
    return cleaned
