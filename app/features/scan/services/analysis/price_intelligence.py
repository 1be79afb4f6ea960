"""
Store price aggregation and a best-effort competitor benchmark.

The competitor lookup scrapes a public search results page. It is isolated
here and swallows its own failures: the worst outcome is a null estimate.
"""
import asyncio
import logging
import re
from typing import Iterable, List, Optional

import httpx
from bs4 import BeautifulSoup

from app.features.scan.schemas.scan import PriceInsights
from app.platform.config import settings

logger = logging.getLogger(__name__)

MAX_DETECTED_PRICES = 40
MAX_COMPETITOR_QUERIES = 3
MIN_TITLE_CHARS = 4

# Search-page tokens outside this range are noise (years, phone numbers, ...)
SEARCH_PRICE_FLOOR = 1
SEARCH_PRICE_CEILING = 50000

# Competitor prices must land strictly inside (0.1x, 5x) of the store average
COMPETITOR_LOW_RATIO = 0.1
COMPETITOR_HIGH_RATIO = 5

SEARCH_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
PRICE_TOKEN = re.compile(r"[€$£]\s?\d+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?\s?[€$£]")


def build_price_insights(
    detected_prices: Iterable[float],
    product_pages: Iterable[str],
    competitor_average_price: Optional[float] = None,
) -> PriceInsights:
    prices = list(dict.fromkeys(p for p in detected_prices if p and p > 0))[:MAX_DETECTED_PRICES]
    insights = PriceInsights(
        detected_prices=prices,
        product_pages=list(dict.fromkeys(product_pages)),
        competitor_average_price=competitor_average_price,
    )
    if prices:
        insights.own_average_price = round(sum(prices) / len(prices), 2)
        insights.own_min_price = round(min(prices), 2)
        insights.own_max_price = round(max(prices), 2)
    return insights


def extract_price_tokens(text: str) -> List[float]:
    values = []
    for token in PRICE_TOKEN.findall(text or ""):
        cleaned = re.sub(r"[^\d.,]", "", token).replace(",", ".", 1)
        try:
            value = float(cleaned)
        except ValueError:
            continue
        if SEARCH_PRICE_FLOOR < value < SEARCH_PRICE_CEILING:
            values.append(value)
    return values


def plausible_competitor_average(candidates: Iterable[float], own_average: float) -> Optional[float]:
    low = own_average * COMPETITOR_LOW_RATIO
    high = own_average * COMPETITOR_HIGH_RATIO
    kept = [p for p in candidates if low < p < high]
    if not kept:
        return None
    return round(sum(kept) / len(kept), 2)


async def _search_prices(client: httpx.AsyncClient, title: str) -> List[float]:
    try:
        response = await client.get(
            settings.COMPETITOR_SEARCH_URL,
            params={"q": f"{title} price"},
            headers={"User-Agent": SEARCH_USER_AGENT},
            timeout=settings.COMPETITOR_SEARCH_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.debug(f"Competitor lookup failed for '{title}': {e}")
        return []
    if response.status_code != 200:
        logger.debug(f"Competitor lookup for '{title}' returned HTTP {response.status_code}")
        return []
    text = BeautifulSoup(response.text, "html.parser").get_text(" ")
    return extract_price_tokens(text)


async def estimate_competitor_price(
    titles: Iterable[str],
    own_average: Optional[float],
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[float]:
    """
    Average of plausible competitor prices for up to three product titles.

    Returns None when disabled, when there is nothing to compare against, or
    when the lookups produce nothing usable. Never raises.
    """
    if not settings.COMPETITOR_LOOKUP_ENABLED or not own_average:
        return None
    queries = [t.strip() for t in titles if t and len(t.strip()) >= MIN_TITLE_CHARS]
    queries = list(dict.fromkeys(queries))[:MAX_COMPETITOR_QUERIES]
    if not queries:
        return None

    owns_client = client is None
    client = client or httpx.AsyncClient(follow_redirects=True)
    try:
        results = await asyncio.gather(
            *(_search_prices(client, title) for title in queries),
            return_exceptions=True,
        )
    finally:
        if owns_client:
            await client.aclose()

    candidates: List[float] = []
    for result in results:
        if isinstance(result, BaseException):
            logger.warning(f"Competitor lookup raised {type(result).__name__}: {result}")
            continue
        candidates.extend(result)

    estimate = plausible_competitor_average(candidates, own_average)
    logger.info(f"Competitor estimate from {len(candidates)} price tokens: {estimate}")
    return estimate
