import asyncio
from typing import Callable, Dict, List, Optional

from app.features.scan.services.scraping.page_fetcher import FetchError, FetchResult

STORE = "https://shop.example.com"

HOME_HTML = """
<html>
<head>
  <title>Example Shop - Handmade mugs</title>
  <meta name="description" content="Handmade ceramic mugs shipped from Lyon.">
  <meta name="viewport" content="width=device-width, initial-scale=1">
</head>
<body>
  <header>
    <a href="/collections/mugs">Mugs</a>
    <a href="/cart">Cart</a>
    <a href="/pages/contact">Contact</a>
  </header>
  <h1>Handmade mugs for slow mornings</h1>
  <a class="btn" href="/collections/mugs">Shop now - Buy today</a>
  <p>Free shipping and 30-day returns. Secure payment.</p>
  <p>4.8 stars from 120 reviews</p>
</body>
</html>
"""

BARE_HTML = "<html><head><title>Coming soon</title></head><body><p>Hello</p></body></html>"


def product_html(name: str, price: str) -> str:
    return f"""
<html>
<head><title>{name}</title></head>
<body>
  <h1>{name}</h1>
  <span class="price">{price}</span>
  <button>Add to cart</button>
  <img src="/a.jpg" alt="{name}"><img src="/b.jpg" alt=""><img src="/c.jpg" alt="{name} side">
</body>
</html>
"""


def sitemap_xml(urls: List[str]) -> str:
    locs = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset>{locs}</urlset>'


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeFetcher:
    """In-memory stand-in for DowngradingFetcher."""

    def __init__(
        self,
        pages: Dict[str, str],
        texts: Optional[Dict[str, str]] = None,
        mode: str = "rendered",
        delay: float = 0.0,
        on_fetch: Optional[Callable[[str], None]] = None,
    ):
        self.pages = pages
        self.texts = texts or {}
        self.mode = mode
        self.delay = delay
        self.on_fetch = on_fetch
        self.fetched: List[str] = []
        self.texts_requested: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def fetch(self, url: str, preferred_mode: str = "rendered") -> FetchResult:
        self.fetched.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.on_fetch is not None:
                self.on_fetch(url)
            if url not in self.pages:
                raise FetchError(url, "HTTP 404", 404)
            mode = "plain" if preferred_mode == "plain" else self.mode
            return FetchResult(self.pages[url], mode)
        finally:
            self.in_flight -= 1

    async def fetch_text(self, url: str, timeout: Optional[float] = None) -> Optional[str]:
        self.texts_requested.append(url)
        return self.texts.get(url)

    async def aclose(self) -> None:
        self.closed = True

