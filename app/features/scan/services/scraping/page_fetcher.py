"""
Page fetching strategies.

Two interchangeable fetchers sit behind `PageFetcher`: a headless Chrome
render (selenium, run in a worker thread) and a plain HTTP GET (httpx).
`DowngradingFetcher` is what the pipeline talks to: it tries the preferred
strategy and falls back to plain exactly once.
"""
import asyncio
import logging
import time
from typing import Callable, List, Literal, NamedTuple, Optional

import httpx
from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from app.platform.config import settings

logger = logging.getLogger(__name__)

FetchMode = Literal["rendered", "plain"]


class FetchError(Exception):
    """A single page could not be fetched. Callers skip the page."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{url}: {reason}")


class FetchResult(NamedTuple):
    html: str
    mode_used: FetchMode


class PageFetcher:
    """Base strategy. Subclasses fetch one URL and return its HTML."""

    mode: FetchMode

    async def fetch(self, url: str) -> FetchResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class PlainPageFetcher(PageFetcher):
    mode: FetchMode = "plain"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = settings.PLAIN_TIMEOUT_SECONDS,
        user_agent: str = settings.SCAN_USER_AGENT,
    ):
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            headers={
                "User-Agent": user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )

    @staticmethod
    def _is_html(response: httpx.Response) -> bool:
        return "html" in response.headers.get("content-type", "").lower()

    async def fetch(self, url: str) -> FetchResult:
        try:
            response = await self._client.get(url, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

        # Soft-error pages (404 themes etc.) are still analyzable when they are HTML
        if not response.is_success and not self._is_html(response):
            raise FetchError(url, f"HTTP {response.status_code}", response.status_code)

        return FetchResult(response.text, "plain")

    async def fetch_text(self, url: str, timeout: Optional[float] = None) -> Optional[str]:
        """GET a side document (sitemap, catalog JSON). None on any failure."""
        try:
            response = await self._client.get(url, timeout=timeout or self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Side document fetch failed for {url}: {e}")
            return None
        if not response.is_success:
            logger.debug(f"Side document {url} returned HTTP {response.status_code}")
            return None
        return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RenderedPageFetcher(PageFetcher):
    mode: FetchMode = "rendered"

    def __init__(
        self,
        timeout: float = settings.RENDER_TIMEOUT_SECONDS,
        settle_seconds: float = settings.RENDER_SETTLE_SECONDS,
        driver_factory: Optional[Callable[[], webdriver.Chrome]] = None,
    ):
        self.timeout = timeout
        self.settle_seconds = settle_seconds
        self._driver_factory = driver_factory or RenderedPageFetcher.build_driver

    @staticmethod
    def build_driver() -> webdriver.Chrome:
        chrome_options = Options()
        chrome_options.add_argument('--headless=new')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')
        chrome_options.add_argument(f'--user-agent={settings.SCAN_USER_AGENT}')
        # Return at DOM-ready; the settle delay covers late client-side rendering
        chrome_options.page_load_strategy = "eager"

        if settings.CHROMEDRIVER_PATH:
            driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
            return webdriver.Chrome(service=driver_service, options=chrome_options)
        return webdriver.Chrome(options=chrome_options)

    @staticmethod
    def _quit(drivers: List[webdriver.Chrome]) -> None:
        for driver in drivers:
            try:
                driver.quit()
            except WebDriverException as e:
                logger.debug(f"Browser already gone on quit: {e}")

    def _render(self, url: str, drivers: List[webdriver.Chrome]) -> str:
        driver = self._driver_factory()
        drivers.append(driver)
        try:
            driver.set_page_load_timeout(self.timeout)
            driver.get(url)
            time.sleep(self.settle_seconds)
            return driver.page_source
        finally:
            self._quit([driver])

    async def fetch(self, url: str) -> FetchResult:
        drivers: List[webdriver.Chrome] = []
        render = asyncio.ensure_future(asyncio.to_thread(self._render, url, drivers))
        try:
            html = await asyncio.wait_for(
                asyncio.shield(render),
                timeout=self.timeout + self.settle_seconds,
            )
        except asyncio.TimeoutError as e:
            # Chrome must be gone before the caller's concurrency slot is released
            await asyncio.to_thread(self._quit, drivers)
            await asyncio.gather(render, return_exceptions=True)
            raise FetchError(url, "render timed out") from e
        except (WebDriverException, OSError) as e:
            raise FetchError(url, f"{type(e).__name__}: {getattr(e, 'msg', None) or e}") from e

        return FetchResult(html or "", "rendered")


class DowngradingFetcher:
    """
    fetch(url, preferred_mode) -> (html, mode_used)

    A rendered attempt that fails or times out is retried once in plain mode;
    mode_used tells the caller which strategy actually produced the HTML.
    """

    def __init__(self, rendered: Optional[PageFetcher], plain: PlainPageFetcher):
        self.rendered = rendered
        self.plain = plain

    async def fetch(self, url: str, preferred_mode: FetchMode = "rendered") -> FetchResult:
        if preferred_mode == "rendered" and self.rendered is not None:
            try:
                return await self.rendered.fetch(url)
            except FetchError as e:
                logger.warning(f"Rendered fetch failed for {url} ({e.reason}); retrying in plain mode")
            except Exception as e:
                logger.warning(f"Rendered fetch crashed for {url} ({type(e).__name__}: {e}); retrying in plain mode")
        return await self.plain.fetch(url)

    async def fetch_text(self, url: str, timeout: Optional[float] = None) -> Optional[str]:
        return await self.plain.fetch_text(url, timeout=timeout)

    async def aclose(self) -> None:
        await self.plain.aclose()
        if self.rendered is not None:
            await self.rendered.aclose()


def build_default_fetcher() -> DowngradingFetcher:
    return DowngradingFetcher(rendered=RenderedPageFetcher(), plain=PlainPageFetcher())
