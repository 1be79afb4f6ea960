import asyncio
import html as html_lib
import logging
import re
from typing import Iterable, List, Optional, Set
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from app.features.scan.services.scraping.page_fetcher import DowngradingFetcher, FetchError
from app.platform.config import settings
from app.platform.utils.url_validator import origin_of

logger = logging.getLogger(__name__)


class PageDiscoveryService:
    """
    Finds candidate pages to scan.

    Three sources feed the page list: links on the home page, the store's
    sitemap, and a shallow crawl of collection pages. `merge_candidates`
    unions them in trust order (sitemap, deep crawl, key paths, the rest).
    """

    KEY_PATH_KEYWORDS = (
        "/product", "/products", "/produit", "/collection", "/collections", "/categor",
        "/cart", "/panier", "/checkout", "/contact", "/about", "/shipping", "/returns", "/pages",
    )
    PRODUCT_URL = re.compile(r"/products?(/|$)|/produits?(/|$)", re.I)
    COLLECTION_URL = re.compile(r"/collections?(/|$)|/categor", re.I)
    PRODUCT_SITEMAP = re.compile(r"product|produit", re.I)
    LOC_PATTERN = re.compile(r"<loc>\s*(?:<!\[CDATA\[)?\s*(.*?)\s*(?:\]\]>)?\s*</loc>", re.I | re.S)
    NON_PAGE_EXTENSIONS = (
        ".xml", ".json", ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg",
        ".pdf", ".css", ".js", ".zip", ".mp4",
    )

    @staticmethod
    def _is_same_domain(url: str, base_domain: str) -> bool:
        """
        Check if URL belongs to the same origin as base.

        Args:
            url: URL to check
            base_domain: Base origin (e.g., "https://example.com")

        Returns:
            True if URL has the same scheme and host, False otherwise
        """
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        if not parsed.scheme or not parsed.netloc:
            return False
        return f"{parsed.scheme}://{parsed.netloc}" == base_domain

    @staticmethod
    def is_product_url(url: str) -> bool:
        return bool(PageDiscoveryService.PRODUCT_URL.search(urlparse(url).path))

    @staticmethod
    def is_collection_url(url: str) -> bool:
        return bool(PageDiscoveryService.COLLECTION_URL.search(urlparse(url).path))

    @staticmethod
    def _is_document(url: str) -> bool:
        path = urlparse(url).path.lower()
        return not path.endswith(PageDiscoveryService.NON_PAGE_EXTENSIONS)

    @staticmethod
    def normalize_page_url(url: str) -> str:
        """Drop the fragment and any trailing slash (except on the root)."""
        url, _ = urldefrag(url)
        parsed = urlparse(url)
        if parsed.path not in ("", "/") and parsed.path.endswith("/"):
            url = parsed._replace(path=parsed.path.rstrip("/")).geturl()
        elif parsed.path == "":
            url = parsed._replace(path="/").geturl()
        return url

    @staticmethod
    def extract_links(html: str, base_url: str) -> List[str]:
        """Same-origin link paths in document order, deduplicated."""
        soup = BeautifulSoup(html or "", "html.parser")
        base_domain = origin_of(base_url)
        paths: List[str] = []
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith("#") or href.lower().startswith(("javascript:", "mailto:", "tel:")):
                continue
            try:
                absolute = urljoin(base_url, href)
            except ValueError:
                continue
            if not PageDiscoveryService._is_same_domain(absolute, base_domain):
                continue
            path = urlparse(absolute).path or "/"
            if path not in paths:
                paths.append(path)
        return paths

    @staticmethod
    def discover_key_pages(
        links: Iterable[str],
        base_url: str,
        max_pages: int = settings.SCAN_MAX_KEY_PATHS,
    ) -> List[str]:
        """Absolute URLs of links whose path carries commerce vocabulary."""
        seen: Set[str] = {urlparse(base_url).path.rstrip("/") or "/"}
        result: List[str] = []
        for path in links:
            if len(result) >= max_pages:
                break
            normalized = path.rstrip("/") or "/"
            if normalized in seen:
                continue
            lower = path.lower()
            if any(keyword in lower for keyword in PageDiscoveryService.KEY_PATH_KEYWORDS):
                seen.add(normalized)
                result.append(urljoin(base_url, path))
        return result

    @staticmethod
    def _parse_locs(xml: str) -> List[str]:
        return [
            html_lib.unescape(loc)
            for loc in PageDiscoveryService.LOC_PATTERN.findall(xml or "")
            if loc
        ]

    @staticmethod
    async def fetch_sitemap_urls(
        base_url: str,
        fetcher: DowngradingFetcher,
        max_urls: int = settings.SCAN_MAX_SITEMAP_PRODUCTS,
        max_sub_sitemaps: int = settings.SCAN_MAX_SUB_SITEMAPS,
    ) -> List[str]:
        """
        Product URLs declared in /sitemap.xml.

        Handles both a flat sitemap and a sitemap index. A sub-sitemap that
        fails to load contributes nothing; it never fails the others.
        """
        timeout = settings.SITEMAP_TIMEOUT_SECONDS
        main_xml = await fetcher.fetch_text(f"{origin_of(base_url)}/sitemap.xml", timeout=timeout)
        if not main_xml:
            return []

        locs = PageDiscoveryService._parse_locs(main_xml)
        sub_sitemaps = [u for u in locs if urlparse(u).path.lower().endswith(".xml")]
        urls = [
            u for u in locs
            if u not in sub_sitemaps and PageDiscoveryService.is_product_url(u)
        ]

        product_sitemaps = [u for u in sub_sitemaps if PageDiscoveryService.PRODUCT_SITEMAP.search(u)]
        to_fetch = (product_sitemaps or sub_sitemaps[:3])[:max_sub_sitemaps]
        if to_fetch:
            logger.info(f"Sitemap index for {base_url}: reading {len(to_fetch)} of {len(sub_sitemaps)} sub-sitemaps")

        sub_documents = await asyncio.gather(
            *(fetcher.fetch_text(u, timeout=timeout) for u in to_fetch),
            return_exceptions=True,
        )
        for sitemap_url, xml in zip(to_fetch, sub_documents):
            if isinstance(xml, Exception):
                logger.warning(f"Sub-sitemap {sitemap_url} failed: {xml}")
                continue
            if not xml:
                logger.info(f"Sub-sitemap {sitemap_url} unavailable, skipping")
                continue
            urls.extend(
                u for u in PageDiscoveryService._parse_locs(xml)
                if not urlparse(u).path.lower().endswith(".xml")
            )

        return list(dict.fromkeys(urls))[:max_urls]

    @staticmethod
    async def _product_links_from(url: str, base_url: str, fetcher: DowngradingFetcher) -> List[str]:
        try:
            html, _ = await fetcher.fetch(url, preferred_mode="plain")
        except FetchError as e:
            logger.debug(f"Deep crawl skipped {url}: {e.reason}")
            return []
        return [
            urljoin(base_url, path)
            for path in PageDiscoveryService.extract_links(html, base_url)
            if PageDiscoveryService.is_product_url(path)
        ]

    @staticmethod
    async def deep_crawl(
        collection_urls: Iterable[str],
        base_url: str,
        fetcher: DowngradingFetcher,
        max_pages: int = settings.SCAN_MAX_DEEP_CRAWL,
    ) -> List[str]:
        """Product links found on a few collection/category pages."""
        targets = list(collection_urls)[:max_pages]
        if not targets:
            return []
        results = await asyncio.gather(
            *(PageDiscoveryService._product_links_from(u, base_url, fetcher) for u in targets)
        )
        found: List[str] = []
        for links in results:
            found.extend(links)
        return list(dict.fromkeys(found))

    @staticmethod
    def merge_candidates(
        base_url: str,
        sitemap_urls: Iterable[str] = (),
        deep_crawl_urls: Iterable[str] = (),
        key_urls: Iterable[str] = (),
        other_urls: Iterable[str] = (),
        exclude: Optional[Iterable[str]] = None,
        max_pages: int = settings.SCAN_MAX_PAGES,
    ) -> List[str]:
        """
        One ordered page list from every discovery source.

        Sitemap entries win ties, then deep-crawl finds, then home-page key
        paths, then any other home link. XML documents, off-site URLs and
        anything in `exclude` are dropped before truncating to `max_pages`.
        """
        base_domain = origin_of(base_url)
        excluded = {PageDiscoveryService.normalize_page_url(u) for u in (exclude or [])}
        merged: List[str] = []

        for source in (sitemap_urls, deep_crawl_urls, key_urls, other_urls):
            for raw in source:
                if len(merged) >= max_pages:
                    return merged
                try:
                    absolute = PageDiscoveryService.normalize_page_url(urljoin(base_url, raw))
                except ValueError:
                    continue
                if not PageDiscoveryService._is_same_domain(absolute, base_domain):
                    continue
                if not PageDiscoveryService._is_document(absolute):
                    continue
                if absolute in excluded:
                    continue
                excluded.add(absolute)
                merged.append(absolute)

        return merged
