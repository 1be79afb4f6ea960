"""
Scan orchestration.

Runs one storefront scan as a phase pipeline:

    FETCH_HOME -> DISCOVER_PAGES -> EXTRACT -> SCORE -> AI_SUMMARY -> DONE

with FAILED reserved for an unusable request. Degraded runs (unreachable
pages, unreachable home page, AI outage) still finish at DONE with a
baseline result and a lowered confidence.
"""
import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Union
from urllib.parse import urljoin

from app.features.scan.schemas.scan import (
    AIStatus,
    ProductAnalysis,
    ProgressEvent,
    RawDiagnostics,
    ScanRequest,
    ScanResult,
    Timings,
)
from app.features.scan.schemas.signals import PageSignals
from app.features.scan.services.analysis.ai_augmenter import (
    AIAugmenter,
    AIAugmentError,
    AI_BAD_JSON,
    merge_ai_patch,
)
from app.features.scan.services.analysis.baseline_scorer import compute_baseline
from app.features.scan.services.analysis.price_intelligence import (
    build_price_insights,
    estimate_competitor_price,
)
from app.features.scan.services.analysis.product_analyzer import (
    analyze_commerce_products,
    analyze_product_page,
    fetch_public_catalog,
    products_from_structured_data,
)
from app.features.scan.services.analysis.scan_prompt import (
    SCAN_SYSTEM_PROMPT,
    build_scan_user_message,
)
from app.features.scan.services.discovery.page_discovery import PageDiscoveryService
from app.features.scan.services.extraction.extractor_service import ExtractorService
from app.features.scan.services.scraping.page_fetcher import (
    DowngradingFetcher,
    FetchError,
    build_default_fetcher,
)
from app.platform.config import settings
from app.platform.exceptions import ScanPipelineError
from app.platform.utils.url_validator import origin_of, validate_url

logger = logging.getLogger(__name__)

MAX_RESULT_PRODUCTS = 40
AI_UNEXPECTED_ERROR = "AI_UNEXPECTED_ERROR"

ProgressSink = Callable[[int, str, str], Union[None, Awaitable[None]]]
CompetitorLookup = Callable[[List[str], Optional[float]], Awaitable[Optional[float]]]


class ScanStep(str, Enum):
    FETCH_HOME = "FETCH_HOME"
    DISCOVER_PAGES = "DISCOVER_PAGES"
    EXTRACT = "EXTRACT"
    SCORE = "SCORE"
    AI_SUMMARY = "AI_SUMMARY"
    DONE = "DONE"
    FAILED = "FAILED"


TERMINAL_STEPS = (ScanStep.DONE, ScanStep.FAILED)


class ProgressReporter:
    """
    Wraps the caller's progress sink.

    Percent never goes backwards, and only a terminal step (DONE or FAILED)
    may report 100. The sink may be a plain function or a coroutine function.
    """

    def __init__(self, sink: Optional[ProgressSink] = None, job_id: Optional[str] = None):
        self._sink = sink
        self._job_id = job_id
        self.percent = 0
        self.events: List[ProgressEvent] = []

    async def emit(self, percent: int, step: ScanStep, message: str) -> None:
        if step in TERMINAL_STEPS:
            percent = 100
        else:
            percent = min(max(int(percent), self.percent), 99)
        self.percent = percent

        event = ProgressEvent(percent=percent, step=step.value, message=message)
        self.events.append(event)
        logger.info(f"[{self._job_id}] {event.percent}% {event.step}: {event.message}")

        if self._sink is None:
            return
        try:
            outcome = self._sink(event.percent, event.step, event.message)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            # Observers are advisory; a broken sink never stops the scan
            logger.warning(f"[{self._job_id}] Progress sink failed: {e}")


class ScanCollector:
    """
    Everything a scan accumulates across phases.

    Only the orchestrating coroutine writes here; fan-out fetches write to
    their own slots and are folded in afterwards, in candidate order.
    """

    def __init__(self):
        self.pages_scanned: List[str] = []
        self.signals: List[PageSignals] = []
        self.product_analyses: List[ProductAnalysis] = []
        self.detected_prices: List[float] = []
        self.product_pages: List[str] = []
        self.seen_urls: Set[str] = set()
        self.seen_products: Set[str] = set()
        self.pages_failed = 0
        self.pages_downgraded = 0
        self.budget_exhausted = False

    def add_page(self, url: str, signals: PageSignals, prices: Iterable[float]) -> bool:
        if url in self.seen_urls:
            return False
        self.seen_urls.add(url)
        self.pages_scanned.append(url)
        self.signals.append(signals)
        self.detected_prices.extend(prices)
        return True

    def add_products(self, analyses: Iterable[ProductAnalysis]) -> int:
        added = 0
        for analysis in analyses:
            if analysis.url in self.seen_products:
                continue
            self.seen_products.add(analysis.url)
            self.product_analyses.append(analysis)
            self.product_pages.append(analysis.url)
            self.detected_prices.extend(analysis.detected_prices)
            added += 1
        return added

    def product_titles(self) -> List[str]:
        return [p.title for p in self.product_analyses if p.title]


class ScanOrchestrator:
    def __init__(
        self,
        fetcher: Optional[DowngradingFetcher] = None,
        ai: Optional[AIAugmenter] = None,
        competitor_lookup: Optional[CompetitorLookup] = None,
        clock: Callable[[], float] = time.monotonic,
        budget_seconds: float = settings.SCAN_BUDGET_SECONDS,
        ai_reserve_seconds: float = settings.SCAN_AI_RESERVE_SECONDS,
        concurrency: int = settings.SCAN_CONCURRENCY,
        max_pages: int = settings.SCAN_MAX_PAGES,
        preferred_mode: str = settings.SCAN_PREFERRED_MODE,
        public_catalog_enabled: bool = settings.SCAN_PUBLIC_CATALOG_ENABLED,
    ):
        self.fetcher = fetcher
        self.ai = ai if ai is not None else AIAugmenter()
        self.competitor_lookup = competitor_lookup or estimate_competitor_price
        self.clock = clock
        self.budget_seconds = budget_seconds
        self.ai_reserve_seconds = ai_reserve_seconds
        self.concurrency = max(1, concurrency)
        self.max_pages = max_pages
        self.preferred_mode = preferred_mode
        self.public_catalog_enabled = public_catalog_enabled

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def _elapsed(self, start: float) -> float:
        return self.clock() - start

    def _elapsed_ms(self, start: float) -> int:
        return int(self._elapsed(start) * 1000)

    def _can_start_fetch(self, start: float) -> bool:
        """New page fetches stop once the run enters the AI reserve window."""
        return self._elapsed(start) < self.budget_seconds - self.ai_reserve_seconds

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        request: ScanRequest,
        sink: Optional[ProgressSink] = None,
        job_id: Optional[str] = None,
    ) -> ScanResult:
        reporter = ProgressReporter(sink, job_id)

        is_valid, url, error = validate_url(request.url)
        if not is_valid:
            await reporter.emit(100, ScanStep.FAILED, f"Invalid store URL: {error}")
            raise ScanPipelineError("INVALID_URL", error)

        owns_fetcher = self.fetcher is None
        fetcher = self.fetcher or build_default_fetcher()
        try:
            return await self._run(request, url, fetcher, reporter, job_id)
        finally:
            if owns_fetcher:
                await fetcher.aclose()

    async def _run(
        self,
        request: ScanRequest,
        url: str,
        fetcher: DowngradingFetcher,
        reporter: ProgressReporter,
        job_id: Optional[str],
    ) -> ScanResult:
        start = self.clock()
        collector = ScanCollector()
        home_url = PageDiscoveryService.normalize_page_url(url)
        uses_connector_products = bool(request.commerce_api_products)

        # ── FETCH_HOME ──────────────────────────
        await reporter.emit(5, ScanStep.FETCH_HOME, "Fetching the home page")
        try:
            home_html, mode = await fetcher.fetch(home_url, self.preferred_mode)
        except FetchError as e:
            logger.warning(f"[{job_id}] Home page unreachable ({e.reason}); falling back to baseline")
            return await self._finish_without_home(request, collector, start, reporter)

        self._record_page(collector, home_url, home_html, analyze_products=not uses_connector_products)

        # ── DISCOVER_PAGES ──────────────────────
        candidates = await self._discover(
            request, home_url, home_html, fetcher, collector, reporter, uses_connector_products
        )

        # ── EXTRACT ─────────────────────────────
        await reporter.emit(25, ScanStep.EXTRACT, f"Analyzing {len(candidates)} pages")
        await self._extract(candidates, mode, fetcher, collector, reporter, start, uses_connector_products, job_id)
        await reporter.emit(
            55,
            ScanStep.EXTRACT,
            f"Extraction finished: {len(collector.pages_scanned)} pages, "
            f"{len(collector.product_analyses)} products",
        )
        fetch_ms = self._elapsed_ms(start)

        # ── SCORE ───────────────────────────────
        result = await self._score(request, collector, mode, fetch_ms, reporter)

        # ── AI_SUMMARY ──────────────────────────
        if not self.ai.enabled:
            result.raw.timings.total_ms = self._elapsed_ms(start)
            await reporter.emit(100, ScanStep.DONE, "Scan finished (AI summary not configured)")
            return result

        result = await self._augment(request, home_url, collector, result, reporter, start, job_id)
        result.raw.timings.total_ms = self._elapsed_ms(start)
        await reporter.emit(100, ScanStep.DONE, "Scan finished")
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _record_page(self, collector: ScanCollector, url: str, html: str, analyze_products: bool) -> None:
        signals = ExtractorService.extract_signals(html, url)
        if not collector.add_page(url, signals, ExtractorService.extract_price_values(html)):
            return
        if not analyze_products:
            return
        if PageDiscoveryService.is_product_url(url) and url not in collector.seen_products:
            collector.add_products([analyze_product_page(html, url, signals)])
        collector.add_products(products_from_structured_data(signals, html))

    async def _discover(
        self,
        request: ScanRequest,
        home_url: str,
        home_html: str,
        fetcher: DowngradingFetcher,
        collector: ScanCollector,
        reporter: ProgressReporter,
        uses_connector_products: bool,
    ) -> List[str]:
        await reporter.emit(10, ScanStep.DISCOVER_PAGES, "Discovering pages from the home page")
        links = PageDiscoveryService.extract_links(home_html, home_url)
        key_urls = PageDiscoveryService.discover_key_pages(links, home_url)
        other_urls = [urljoin(home_url, path) for path in links]
        collection_urls = [u for u in key_urls if PageDiscoveryService.is_collection_url(u)]

        await reporter.emit(15, ScanStep.DISCOVER_PAGES, "Reading the sitemap and collection pages")
        lookups = [
            PageDiscoveryService.fetch_sitemap_urls(home_url, fetcher),
            PageDiscoveryService.deep_crawl(collection_urls, home_url, fetcher),
        ]
        if self.public_catalog_enabled and not uses_connector_products:
            lookups.append(fetch_public_catalog(home_url, fetcher))

        outcomes = await asyncio.gather(*lookups, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.warning(f"Discovery lookup failed for {home_url}: {outcome}")
        sitemap_urls, deep_urls, *rest = [[] if isinstance(o, Exception) else o for o in outcomes]

        catalog = rest[0] if rest else []
        if catalog:
            added = collector.add_products(catalog)
            await reporter.emit(18, ScanStep.DISCOVER_PAGES, f"{added} products found in the public catalog")

        if uses_connector_products:
            analyses = analyze_commerce_products(request.commerce_api_products, origin_of(home_url))
            added = collector.add_products(analyses)
            await reporter.emit(22, ScanStep.DISCOVER_PAGES, f"{added} products imported from the store connector")

        candidates = PageDiscoveryService.merge_candidates(
            home_url,
            sitemap_urls=sitemap_urls,
            deep_crawl_urls=deep_urls,
            key_urls=key_urls,
            other_urls=other_urls,
            exclude=collector.seen_urls,
            max_pages=max(0, self.max_pages - len(collector.pages_scanned)),
        )
        logger.info(
            f"Discovery for {home_url}: {len(sitemap_urls)} sitemap, {len(deep_urls)} deep crawl, "
            f"{len(key_urls)} key paths -> {len(candidates)} candidates"
        )
        return candidates

    async def _extract(
        self,
        candidates: List[str],
        mode: str,
        fetcher: DowngradingFetcher,
        collector: ScanCollector,
        reporter: ProgressReporter,
        start: float,
        uses_connector_products: bool,
        job_id: Optional[str],
    ) -> None:
        total = len(candidates)
        if not total:
            return

        # One slot per candidate; each fetch writes only its own slot
        slots: List[Optional[str]] = [None] * total
        semaphore = asyncio.Semaphore(self.concurrency)
        finished = 0

        async def fetch_slot(index: int, url: str) -> None:
            nonlocal finished
            async with semaphore:
                if not self._can_start_fetch(start):
                    collector.budget_exhausted = True
                    return
                try:
                    html, mode_used = await fetcher.fetch(url, mode)
                except FetchError as e:
                    logger.info(f"[{job_id}] Skipping {url}: {e.reason}")
                    collector.pages_failed += 1
                    return
                except Exception:
                    logger.exception(f"[{job_id}] Fetch crashed for {url}")
                    collector.pages_failed += 1
                    return
                if mode_used != mode:
                    collector.pages_downgraded += 1
                slots[index] = html
            finished += 1
            await reporter.emit(
                25 + (30 * finished) // total,
                ScanStep.EXTRACT,
                f"{finished}/{total} pages fetched",
            )

        await asyncio.gather(*(fetch_slot(i, url) for i, url in enumerate(candidates)))

        if collector.budget_exhausted:
            logger.info(f"[{job_id}] Time budget reached; scoring {finished} of {total} fetched pages")

        for url, html in zip(candidates, slots):
            if html is None:
                continue
            try:
                self._record_page(collector, url, html, analyze_products=not uses_connector_products)
            except Exception:
                # A page the extractor chokes on is dropped like a failed fetch
                logger.exception(f"[{job_id}] Extraction failed for {url}")
                collector.pages_failed += 1

    async def _score(
        self,
        request: ScanRequest,
        collector: ScanCollector,
        mode: str,
        fetch_ms: int,
        reporter: ProgressReporter,
    ) -> ScanResult:
        await reporter.emit(60, ScanStep.SCORE, "Computing the conversion score")
        baseline = compute_baseline(collector.signals)
        insights = build_price_insights(collector.detected_prices, collector.product_pages)

        if insights.own_average_price and collector.product_analyses:
            await reporter.emit(65, ScanStep.SCORE, "Looking up competitor prices")
            insights.competitor_average_price = await self._lookup_competitor(
                collector.product_titles(), insights.own_average_price
            )

        await reporter.emit(70, ScanStep.SCORE, f"Baseline score: {baseline.score}/100")
        return ScanResult(
            **baseline.model_dump(),
            confidence="low",
            pages_scanned=collector.pages_scanned,
            raw=RawDiagnostics(
                mode=mode,
                timings=Timings(fetch_ms=fetch_ms),
                ai=AIStatus(enabled=self.ai.enabled, status="skipped"),
                business_metrics=request.metrics.model_dump() if request.metrics else None,
                product_analysis=collector.product_analyses[:MAX_RESULT_PRODUCTS],
                price_insights=insights,
                pages_failed=collector.pages_failed,
                pages_downgraded=collector.pages_downgraded,
                budget_exhausted=collector.budget_exhausted,
            ),
        )

    async def _lookup_competitor(self, titles: List[str], own_average: float) -> Optional[float]:
        try:
            return await asyncio.wait_for(
                self.competitor_lookup(titles, own_average),
                timeout=settings.COMPETITOR_SEARCH_TIMEOUT_SECONDS + 1,
            )
        except asyncio.TimeoutError:
            logger.info("Competitor lookup timed out")
        except Exception as e:
            logger.warning(f"Competitor lookup failed: {e}")
        return None

    async def _augment(
        self,
        request: ScanRequest,
        home_url: str,
        collector: ScanCollector,
        result: ScanResult,
        reporter: ProgressReporter,
        start: float,
        job_id: Optional[str],
    ) -> ScanResult:
        await reporter.emit(85, ScanStep.AI_SUMMARY, "Writing the AI summary")
        user_message = build_scan_user_message(
            request=request,
            store_url=home_url,
            signals=collector.signals,
            pages_scanned=collector.pages_scanned,
            product_analysis=collector.product_analyses,
            price_insights=result.raw.price_insights,
        )
        remaining = self.budget_seconds - self._elapsed(start)
        timeout = max(self.ai_reserve_seconds, min(settings.OPENAI_TIMEOUT_SECONDS, remaining))

        ai_start = self.clock()
        try:
            patch = await self.ai.augment(SCAN_SYSTEM_PROMPT, user_message, timeout=timeout)
        except AIAugmentError as e:
            return await self._ai_failed(result, e.code, str(e), ai_start, reporter, job_id)
        except Exception as e:
            logger.exception(f"[{job_id}] Unexpected AI failure")
            return await self._ai_failed(result, AI_UNEXPECTED_ERROR, str(e), ai_start, reporter, job_id)

        try:
            merged = merge_ai_patch(result, patch)
        except (ValueError, TypeError, OverflowError) as e:
            return await self._ai_failed(result, AI_BAD_JSON, f"unusable AI fields: {e}", ai_start, reporter, job_id)

        merged.raw.ai = AIStatus(enabled=True, status="ok")
        merged.raw.timings.ai_ms = self._elapsed_ms(ai_start)
        return merged

    async def _ai_failed(
        self,
        result: ScanResult,
        code: str,
        detail: str,
        ai_start: float,
        reporter: ProgressReporter,
        job_id: Optional[str],
    ) -> ScanResult:
        logger.warning(f"[{job_id}] AI summary failed with {code}: {detail}")
        result.raw.ai = AIStatus(enabled=True, status="failed", error_code=code)
        result.raw.timings.ai_ms = self._elapsed_ms(ai_start)
        await reporter.emit(95, ScanStep.AI_SUMMARY, "AI unavailable, returning the report without the AI summary")
        return result

    async def _finish_without_home(
        self,
        request: ScanRequest,
        collector: ScanCollector,
        start: float,
        reporter: ProgressReporter,
    ) -> ScanResult:
        baseline = compute_baseline(collector.signals)
        elapsed_ms = self._elapsed_ms(start)
        result = ScanResult(
            **baseline.model_dump(),
            confidence="low",
            pages_scanned=collector.pages_scanned,
            raw=RawDiagnostics(
                # Both strategies were tried; plain was the last one
                mode="plain",
                timings=Timings(fetch_ms=elapsed_ms, total_ms=elapsed_ms),
                ai=AIStatus(enabled=self.ai.enabled, status="skipped"),
                business_metrics=request.metrics.model_dump() if request.metrics else None,
                price_insights=build_price_insights([], []),
            ),
        )
        await reporter.emit(100, ScanStep.DONE, "Home page unreachable; returning the baseline report")
        return result
