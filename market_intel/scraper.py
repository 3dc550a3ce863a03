"""
Scraping orchestrator.

ProductScraper drives one scrape end-to-end:

    validate URL -> resolve source -> rate limit -> fetch (retry/timeout)
    -> extract -> optional enrichment -> record -> sink -> stats -> result

Per-request failures come back as ``ScrapingResult(success=False)`` with a
typed error code rather than as exceptions. ``scrape_many`` runs requests
in fixed-size concurrent chunks with a pause between chunks and keeps
results in input order.
"""

import asyncio
import logging
import math
import random
import re
import threading
import time
import uuid
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

from .config import ScraperSettings
from .enrichment import Enricher
from .errors import (
    ExtractionFailedError,
    FetchFailedError,
    InvalidURLError,
    RateLimitExceededError,
    ScrapingError,
    UnsupportedDomainError,
)
from .extractor import ContentExtractor
from .fetchers import FetchParams, FetchResult, Fetcher
from .rate_limiter import RateLimiter
from .schemas import (
    AIInsights,
    ErrorInfo,
    PricingType,
    ScrapeRequest,
    ScrapeStatus,
    ScrapingResult,
    ScrapingStats,
    SourceStats,
    StructuredProduct,
    utc_now,
)
from .sinks import ProductSink
from .sources import SourceCatalog, SourceProfile, default_catalog

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"
ENRICHMENT_CONTENT_CHARS = 1000

SCRIPT_PATTERN = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
STYLE_PATTERN = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
JS_URL_PATTERN = re.compile(r"javascript:", re.IGNORECASE)
EVENT_HANDLER_PATTERN = re.compile(r"on\w+\s*=", re.IGNORECASE)

PRICE_PATTERNS = [
    (re.compile(r"\$(\d+(?:,\d{3})*(?:\.\d{2})?)"), "USD"),
    (re.compile(r"€(\d+(?:,\d{3})*(?:\.\d{2})?)"), "EUR"),
    (re.compile(r"£(\d+(?:,\d{3})*(?:\.\d{2})?)"), "GBP"),
    (re.compile(r"¥(\d+(?:,\d{3})*)"), "JPY"),
]


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_request_id() -> str:
    return f"scrape_{_now_ms()}_{uuid.uuid4().hex[:9]}"


def new_product_id() -> str:
    return f"prod_{_now_ms()}_{uuid.uuid4().hex[:9]}"


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def sanitize_content(content: str) -> str:
    """Strip script/style blocks, javascript: URLs and inline event handlers."""
    content = SCRIPT_PATTERN.sub("", content)
    content = STYLE_PATTERN.sub("", content)
    content = JS_URL_PATTERN.sub("", content)
    content = EVENT_HANDLER_PATTERN.sub("", content)
    return content.strip()


def extract_price_from_text(text: str) -> Optional[Tuple[float, str]]:
    """First currency amount in ``text`` as (amount, ISO code), trying $, €, £, ¥ in turn."""
    for pattern, currency in PRICE_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1).replace(",", "")), currency
    return None


def validate_product(product: StructuredProduct) -> List[str]:
    """Return human-readable problems with a scraped product (empty if none)."""
    errors = []
    if not product.title or not product.title.strip():
        errors.append("Product title is required")
    if not product.source_url or not is_valid_url(product.source_url):
        errors.append("Valid product URL is required")
    if not product.source_name or not product.source_name.strip():
        errors.append("Product source is required")
    if product.pricing.type == PricingType.ONE_TIME and not product.pricing.amount:
        errors.append("Price amount is required for paid products")
    return errors


class StatsTracker:
    """Thread-safe running statistics for a scraper."""

    def __init__(self):
        self._lock = threading.Lock()
        self._stats = ScrapingStats()

    def record(
        self,
        source: Optional[str],
        success: bool,
        duration_ms: float,
        error_code: Optional[str] = None,
    ) -> None:
        with self._lock:
            stats = self._stats
            stats.total_requests += 1
            if success:
                stats.successful_scrapes += 1
            else:
                stats.failed_scrapes += 1
                if error_code:
                    stats.errors_by_type[error_code] = stats.errors_by_type.get(error_code, 0) + 1

            n = stats.total_requests
            stats.average_response_time_ms = (stats.average_response_time_ms * (n - 1) + duration_ms) / n

            if source:
                per_source = stats.source_stats.setdefault(source, SourceStats())
                per_source.requests += 1
                if success:
                    per_source.successes += 1
                else:
                    per_source.failures += 1
                m = per_source.requests
                per_source.avg_response_time_ms = (per_source.avg_response_time_ms * (m - 1) + duration_ms) / m

    def record_rate_limit_hit(self) -> None:
        with self._lock:
            self._stats.rate_limit_hits += 1

    def snapshot(self) -> ScrapingStats:
        with self._lock:
            return self._stats.model_copy(deep=True)

    def reset(self) -> None:
        with self._lock:
            self._stats = ScrapingStats()


class ProductScraper:
    """
    Scrapes product pages into StructuredProduct records.

    Usage:
        async with HttpxFetcher() as fetcher:
            scraper = ProductScraper(fetcher)
            result = await scraper.scrape_one("https://www.etsy.com/listing/123")
            results = await scraper.scrape_many([url1, url2, url3])
            print(scraper.get_stats())
    """

    def __init__(
        self,
        fetcher: Fetcher,
        catalog: Optional[SourceCatalog] = None,
        rate_limiter: Optional[RateLimiter] = None,
        extractor: Optional[ContentExtractor] = None,
        enricher: Optional[Enricher] = None,
        settings: Optional[ScraperSettings] = None,
        sink: Optional[ProductSink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the scraper.

        Args:
            fetcher: Fetch collaborator returning page HTML/markdown/metadata
            catalog: Source catalog (defaults to the packaged one)
            rate_limiter: Shared rate limiter (a private one if omitted)
            extractor: Content extractor
            enricher: Optional enrichment collaborator
            settings: Timeouts, retries and batch settings
            sink: Optional sink receiving every successful product
            sleep: Async sleep used for rate-limit waits, backoff and chunk delays
        """
        self.fetcher = fetcher
        self.catalog = catalog or default_catalog()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.extractor = extractor or ContentExtractor()
        self.enricher = enricher
        self.settings = settings or ScraperSettings()
        self.sink = sink
        self._sleep = sleep
        self._stats = StatsTracker()

    # -- public API ---------------------------------------------------------

    def is_url_supported(self, url: str) -> bool:
        return is_valid_url(url) and self.catalog.is_supported_url(url)

    def supported_sources(self) -> List[SourceProfile]:
        return list(self.catalog)

    def get_stats(self) -> ScrapingStats:
        return self._stats.snapshot()

    def reset_stats(self) -> None:
        self._stats.reset()

    async def scrape_one(self, request: Union[ScrapeRequest, str]) -> ScrapingResult:
        """
        Scrape a single URL.

        Returns:
            A ScrapingResult. Failures carry an ErrorInfo whose code is one
            of INVALID_URL, UNSUPPORTED_DOMAIN, RATE_LIMIT_EXCEEDED,
            FETCH_FAILED or EXTRACTION_FAILED.
        """
        request = _as_request(request)
        request_id = new_request_id()
        started = time.perf_counter()
        profile: Optional[SourceProfile] = None
        reserved = False
        retry_count = 0

        try:
            profile = self._resolve_source(request)

            if request.options.respect_rate_limit:
                await self._reserve_slot(profile)
                reserved = True

            params = self._fetch_params(request, profile)
            page, retry_count = await self._fetch_with_retry(request.url, params, request)
            product = self._build_product(request, profile, page)

            if request.options.enrich and self.enricher is not None:
                product = await self._enrich(product)

            self.rate_limiter.record_request(profile.key)
            reserved = False

        except ScrapingError as e:
            if reserved:
                self.rate_limiter.release(profile.key)
                reserved = False
            duration_ms = (time.perf_counter() - started) * 1000
            self._stats.record(profile.name if profile else None, False, duration_ms, e.code)
            logger.error(f"[{request_id}] {e.code}: {e.message}")

            retry_after_ms = e.wait_ms if isinstance(e, RateLimitExceededError) else None
            return ScrapingResult(
                success=False,
                error=ErrorInfo(code=e.code, message=e.message, retry_after_ms=retry_after_ms),
                request_id=request_id,
                duration_ms=duration_ms,
                rate_limit_remaining=self._remaining(profile),
                retry_count=retry_count,
            )
        finally:
            # Cancellation or an unexpected error must not leak the slot.
            if reserved:
                self.rate_limiter.release(profile.key)

        if self.sink is not None:
            try:
                self.sink.save_product(product)
            except Exception as e:
                logger.warning(f"[{request_id}] Failed to save {product.id}: {e}")

        duration_ms = (time.perf_counter() - started) * 1000
        self._stats.record(profile.name, True, duration_ms)
        logger.debug(f"[{request_id}] Scraped {request.url} in {duration_ms:.0f}ms")

        return ScrapingResult(
            success=True,
            data=product,
            request_id=request_id,
            duration_ms=duration_ms,
            rate_limit_remaining=self._remaining(profile),
            retry_count=retry_count,
        )

    async def scrape_many(
        self,
        requests: Sequence[Union[ScrapeRequest, str]],
        concurrency: Optional[int] = None,
        chunk_delay: Optional[float] = None,
    ) -> List[ScrapingResult]:
        """
        Scrape many URLs in concurrent chunks.

        One item's failure never affects its siblings; results are returned
        in input order.

        Args:
            requests: Requests or plain URLs
            concurrency: Chunk size (defaults to settings.concurrency)
            chunk_delay: Seconds to pause between chunks (defaults to settings.chunk_delay)
        """
        concurrency = max(1, concurrency or self.settings.concurrency)
        chunk_delay = self.settings.chunk_delay if chunk_delay is None else chunk_delay
        requests = [_as_request(r) for r in requests]
        chunks = [requests[i:i + concurrency] for i in range(0, len(requests), concurrency)]

        results: List[ScrapingResult] = []
        for index, chunk in enumerate(chunks):
            logger.info(f"Scraping chunk {index + 1}/{len(chunks)} ({len(chunk)} URLs)")
            outcomes = await asyncio.gather(
                *(self.scrape_one(request) for request in chunk),
                return_exceptions=True,
            )

            for request, outcome in zip(chunk, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    logger.error(f"Unexpected error scraping {request.url}: {outcome}")
                    self._stats.record(None, False, 0.0, INTERNAL_ERROR)
                    outcome = ScrapingResult(
                        success=False,
                        error=ErrorInfo(code=INTERNAL_ERROR, message=str(outcome)),
                        request_id=new_request_id(),
                    )
                results.append(outcome)

            if index < len(chunks) - 1 and chunk_delay > 0:
                await self._sleep(chunk_delay)

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch complete: {succeeded}/{len(results)} succeeded")
        return results

    # -- pipeline steps -----------------------------------------------------

    def _resolve_source(self, request: ScrapeRequest) -> SourceProfile:
        if not is_valid_url(request.url):
            raise InvalidURLError(f"Invalid URL provided: {request.url}")

        if request.source:
            profile = self.catalog.get(request.source)
            if profile is None:
                raise UnsupportedDomainError(f"Unknown source: {request.source}")
            return profile

        profile = self.catalog.get_source_by_url(request.url)
        if profile is None:
            raise UnsupportedDomainError(f"Unsupported domain: {urlparse(request.url).hostname}")
        return profile

    async def _reserve_slot(self, profile: SourceProfile) -> None:
        """Reserve a rate-limit slot, waiting once if the wait is short enough."""
        max_wait_ms = self.settings.max_rate_limit_wait * 1000

        for attempt in range(2):
            outcome = self.rate_limiter.acquire(profile.key, profile.rate_limit)
            if outcome.allowed:
                return

            self._stats.record_rate_limit_hit()
            wait_ms = outcome.wait_ms or 0
            if attempt > 0 or wait_ms > max_wait_ms:
                minutes = math.ceil(wait_ms / 60000)
                raise RateLimitExceededError(
                    f"Rate limit exceeded for {profile.name}. Reset in {minutes} minutes.",
                    source=profile.key,
                    wait_ms=wait_ms,
                )

            logger.warning(f"[{profile.key}] Rate limit reached, waiting {wait_ms / 1000:.1f}s")
            await self._sleep(wait_ms / 1000)

    def _fetch_params(self, request: ScrapeRequest, profile: SourceProfile) -> FetchParams:
        options = request.options
        return FetchParams(
            formats=list(options.formats or self.settings.formats),
            headers=dict(profile.fetch.headers),
            timeout_ms=options.timeout_ms or self.settings.timeout_ms,
            wait_for_ms=profile.fetch.wait_for_ms or self.settings.default_wait_for_ms,
            include_tags=list(profile.fetch.include_tags),
            exclude_tags=list(profile.fetch.exclude_tags),
            only_main_content=profile.fetch.only_main_content,
        )

    def _backoff_delay(self, attempt: int) -> float:
        delay = min(self.settings.retry_base_delay * (2 ** attempt), self.settings.retry_max_delay)
        return delay + random.uniform(0, self.settings.retry_jitter)

    async def _fetch_with_retry(
        self,
        url: str,
        params: FetchParams,
        request: ScrapeRequest,
    ) -> Tuple[FetchResult, int]:
        """
        Fetch with a per-attempt timeout and capped exponential backoff.

        Returns:
            The fetched page and the number of retries it took

        Raises:
            FetchFailedError: If every attempt fails or the error is not retryable
        """
        retries = self.settings.retries if request.options.retries is None else request.options.retries
        timeout = params.timeout_ms / 1000
        last_error: Optional[BaseException] = None

        for attempt in range(retries + 1):
            try:
                page = await asyncio.wait_for(self.fetcher.fetch(url, params), timeout=timeout)
                return page, attempt
            except asyncio.TimeoutError as e:
                last_error = e
            except FetchFailedError as e:
                last_error = e
                if not e.retryable:
                    raise
            except ScrapingError:
                raise
            except Exception as e:
                last_error = e

            if attempt < retries:
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"Fetch attempt {attempt + 1}/{retries + 1} failed for {url}: "
                    f"{last_error or 'timeout'}; retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        if isinstance(last_error, FetchFailedError):
            raise last_error
        if isinstance(last_error, asyncio.TimeoutError):
            raise FetchFailedError(
                f"Timed out after {params.timeout_ms}ms fetching {url}",
                timed_out=True,
            ) from last_error
        raise FetchFailedError(f"Fetch failed for {url}: {last_error}") from last_error

    def _build_product(
        self,
        request: ScrapeRequest,
        profile: SourceProfile,
        page: FetchResult,
    ) -> StructuredProduct:
        try:
            draft = self.extractor.extract(
                page.html or "",
                page.markdown or "",
                request.url,
                profile,
                page.metadata,
            )
            return StructuredProduct(
                id=new_product_id(),
                source_url=request.url,
                source_name=profile.name,
                title=draft.title,
                description=draft.description,
                pricing=draft.pricing,
                features=draft.features,
                images=draft.images,
                content=draft.content,
                metadata=draft.metadata,
                seller=draft.seller,
                reviews=draft.reviews,
                scraped_at=utc_now(),
                status=ScrapeStatus.PARTIAL if draft.degraded else ScrapeStatus.SUCCESS,
            )
        except Exception as e:
            raise ExtractionFailedError(f"Extraction failed for {request.url}: {e}") from e

    async def _enrich(self, product: StructuredProduct) -> StructuredProduct:
        """Merge enrichment output into metadata. Any failure leaves the product unchanged."""
        summary = (
            f"Title: {product.title}\n"
            f"Description: {product.description}\n"
            f"Content: {product.content[:ENRICHMENT_CONTENT_CHARS]}"
        )
        try:
            result = await asyncio.wait_for(
                self.enricher.enrich(summary),
                timeout=self.settings.enrichment_timeout,
            )
        except Exception as e:
            logger.warning(f"Enrichment failed for {product.id}: {e}")
            return product

        metadata = product.metadata
        tags = list(dict.fromkeys(metadata.tags + list(result.tags)))
        enriched = metadata.model_copy(update={
            "category": result.category or metadata.category,
            "tags": tags,
            "ai_insights": AIInsights(
                target_audience=result.target_audience,
                selling_points=list(result.selling_points),
                advantages=list(result.advantages),
            ),
        })
        return product.model_copy(update={"metadata": enriched})

    def _remaining(self, profile: Optional[SourceProfile]) -> Optional[int]:
        if profile is None:
            return None
        return self.rate_limiter.get_rate_limit_info(profile.key, profile.rate_limit).remaining


def _as_request(request: Union[ScrapeRequest, str]) -> ScrapeRequest:
    if isinstance(request, str):
        return ScrapeRequest(url=request)
    return request
