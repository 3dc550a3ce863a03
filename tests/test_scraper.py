"""
Scraping orchestrator tests.

The fetcher, enricher and sink are in-memory fakes; rate-limit waits and
backoff go through RecordingSleep so no test waits on a real clock.
"""

import asyncio
import unittest

from market_intel.config import ScraperSettings
from market_intel.enrichment import EnrichmentResult
from market_intel.errors import EnrichmentFailedError, FetchFailedError
from market_intel.fetchers import FetchResult
from market_intel.rate_limiter import RateLimiter, RateLimitWindow
from market_intel.schemas import (
    PricingType,
    ScrapeOptions,
    ScrapeRequest,
    ScrapeStatus,
    StructuredProduct,
)
from market_intel.scraper import (
    ProductScraper,
    extract_price_from_text,
    is_valid_url,
    new_product_id,
    new_request_id,
    sanitize_content,
    validate_product,
)

from tests.fakes import FakeClock, FakeFetcher, RecordingSleep, make_product

ETSY_URL = "https://www.etsy.com/listing/1/widget"


class FakeEnricher:

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def enrich(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.result


class SlowFetcher:

    async def fetch(self, url, params):
        await asyncio.sleep(10)


class HangingFetcher:

    def __init__(self):
        self.started = asyncio.Event()

    async def fetch(self, url, params):
        self.started.set()
        await asyncio.Event().wait()


class PeakFetcher(FakeFetcher):
    """Tracks how many fetches are in flight at once."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def fetch(self, url, params):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            for _ in range(3):
                await asyncio.sleep(0)
            return await super().fetch(url, params)
        finally:
            self.in_flight -= 1


class BrokenLimiter(RateLimiter):

    def acquire(self, source, quota):
        raise RuntimeError("limiter offline")


class ListSink:

    def __init__(self, fail=False):
        self.products = []
        self.fail = fail

    def save_product(self, product):
        if self.fail:
            raise RuntimeError("disk full")
        self.products.append(product)

    def save_analysis(self, analysis):
        pass


def fast_settings(**overrides) -> ScraperSettings:
    values = dict(retry_base_delay=0.01, retry_max_delay=0.05, retry_jitter=0.0)
    values.update(overrides)
    return ScraperSettings(**values)


class ScraperTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.sleep = RecordingSleep(self.clock)
        self.limiter = RateLimiter(clock=self.clock)
        self.fetcher = FakeFetcher()
        self.sink = ListSink()

    def make_scraper(self, fetcher=None, **kwargs) -> ProductScraper:
        options = dict(
            rate_limiter=self.limiter,
            settings=fast_settings(),
            sink=self.sink,
            sleep=self.sleep,
        )
        options.update(kwargs)
        return ProductScraper(fetcher or self.fetcher, **options)


class TestScrapeOne(ScraperTestCase):

    async def test_success(self):
        scraper = self.make_scraper()
        result = await scraper.scrape_one(ETSY_URL)

        self.assertTrue(result.success)
        self.assertIsNone(result.error)
        self.assertTrue(result.request_id.startswith("scrape_"))
        self.assertEqual(result.retry_count, 0)
        self.assertEqual(result.rate_limit_remaining, 99)

        product = result.data
        self.assertTrue(product.id.startswith("prod_"))
        self.assertEqual(product.title, "Widget")
        self.assertEqual(product.source_name, "Etsy")
        self.assertEqual(product.source_url, ETSY_URL)
        self.assertEqual(product.pricing.amount, 19.99)
        self.assertEqual(product.status, ScrapeStatus.SUCCESS)
        self.assertEqual(self.sink.products, [product])

    async def test_fetch_params_from_profile(self):
        scraper = self.make_scraper()
        await scraper.scrape_one(ScrapeRequest(url=ETSY_URL, options=ScrapeOptions(timeout_ms=5000, formats=["html"])))

        _, params = self.fetcher.calls[0]
        self.assertIn("User-Agent", params.headers)
        self.assertEqual(params.timeout_ms, 5000)
        self.assertEqual(params.formats, ["html"])
        self.assertEqual(params.wait_for_ms, 2000)

        await scraper.scrape_one("https://gumroad.com/l/abc")
        _, params = self.fetcher.calls[1]
        self.assertEqual(params.wait_for_ms, 3000)

    async def test_invalid_url(self):
        scraper = self.make_scraper()
        result = await scraper.scrape_one("not-a-url")

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "INVALID_URL")
        self.assertEqual(self.fetcher.calls, [])

    async def test_unsupported_domain(self):
        result = await self.make_scraper().scrape_one("https://unknown-shop.test/item")
        self.assertEqual(result.error.code, "UNSUPPORTED_DOMAIN")
        self.assertIsNone(result.rate_limit_remaining)

    async def test_explicit_source(self):
        scraper = self.make_scraper()

        result = await scraper.scrape_one(ScrapeRequest(url="https://cdn.test/page", source="gumroad"))
        self.assertTrue(result.success)
        self.assertEqual(result.data.source_name, "Gumroad")

        result = await scraper.scrape_one(ScrapeRequest(url="https://cdn.test/page", source="nope"))
        self.assertEqual(result.error.code, "UNSUPPORTED_DOMAIN")

    async def test_rate_limit_exceeded(self):
        self.limiter = RateLimiter(
            windows={"etsy": RateLimitWindow(request_count=100, reset_at=self.clock.now + 3000)},
            clock=self.clock,
        )
        scraper = self.make_scraper()

        result = await scraper.scrape_one(ETSY_URL)

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "RATE_LIMIT_EXCEEDED")
        self.assertEqual(result.error.retry_after_ms, 3_000_000)
        self.assertIn("Reset in 50 minutes", result.error.message)
        self.assertEqual(self.fetcher.calls, [])
        self.assertEqual(scraper.get_stats().rate_limit_hits, 1)

    async def test_short_rate_limit_wait_then_proceeds(self):
        self.limiter = RateLimiter(
            windows={"etsy": RateLimitWindow(request_count=100, reset_at=self.clock.now + 30)},
            clock=self.clock,
        )
        scraper = self.make_scraper()

        result = await scraper.scrape_one(ETSY_URL)

        self.assertTrue(result.success)
        self.assertEqual(self.sleep.calls, [30.0])

    async def test_rate_limit_can_be_bypassed(self):
        self.limiter = RateLimiter(
            windows={"etsy": RateLimitWindow(request_count=100, reset_at=self.clock.now + 3000)},
            clock=self.clock,
        )
        scraper = self.make_scraper()

        request = ScrapeRequest(url=ETSY_URL, options=ScrapeOptions(respect_rate_limit=False))
        result = await scraper.scrape_one(request)

        self.assertTrue(result.success)

    async def test_retries_transient_fetch_errors(self):
        self.fetcher.pages[ETSY_URL] = [FetchFailedError("connection reset"), FetchResult(html="<h1>Back</h1>")]
        scraper = self.make_scraper()

        result = await scraper.scrape_one(ETSY_URL)

        self.assertTrue(result.success)
        self.assertEqual(result.retry_count, 1)
        self.assertEqual(result.data.title, "Back")
        self.assertEqual(len(self.sleep.calls), 1)

    async def test_client_errors_not_retried(self):
        self.fetcher.pages[ETSY_URL] = FetchFailedError("HTTP 404", status_code=404)
        scraper = self.make_scraper()

        result = await scraper.scrape_one(ETSY_URL)

        self.assertEqual(result.error.code, "FETCH_FAILED")
        self.assertEqual(len(self.fetcher.calls), 1)

    async def test_retries_exhausted(self):
        self.fetcher.pages[ETSY_URL] = FetchFailedError("HTTP 503", status_code=503)
        scraper = self.make_scraper(settings=fast_settings(retries=2))

        result = await scraper.scrape_one(ETSY_URL)

        self.assertEqual(result.error.code, "FETCH_FAILED")
        self.assertEqual(len(self.fetcher.calls), 3)

    async def test_unexpected_fetch_exception_wrapped(self):
        self.fetcher.pages[ETSY_URL] = ValueError("bad payload")
        scraper = self.make_scraper(settings=fast_settings(retries=0))

        result = await scraper.scrape_one(ETSY_URL)

        self.assertEqual(result.error.code, "FETCH_FAILED")
        self.assertIn("bad payload", result.error.message)

    async def test_timeout(self):
        scraper = self.make_scraper(fetcher=SlowFetcher())
        request = ScrapeRequest(url=ETSY_URL, options=ScrapeOptions(timeout_ms=10, retries=0))

        result = await scraper.scrape_one(request)

        self.assertEqual(result.error.code, "FETCH_FAILED")
        self.assertIn("Timed out", result.error.message)

    async def test_failure_releases_reservation(self):
        self.fetcher.pages[ETSY_URL] = FetchFailedError("HTTP 404", status_code=404)
        scraper = self.make_scraper()

        await scraper.scrape_one(ETSY_URL)

        window = self.limiter.get_all_windows()["etsy"]
        self.assertEqual(window.pending, 0)
        self.assertEqual(window.request_count, 0)

    async def test_cancellation_releases_reservation(self):
        fetcher = HangingFetcher()
        scraper = self.make_scraper(fetcher=fetcher)

        task = asyncio.create_task(scraper.scrape_one(ETSY_URL))
        await fetcher.started.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(self.limiter.get_all_windows()["etsy"].pending, 0)
        self.clock.advance(2 * 60 * 60)
        self.assertTrue(self.limiter.acquire("etsy", 1).allowed)

    async def test_sink_failure_keeps_success(self):
        scraper = self.make_scraper(sink=ListSink(fail=True))

        with self.assertLogs("market_intel.scraper", level="WARNING") as captured:
            result = await scraper.scrape_one(ETSY_URL)

        self.assertTrue(result.success)
        self.assertIn("disk full", "\n".join(captured.output))
        stats = scraper.get_stats()
        self.assertEqual(stats.total_requests, 1)
        self.assertEqual(stats.successful_scrapes, 1)
        self.assertEqual(self.limiter.get_all_windows()["etsy"].request_count, 1)

    async def test_stats(self):
        scraper = self.make_scraper()
        await scraper.scrape_one(ETSY_URL)
        await scraper.scrape_one("bad")

        stats = scraper.get_stats()
        self.assertEqual(stats.total_requests, 2)
        self.assertEqual(stats.successful_scrapes, 1)
        self.assertEqual(stats.failed_scrapes, 1)
        self.assertEqual(stats.errors_by_type, {"INVALID_URL": 1})
        self.assertEqual(stats.source_stats["Etsy"].successes, 1)

        scraper.reset_stats()
        self.assertEqual(scraper.get_stats().total_requests, 0)

    async def test_stats_snapshot_is_a_copy(self):
        scraper = self.make_scraper()
        snapshot = scraper.get_stats()
        snapshot.total_requests = 42
        self.assertEqual(scraper.get_stats().total_requests, 0)


class TestEnrichment(ScraperTestCase):

    def _request(self):
        return ScrapeRequest(url=ETSY_URL, options=ScrapeOptions(enrich=True))

    async def test_merges_metadata_only(self):
        enricher = FakeEnricher(EnrichmentResult(
            category="template",
            tags=["widget", "printable"],
            targetAudience="Crafters",
            sellingPoints=["Cheap"],
        ))
        scraper = self.make_scraper(enricher=enricher)

        result = await scraper.scrape_one(self._request())

        metadata = result.data.metadata
        self.assertEqual(metadata.category, "template")
        self.assertIn("printable", metadata.tags)
        self.assertEqual(metadata.ai_insights.target_audience, "Crafters")
        self.assertEqual(metadata.ai_insights.selling_points, ["Cheap"])
        self.assertEqual(result.data.pricing.amount, 19.99)
        self.assertIn("Title: Widget", enricher.calls[0])

    async def test_failure_is_swallowed(self):
        enricher = FakeEnricher(error=EnrichmentFailedError("model unavailable"))
        scraper = self.make_scraper(enricher=enricher)

        result = await scraper.scrape_one(self._request())

        self.assertTrue(result.success)
        self.assertIsNone(result.data.metadata.ai_insights)

    async def test_not_called_unless_requested(self):
        enricher = FakeEnricher(EnrichmentResult())
        scraper = self.make_scraper(enricher=enricher)

        await scraper.scrape_one(ETSY_URL)

        self.assertEqual(enricher.calls, [])


class TestScrapeMany(ScraperTestCase):

    async def test_invalid_url_isolated_and_order_kept(self):
        urls = [
            "https://www.etsy.com/listing/1",
            "https://gumroad.com/l/2",
            "::not a url::",
            "https://www.udemy.com/course/3",
            "https://www.etsy.com/listing/4",
        ]
        self.fetcher.pages = {url: FetchResult(html=f"<h1>Item {i}</h1>") for i, url in enumerate(urls)}
        scraper = self.make_scraper()

        results = await scraper.scrape_many(urls)

        self.assertEqual(len(results), 5)
        self.assertEqual([r.success for r in results], [True, True, False, True, True])
        self.assertEqual(results[2].error.code, "INVALID_URL")
        self.assertEqual([r.data.title for r in results if r.success], ["Item 0", "Item 1", "Item 3", "Item 4"])

    async def test_chunk_delay(self):
        scraper = self.make_scraper()
        urls = [f"https://www.etsy.com/listing/{i}" for i in range(7)]

        await scraper.scrape_many(urls, concurrency=3, chunk_delay=2.0)

        self.assertEqual(self.sleep.calls, [2.0, 2.0])

    async def test_concurrency_bounds_in_flight_fetches(self):
        fetcher = PeakFetcher()
        scraper = self.make_scraper(fetcher=fetcher)
        urls = [f"https://www.etsy.com/listing/{i}" for i in range(7)]

        results = await scraper.scrape_many(urls, concurrency=3)

        self.assertTrue(all(r.success for r in results))
        self.assertEqual(fetcher.peak, 3)
        self.assertEqual(fetcher.in_flight, 0)

    async def test_unexpected_exception_becomes_internal_error(self):
        scraper = self.make_scraper(rate_limiter=BrokenLimiter(clock=self.clock))
        urls = [ETSY_URL, "bad"]

        results = await scraper.scrape_many(urls)

        self.assertEqual(results[0].error.code, "INTERNAL_ERROR")
        self.assertIn("limiter offline", results[0].error.message)
        self.assertEqual(results[1].error.code, "INVALID_URL")
        stats = scraper.get_stats()
        self.assertEqual(stats.total_requests, len(urls))
        self.assertEqual(stats.errors_by_type["INTERNAL_ERROR"], 1)

    async def test_sink_failure_counted_once(self):
        scraper = self.make_scraper(sink=ListSink(fail=True))
        urls = [ETSY_URL, "bad"]

        results = await scraper.scrape_many(urls)

        self.assertEqual([r.success for r in results], [True, False])
        stats = scraper.get_stats()
        self.assertEqual(stats.total_requests, len(urls))
        self.assertEqual(stats.successful_scrapes, 1)
        self.assertNotIn("INTERNAL_ERROR", stats.errors_by_type)

    async def test_empty_batch(self):
        self.assertEqual(await self.make_scraper().scrape_many([]), [])


class TestHelpers(unittest.TestCase):

    def test_ids(self):
        self.assertRegex(new_request_id(), r"^scrape_\d+_[0-9a-f]{9}$")
        self.assertRegex(new_product_id(), r"^prod_\d+_[0-9a-f]{9}$")
        self.assertNotEqual(new_product_id(), new_product_id())

    def test_is_valid_url(self):
        self.assertTrue(is_valid_url("https://etsy.com/x"))
        self.assertFalse(is_valid_url("ftp://etsy.com/x"))
        self.assertFalse(is_valid_url("etsy.com/x"))

    def test_sanitize_content(self):
        dirty = '<script>alert(1)</script><style>p{}</style><a href="javascript:x()" onclick="y()">ok</a>'
        clean = sanitize_content(dirty)

        self.assertNotIn("script", clean)
        self.assertNotIn("style", clean)
        self.assertNotIn("javascript:", clean)
        self.assertNotIn("onclick=", clean)
        self.assertIn("ok", clean)

    def test_extract_price_from_text(self):
        self.assertEqual(extract_price_from_text("only $1,250.00 today"), (1250.0, "USD"))
        self.assertEqual(extract_price_from_text("€15"), (15.0, "EUR"))
        self.assertEqual(extract_price_from_text("¥3000"), (3000.0, "JPY"))
        self.assertIsNone(extract_price_from_text("free"))

    def test_validate_product(self):
        self.assertEqual(validate_product(make_product()), [])

        broken = StructuredProduct(
            id="p",
            source_url="nope",
            source_name=" ",
            title="",
        )
        broken.pricing.type = PricingType.ONE_TIME
        errors = validate_product(broken)
        self.assertEqual(len(errors), 4)


if __name__ == "__main__":
    unittest.main()
