"""
Winning products analyzer.

Runs categorical sweeps (trending, SaaS, ad-intelligence, custom URLs)
through a ProductScraper, then filters, scores, merges and ranks the
scraped records into a MarketAnalysis report.

Sweeps are best-effort: failed URLs are counted in the report, never
raised. The analyzer keeps the latest WinningProduct per id in memory so
``monitor`` can diff later runs against it.
"""

import asyncio
import logging
import re
from collections import Counter, OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from .config import ScraperSettings
from .extractor import DEFAULT_TITLE
from .schemas import (
    AnalysisConfig,
    CompetitorLandscape,
    DeepDiveReport,
    MarketAnalysis,
    MarketLeader,
    MarketTrend,
    PriceRange,
    ProductSource,
    ProductUpdate,
    ScrapeOptions,
    ScrapeRequest,
    StructuredProduct,
    SweepReport,
    WinningProduct,
    utc_now,
)
from .scoring import compute_metrics
from .scraper import ProductScraper
from .sinks import ProductSink
from .sources import SourceCatalog
from .strategies import Strategies

logger = logging.getLogger(__name__)

TRENDING_SOURCE_LIMIT = 5
SAAS_SOURCE_LIMIT = 3
AD_SOURCE_LIMIT = 3
SEARCH_SOURCE_LIMIT = 3
SAAS_QUERY = "saas"

TRENDING_GROUP = "trending"
SAAS_GROUP = "saas_intelligence"
AD_GROUP = "ad_intelligence"
WINNING_GROUP = "winning_products"

TITLE_STRIP_PATTERN = re.compile(r"[^\w\s]")
WHITESPACE_PATTERN = re.compile(r"\s+")


def category_matches(category: str, wanted: str) -> bool:
    """Loose match so singular extractor buckets match plural config names."""
    category = (category or "").lower()
    wanted = (wanted or "").lower()
    if not category or not wanted:
        return False
    return category == wanted or wanted in category or category in wanted


def normalize_title(product: StructuredProduct) -> str:
    """Merge key for records describing the same product."""
    if not product.title or product.title == DEFAULT_TITLE:
        return f"id:{product.id}"
    title = TITLE_STRIP_PATTERN.sub("", product.title.lower())
    return WHITESPACE_PATTERN.sub(" ", title).strip() or f"id:{product.id}"


class WinningProductsAnalyzer:
    """
    Turns scraped product pages into a ranked market report.

    Usage:
        analyzer = WinningProductsAnalyzer(scraper)
        analysis = await analyzer.analyze(AnalysisConfig(categories=["templates"]))
        report = await analyzer.deep_dive(product_name="Notion Templates")
        updates = await analyzer.monitor([p.id for p in analysis.winning_products])
    """

    def __init__(
        self,
        scraper: ProductScraper,
        catalog: Optional[SourceCatalog] = None,
        strategies: Optional[Strategies] = None,
        sink: Optional[ProductSink] = None,
        sweep_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            scraper: Scraper used for every sweep and lookup
            catalog: Source catalog (defaults to the scraper's)
            strategies: Heuristic rule set for competitors, risks and insights
            sink: Optional sink receiving every finished analysis
            sweep_delay: Seconds to pause between sweeps (defaults to ScraperSettings.sweep_delay)
            sleep: Async sleep used for the pause between sweeps
        """
        self.scraper = scraper
        self.catalog = catalog or scraper.catalog
        self.strategies = strategies or Strategies()
        self.sink = sink
        self.sweep_delay = ScraperSettings().sweep_delay if sweep_delay is None else sweep_delay
        self._sleep = sleep
        self._cache: Dict[str, WinningProduct] = {}
        self._cache_lock = asyncio.Lock()

    # -- cache --------------------------------------------------------------

    def get_cached(self, product_id: str) -> Optional[WinningProduct]:
        return self._cache.get(product_id)

    def cached_products(self) -> List[WinningProduct]:
        return list(self._cache.values())

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _remember(self, products: Sequence[WinningProduct]) -> None:
        async with self._cache_lock:
            for product in products:
                self._cache[product.id] = product

    # -- sweeps -------------------------------------------------------------

    async def _run_sweep(self, name: str, requests: List[ScrapeRequest]) -> Tuple[List[StructuredProduct], SweepReport]:
        report = SweepReport(name=name, requested=len(requests))
        if not requests:
            return [], report

        logger.info(f"Running {name} sweep ({len(requests)} URLs)")
        results = await self.scraper.scrape_many(requests)

        products = []
        for request, result in zip(requests, results):
            if result.success and result.data:
                products.append(result.data)
            else:
                message = result.error.message if result.error else "no data"
                logger.warning(f"[{name}] {request.url} failed: {message}")

        report.succeeded = len(products)
        report.failed = len(requests) - len(products)
        logger.info(f"{name} sweep: {report.succeeded}/{report.requested} succeeded")
        return products, report

    def _search_requests(self, group: str, limit: int, queries: Sequence[str]) -> List[ScrapeRequest]:
        requests = []
        for source in self.catalog.group(group)[:limit]:
            for query in queries:
                requests.append(ScrapeRequest(
                    url=self.catalog.build_search_url(source, query),
                    options=ScrapeOptions(respect_rate_limit=True),
                ))
        return requests

    def _ad_platforms(self) -> set:
        return {profile.name for profile in self.catalog.group(AD_GROUP)}

    # -- public API ---------------------------------------------------------

    async def analyze(self, config: Optional[AnalysisConfig] = None) -> MarketAnalysis:
        """
        Run the enabled sweeps and build a ranked market report.

        The report is built from whatever succeeded; ``failed_requests``
        and ``sweeps`` record what did not.
        """
        config = config or AnalysisConfig()
        categories = config.categories

        sweeps = []
        if config.include_trending:
            sweeps.append(("trending", self._search_requests(TRENDING_GROUP, TRENDING_SOURCE_LIMIT, categories)))
        if config.include_saas:
            sweeps.append(("saas", self._search_requests(SAAS_GROUP, SAAS_SOURCE_LIMIT, [SAAS_QUERY])))
        if config.include_ads:
            sweeps.append(("ads", self._search_requests(AD_GROUP, AD_SOURCE_LIMIT, categories)))
        if config.sources:
            sweeps.append(("custom", [ScrapeRequest(url=url) for url in config.sources]))

        all_products: List[StructuredProduct] = []
        reports: List[SweepReport] = []
        for index, (name, requests) in enumerate(sweeps):
            if index > 0 and self.sweep_delay > 0:
                await self._sleep(self.sweep_delay)
            products, report = await self._run_sweep(name, requests)
            all_products.extend(products)
            reports.append(report)

        logger.info(f"Analyzing {len(all_products)} products")

        winning = self.process_products(
            all_products,
            price_range=config.price_range,
            categories=categories,
            min_trending_score=config.min_trending_score,
        )
        await self._remember(winning)

        analysis = MarketAnalysis(
            total_products_analyzed=len(all_products),
            winning_products=winning[:config.max_results],
            market_trends=self.market_trends(all_products, categories),
            competitor_landscape=self.competitor_landscape(all_products),
            insights=self.strategies.generate_insights(all_products, winning),
            sweeps=reports,
            failed_requests=sum(r.failed for r in reports),
            generated_at=utc_now(),
        )

        if self.sink is not None:
            self.sink.save_analysis(analysis)

        logger.info(
            f"Analysis complete: {len(analysis.winning_products)} winning products "
            f"from {analysis.total_products_analyzed} analyzed"
        )
        return analysis

    async def search_product(self, name: str) -> List[StructuredProduct]:
        """Search the first few winning-product sources for ``name``."""
        requests = [
            ScrapeRequest(url=f"https://{source.domain}/search?q={quote(name, safe='')}")
            for source in self.catalog.group(WINNING_GROUP)[:SEARCH_SOURCE_LIMIT]
        ]
        products, _ = await self._run_sweep(f"search:{name}", requests)
        return products

    async def deep_dive(
        self,
        product_name: Optional[str] = None,
        category: Optional[str] = None,
        competitor_urls: Sequence[str] = (),
    ) -> DeepDiveReport:
        """
        Position one product (found by name, or the top product of a
        category) against competitor pages.

        Competitor URLs are scraped independently; failures are skipped.
        """
        target = await self._find_target(product_name, category)

        competitors: List[StructuredProduct] = []
        if competitor_urls:
            competitors, _ = await self._run_sweep("competitors", [ScrapeRequest(url=u) for u in competitor_urls])

        strategies = self.strategies
        return DeepDiveReport(
            product=target,
            market_position=strategies.market_position(target, competitors),
            advantages=strategies.competitive_advantages(target, competitors),
            threats=strategies.threats(target, competitors),
            recommendations=strategies.deep_dive_recommendations(target, competitors),
            competitors_analyzed=len(competitors),
        )

    async def _find_target(self, product_name: Optional[str], category: Optional[str]) -> Optional[WinningProduct]:
        async with self._cache_lock:
            cached = list(self._cache.values())

        if product_name:
            needle = product_name.lower()
            for product in cached:
                if needle in product.name.lower():
                    return product
            found = self.process_products(await self.search_product(product_name))
            return found[0] if found else None

        if category:
            matches = [p for p in cached if category_matches(p.category, category)]
            if matches:
                return max(matches, key=lambda p: p.metrics.trending_score)
            found = self.process_products(await self.search_product(category), categories=[category])
            return found[0] if found else None

        return None

    async def monitor(self, product_ids: Sequence[str]) -> List[ProductUpdate]:
        """
        Re-check cached products and report what changed.

        Ids missing from the cache are skipped. The cache entry for each
        refreshed product keeps its original id.
        """
        updates = []
        for product_id in product_ids:
            async with self._cache_lock:
                previous = self._cache.get(product_id)
            if previous is None:
                logger.debug(f"Skipping unknown product id {product_id}")
                continue

            fresh = self.process_products(await self.search_product(previous.name))
            if not fresh:
                logger.info(f"No fresh data for {previous.name}")
                continue

            current = fresh[0].model_copy(update={"id": product_id})
            strategies = self.strategies
            updates.append(ProductUpdate(
                product_id=product_id,
                changes=strategies.detect_changes(previous, current),
                new_opportunities=strategies.detect_new_opportunities(previous, current),
                alerts=strategies.generate_alerts(previous, current),
            ))

            async with self._cache_lock:
                self._cache[product_id] = current

        return updates

    # -- processing ---------------------------------------------------------

    def process_products(
        self,
        products: Sequence[StructuredProduct],
        price_range: Optional[PriceRange] = None,
        categories: Optional[Sequence[str]] = None,
        min_trending_score: Optional[float] = None,
    ) -> List[WinningProduct]:
        """
        Filter, score, merge and rank products.

        Records sharing a normalized title become one WinningProduct listing
        every source that carried it. Output is sorted by trending score,
        highest first, with discovery order breaking ties.
        """
        groups: "OrderedDict[str, List[Tuple[StructuredProduct, WinningProduct]]]" = OrderedDict()

        for product in products:
            amount = product.pricing.amount
            if price_range and amount and not (price_range.min <= amount <= price_range.max):
                continue
            if categories and not any(category_matches(product.metadata.category, c) for c in categories):
                continue

            winning = self.to_winning_product(product)
            if min_trending_score is not None and winning.metrics.trending_score < min_trending_score:
                continue

            groups.setdefault(normalize_title(product), []).append((product, winning))

        ad_platforms = self._ad_platforms()
        merged = [self._merge(members, ad_platforms) for members in groups.values()]
        return sorted(merged, key=lambda w: -w.metrics.trending_score)

    def to_winning_product(self, product: StructuredProduct) -> WinningProduct:
        strategies = self.strategies
        competitors = strategies.find_competitors(product)
        opportunities = strategies.identify_opportunities(product, competitors)
        risks = strategies.assess_risks(product)

        return WinningProduct(
            id=product.id,
            name=product.title,
            category=product.metadata.category or "digital-product",
            description=product.description,
            pricing=product.pricing.model_copy(update={"currency": product.pricing.currency or "USD"}),
            metrics=compute_metrics(product),
            sources=[ProductSource(platform=product.source_name, url=product.source_url)],
            competitors=competitors,
            opportunities=opportunities,
            risks=risks,
            recommendations=strategies.recommend(product, opportunities, risks),
            last_analyzed=utc_now(),
        )

    @staticmethod
    def _merge(members: List[Tuple[StructuredProduct, WinningProduct]], ad_platforms: set) -> WinningProduct:
        # Highest score represents the group; max() keeps the first on ties
        best = max((w for _, w in members), key=lambda w: w.metrics.trending_score)
        if len(members) == 1 and best.sources[0].platform not in ad_platforms:
            return best

        platform_counts = Counter(p.source_name for p, _ in members)
        sources = []
        seen = set()
        for product, _ in members:
            key = (product.source_name, product.source_url)
            if key in seen:
                continue
            seen.add(key)
            ad_frequency = platform_counts[product.source_name] if product.source_name in ad_platforms else None
            sources.append(ProductSource(
                platform=product.source_name,
                url=product.source_url,
                ad_frequency=ad_frequency,
            ))
        return best.model_copy(update={"sources": sources})

    # -- aggregates ---------------------------------------------------------

    @staticmethod
    def market_trends(products: Sequence[StructuredProduct], categories: Sequence[str]) -> List[MarketTrend]:
        trends = []
        for category in categories:
            members = [p for p in products if category_matches(p.metadata.category, category)]
            if not members:
                continue

            feature_counts = Counter(f for p in members for f in p.features)
            trends.append(MarketTrend(
                category=category,
                products=len(members),
                avg_price=sum(p.pricing.amount or 0 for p in members) / len(members),
                top_features=[feature for feature, _ in feature_counts.most_common(5)],
            ))
        return trends

    @staticmethod
    def competitor_landscape(products: Sequence[StructuredProduct]) -> CompetitorLandscape:
        counts = Counter(p.source_name for p in products)
        if not counts:
            return CompetitorLandscape()

        titles: Dict[str, List[str]] = {}
        for product in products:
            titles.setdefault(product.source_name, []).append(product.title)

        ranked = counts.most_common()
        leaders = [
            MarketLeader(
                name=name,
                market_share=count / len(products) * 100,
                products=titles[name][:5],
            )
            for name, count in ranked[:5]
        ]
        return CompetitorLandscape(
            total_competitors=len(counts),
            market_leaders=leaders,
            emerging_players=[name for name, _ in ranked[5:10]],
        )
