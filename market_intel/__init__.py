"""
Market Intelligence: product scraping and winning-product analysis.

This package turns third-party product listing pages into ranked market
reports. It includes:
- A source catalog of per-site selectors, quotas and fetch overrides
- A per-source hourly rate limiter
- A layered content extractor (selectors, markdown heuristics, defaults)
- A scraping orchestrator with retries, timeouts and chunked batches
- Pluggable fetch (httpx, crawl4ai) and enrichment (OpenAI) collaborators
- A winning-products analyzer with trends, competitor landscape and monitoring
"""

from .errors import (
    ScrapingError,
    InvalidURLError,
    UnsupportedDomainError,
    RateLimitExceededError,
    FetchFailedError,
    ExtractionFailedError,
    EnrichmentFailedError,
)
from .config import ScraperSettings, configure_logging
from .schemas import (
    StructuredProduct,
    Pricing,
    PricingType,
    ScrapeRequest,
    ScrapeOptions,
    ScrapingResult,
    ScrapingStats,
    WinningProduct,
    MarketAnalysis,
    AnalysisConfig,
    DeepDiveReport,
    ProductUpdate,
)
from .sources import SourceProfile, SourceCatalog, load_catalog, default_catalog
from .rate_limiter import RateLimiter, RateLimitOutcome, RateLimitInfo
from .selectors import SoupSelector, PatternSelector
from .extractor import ContentExtractor, parse_price_text
from .fetchers import FetchParams, FetchResult, HttpxFetcher, Crawl4AIFetcher
from .enrichment import EnrichmentResult, OpenAIEnricher
from .sinks import ProductSink, JsonlSink
from .scraper import ProductScraper
from .strategies import Strategies
from .analyzer import WinningProductsAnalyzer

__all__ = [
    # Errors
    "ScrapingError",
    "InvalidURLError",
    "UnsupportedDomainError",
    "RateLimitExceededError",
    "FetchFailedError",
    "ExtractionFailedError",
    "EnrichmentFailedError",
    # Config
    "ScraperSettings",
    "configure_logging",
    # Schemas
    "StructuredProduct",
    "Pricing",
    "PricingType",
    "ScrapeRequest",
    "ScrapeOptions",
    "ScrapingResult",
    "ScrapingStats",
    "WinningProduct",
    "MarketAnalysis",
    "AnalysisConfig",
    "DeepDiveReport",
    "ProductUpdate",
    # Sources
    "SourceProfile",
    "SourceCatalog",
    "load_catalog",
    "default_catalog",
    # Rate limiting
    "RateLimiter",
    "RateLimitOutcome",
    "RateLimitInfo",
    # Extraction
    "SoupSelector",
    "PatternSelector",
    "ContentExtractor",
    "parse_price_text",
    # Collaborators
    "FetchParams",
    "FetchResult",
    "HttpxFetcher",
    "Crawl4AIFetcher",
    "EnrichmentResult",
    "OpenAIEnricher",
    "ProductSink",
    "JsonlSink",
    # Orchestration
    "ProductScraper",
    "Strategies",
    "WinningProductsAnalyzer",
]
