"""
Pydantic schemas for scraped products and market analysis reports.

Every record that leaves the pipeline (to a caller, a sink, or a JSONL
file) is one of these models.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> str:
    """ISO timestamp used for every record."""
    return datetime.utcnow().isoformat() + "Z"


class PricingType(str, Enum):
    """How a product is paid for."""
    FREE = "free"
    ONE_TIME = "one-time"
    SUBSCRIPTION = "subscription"
    VARIABLE = "variable"


class PricingInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"


class ScrapeStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class Level(str, Enum):
    """Low/medium/high rating shared by metrics, risks and recommendations."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# ---------------------------------------------------------------------------
# Structured product
# ---------------------------------------------------------------------------

class PriceRange(BaseModel):
    min: float
    max: float


class Pricing(BaseModel):
    """Parsed price information."""
    type: PricingType = Field(PricingType.FREE, description="Pricing type")
    amount: Optional[float] = Field(None, description="Numeric price amount")
    currency: Optional[str] = Field(None, description="ISO currency code (e.g., 'USD')")
    interval: Optional[PricingInterval] = Field(None, description="Billing interval for subscriptions")
    price_range: Optional[PriceRange] = Field(None, description="Min/max when a product has several prices")


class SeoData(BaseModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    og_image: Optional[str] = None


class AIInsights(BaseModel):
    """Fields filled in by an enrichment collaborator."""
    target_audience: Optional[str] = None
    selling_points: List[str] = Field(default_factory=list)
    advantages: List[str] = Field(default_factory=list)


class ProductMetadata(BaseModel):
    category: str = Field("digital-product", description="Product category bucket")
    tags: List[str] = Field(default_factory=list, description="Hashtags and frequent keywords")
    language: str = Field("en", description="Page language")
    seo_data: Optional[SeoData] = None
    ai_insights: Optional[AIInsights] = None


class Seller(BaseModel):
    name: str
    profile_url: Optional[str] = None
    verified: bool = False


class Reviews(BaseModel):
    average_rating: float = 0.0
    total_reviews: int = 0


class PageMetadata(BaseModel):
    """Metadata returned by a fetch collaborator alongside the page body."""
    title: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    og_image: Optional[str] = None
    status_code: Optional[int] = None


class ExtractedProduct(BaseModel):
    """Content extractor output: a product record without identity fields."""
    title: str = "Untitled Product"
    description: str = "No description available"
    pricing: Pricing = Field(default_factory=Pricing)
    features: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    content: str = ""
    metadata: ProductMetadata = Field(default_factory=ProductMetadata)
    seller: Optional[Seller] = None
    reviews: Optional[Reviews] = None
    degraded: bool = Field(False, description="True when extraction fell back to defaults")


class StructuredProduct(BaseModel):
    """
    Canonical extraction output for one scraped page.

    Records are treated as immutable; enrichment produces a copy via
    ``model_copy(update=...)`` and only touches ``metadata``.
    """
    id: str = Field(..., description="Generated product id")
    source_url: str = Field(..., description="Page URL the record was scraped from")
    source_name: str = Field(..., description="Display name of the source profile")
    title: str = "Untitled Product"
    description: str = "No description available"
    pricing: Pricing = Field(default_factory=Pricing)
    features: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    content: str = ""
    metadata: ProductMetadata = Field(default_factory=ProductMetadata)
    seller: Optional[Seller] = None
    reviews: Optional[Reviews] = None
    scraped_at: str = Field(default_factory=utc_now)
    status: ScrapeStatus = ScrapeStatus.SUCCESS
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------

class ScrapeOptions(BaseModel):
    """Per-request overrides. ``None`` means use the scraper's settings."""
    timeout_ms: Optional[int] = None
    retries: Optional[int] = None
    formats: Optional[List[str]] = None
    respect_rate_limit: bool = True
    enrich: bool = False


class ScrapeRequest(BaseModel):
    url: str
    source: Optional[str] = Field(None, description="Explicit source key, bypassing host lookup")
    options: ScrapeOptions = Field(default_factory=ScrapeOptions)
    priority: Priority = Priority.NORMAL
    user_id: Optional[str] = None


class ErrorInfo(BaseModel):
    code: str
    message: str
    retry_after_ms: Optional[int] = None


class ScrapingResult(BaseModel):
    """Envelope returned for every scrape, successful or not."""
    success: bool
    data: Optional[StructuredProduct] = None
    error: Optional[ErrorInfo] = None
    request_id: str
    duration_ms: float = 0.0
    rate_limit_remaining: Optional[int] = None
    retry_count: int = 0


class SourceStats(BaseModel):
    requests: int = 0
    successes: int = 0
    failures: int = 0
    avg_response_time_ms: float = 0.0


class ScrapingStats(BaseModel):
    total_requests: int = 0
    successful_scrapes: int = 0
    failed_scrapes: int = 0
    average_response_time_ms: float = 0.0
    rate_limit_hits: int = 0
    errors_by_type: Dict[str, int] = Field(default_factory=dict)
    source_stats: Dict[str, SourceStats] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Market analysis
# ---------------------------------------------------------------------------

class ProductMetrics(BaseModel):
    trending_score: float = Field(0.0, ge=0, le=100)
    competition_level: Level = Level.LOW
    market_demand: Level = Level.LOW
    profitability: Level = Level.LOW
    difficulty: Difficulty = Difficulty.EASY


class ProductSource(BaseModel):
    platform: str
    url: str
    ad_frequency: Optional[int] = None
    search_volume: Optional[int] = None


class Competitor(BaseModel):
    name: str
    url: str
    pricing: Optional[float] = None
    features: List[str] = Field(default_factory=list)


class Opportunity(BaseModel):
    type: str = Field(..., description="pricing, features, marketing or niche")
    description: str
    impact: Level = Level.MEDIUM


class Risk(BaseModel):
    type: str = Field(..., description="saturation, trend-decline, platform-dependency or legal")
    description: str
    severity: Level = Level.MEDIUM


class Recommendation(BaseModel):
    action: str
    priority: Level = Level.MEDIUM
    timeframe: str = Field("short-term", description="immediate, short-term or long-term")


class WinningProduct(BaseModel):
    """Scored view over one or more structured products."""
    id: str
    name: str
    category: str
    description: str
    pricing: Pricing
    metrics: ProductMetrics
    sources: List[ProductSource] = Field(default_factory=list)
    competitors: List[Competitor] = Field(default_factory=list)
    opportunities: List[Opportunity] = Field(default_factory=list)
    risks: List[Risk] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    last_analyzed: str = Field(default_factory=utc_now)


class MarketTrend(BaseModel):
    category: str
    growth: str = "growing"
    products: int
    avg_price: float
    top_features: List[str] = Field(default_factory=list)


class MarketLeader(BaseModel):
    name: str
    market_share: float
    products: List[str] = Field(default_factory=list)


class CompetitorLandscape(BaseModel):
    total_competitors: int = 0
    market_leaders: List[MarketLeader] = Field(default_factory=list)
    emerging_players: List[str] = Field(default_factory=list)


class Insights(BaseModel):
    hot_categories: List[str] = Field(default_factory=list)
    pricing_trends: List[str] = Field(default_factory=list)
    feature_gaps: List[str] = Field(default_factory=list)
    market_opportunities: List[str] = Field(default_factory=list)


class SweepReport(BaseModel):
    """Request accounting for one sweep of an analysis run."""
    name: str
    requested: int = 0
    succeeded: int = 0
    failed: int = 0


class MarketAnalysis(BaseModel):
    total_products_analyzed: int = 0
    winning_products: List[WinningProduct] = Field(default_factory=list)
    market_trends: List[MarketTrend] = Field(default_factory=list)
    competitor_landscape: CompetitorLandscape = Field(default_factory=CompetitorLandscape)
    insights: Insights = Field(default_factory=Insights)
    sweeps: List[SweepReport] = Field(default_factory=list)
    failed_requests: int = 0
    generated_at: str = Field(default_factory=utc_now)


class AnalysisConfig(BaseModel):
    """Knobs for one ``analyze`` run."""
    categories: List[str] = Field(
        default_factory=lambda: ["software", "courses", "templates", "saas", "tools"]
    )
    price_range: PriceRange = Field(default_factory=lambda: PriceRange(min=10, max=500))
    sources: List[str] = Field(default_factory=list, description="Custom URLs to scrape")
    include_trending: bool = True
    include_saas: bool = True
    include_ads: bool = True
    min_trending_score: float = 60
    max_results: int = 50


class DeepDiveRecommendation(BaseModel):
    action: str
    impact: str
    effort: Level = Level.MEDIUM


class DeepDiveReport(BaseModel):
    product: Optional[WinningProduct] = None
    market_position: str
    advantages: List[str] = Field(default_factory=list)
    threats: List[str] = Field(default_factory=list)
    recommendations: List[DeepDiveRecommendation] = Field(default_factory=list)
    competitors_analyzed: int = 0


class Alert(BaseModel):
    type: str = Field(..., description="price_change, trend_shift, new_competitor or opportunity")
    message: str
    severity: Level = Level.MEDIUM


class ProductUpdate(BaseModel):
    product_id: str
    changes: List[str] = Field(default_factory=list)
    new_opportunities: List[str] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list)
