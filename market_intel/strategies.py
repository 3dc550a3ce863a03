"""
Pluggable analyzer heuristics.

Competitor discovery, opportunity/risk templates, recommendations,
insight text and deep-dive rules are fixed rule sets, not market data.
Each is a plain function so it can be tested alone, and ``Strategies``
bundles them so an analyzer can be given replacements.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .schemas import (
    Alert,
    Competitor,
    DeepDiveRecommendation,
    Insights,
    Level,
    Opportunity,
    Recommendation,
    Risk,
    StructuredProduct,
    WinningProduct,
)

PLACEHOLDER_COMPETITOR_URL = "https://example.com"
COMPETITOR_PRICE_FACTOR = 1.2

SATURATION_SOURCES = ["Facebook Ads Library"]
PLATFORM_DEPENDENT_SOURCES = ["Shopify", "Chrome"]

# Static placeholders until there is data to compute these from
FEATURE_GAPS = ["AI integration", "Mobile optimization", "Analytics dashboard"]
MARKET_OPPORTUNITIES = [
    "Underserved niches in productivity tools",
    "Growing demand for AI-powered solutions",
    "Opportunity in subscription models",
]

TREND_SHIFT_THRESHOLD = 10


def _average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ---------------------------------------------------------------------------
# Per-product rules
# ---------------------------------------------------------------------------

def find_competitors(product: StructuredProduct) -> List[Competitor]:
    """Placeholder competitor: same features, 20% pricier."""
    return [
        Competitor(
            name=f"Competitor of {product.title}",
            url=PLACEHOLDER_COMPETITOR_URL,
            pricing=(product.pricing.amount or 0) * COMPETITOR_PRICE_FACTOR,
            features=product.features[:3],
        )
    ]


def identify_opportunities(product: StructuredProduct, competitors: List[Competitor]) -> List[Opportunity]:
    opportunities = []

    if competitors:
        avg_price = _average([c.pricing or 0 for c in competitors])
        if (product.pricing.amount or 0) < avg_price * 0.8:
            opportunities.append(Opportunity(
                type="pricing",
                description="Price is significantly lower than competitors - opportunity to increase",
                impact=Level.MEDIUM,
            ))

    if len(product.features) < 5:
        opportunities.append(Opportunity(
            type="features",
            description="Limited features compared to market standards",
            impact=Level.HIGH,
        ))

    return opportunities


def assess_risks(product: StructuredProduct) -> List[Risk]:
    risks = []

    if product.source_name in SATURATION_SOURCES:
        risks.append(Risk(
            type="saturation",
            description="High advertising activity suggests market saturation",
            severity=Level.MEDIUM,
        ))

    if any(name in product.source_name for name in PLATFORM_DEPENDENT_SOURCES):
        risks.append(Risk(
            type="platform-dependency",
            description="Success depends on platform policies and changes",
            severity=Level.MEDIUM,
        ))

    return risks


def recommend(
    product: StructuredProduct,
    opportunities: List[Opportunity],
    risks: List[Risk],
) -> List[Recommendation]:
    recommendations = []

    for opportunity in opportunities:
        if opportunity.type == "pricing" and opportunity.impact == Level.MEDIUM:
            recommendations.append(Recommendation(
                action="Consider gradual price increase testing",
                priority=Level.MEDIUM,
                timeframe="short-term",
            ))

    for risk in risks:
        if risk.type == "platform-dependency":
            recommendations.append(Recommendation(
                action="Diversify distribution channels",
                priority=Level.HIGH,
                timeframe="long-term",
            ))

    return recommendations


# ---------------------------------------------------------------------------
# Report-level rules
# ---------------------------------------------------------------------------

def generate_insights(products: List[StructuredProduct], winning: List[WinningProduct]) -> Insights:
    """Top categories and a price summary; gaps and opportunities are static placeholders."""
    categories = Counter(p.metadata.category or "unknown" for p in products)
    prices = [p.pricing.amount for p in products if p.pricing.amount]
    avg_price = _average(prices)

    return Insights(
        hot_categories=[category for category, _ in categories.most_common(5)],
        pricing_trends=[
            f"Average price: ${avg_price:.2f}",
            "Price range varies significantly" if len(prices) > 10 else "Consistent pricing",
        ],
        feature_gaps=list(FEATURE_GAPS),
        market_opportunities=list(MARKET_OPPORTUNITIES),
    )


# ---------------------------------------------------------------------------
# Deep dive rules
# ---------------------------------------------------------------------------

def market_position(product: Optional[WinningProduct], competitors: List[StructuredProduct]) -> str:
    if product is None:
        return "Unknown position"
    if not competitors:
        return "First mover advantage"

    avg_price = _average([c.pricing.amount or 0 for c in competitors])
    price = product.pricing.amount or 0

    if price < avg_price * 0.8:
        return "Cost leader"
    if price > avg_price * 1.2:
        return "Premium player"
    return "Market follower"


def competitive_advantages(product: Optional[WinningProduct], competitors: List[StructuredProduct]) -> List[str]:
    """
    Advantages of ``product`` over the scraped competitor pages.

    Any competitor presence yields the generic "Competitive feature set"
    entry; supply a replacement through ``Strategies`` for feature-level
    comparison.
    """
    if product is None:
        return []

    advantages = []
    if product.metrics.trending_score > 80:
        advantages.append("High market traction")
    if competitors:
        advantages.append("Competitive feature set")
    return advantages


def threats(product: Optional[WinningProduct], competitors: List[StructuredProduct]) -> List[str]:
    found = []
    if len(competitors) > 5:
        found.append("High competition")
    if product is not None and product.metrics.competition_level == Level.HIGH:
        found.append("Market saturation risk")
    return found


def deep_dive_recommendations(
    product: Optional[WinningProduct],
    competitors: List[StructuredProduct],
) -> List[DeepDiveRecommendation]:
    recommendations = []

    if len(competitors) > 3:
        recommendations.append(DeepDiveRecommendation(
            action="Focus on unique value proposition",
            impact="Differentiate from crowded market",
            effort=Level.MEDIUM,
        ))

    if product is not None and product.pricing.amount and product.pricing.amount < 50:
        recommendations.append(DeepDiveRecommendation(
            action="Consider premium pricing strategy",
            impact="Increase profit margins",
            effort=Level.LOW,
        ))

    return recommendations


# ---------------------------------------------------------------------------
# Monitoring rules
# ---------------------------------------------------------------------------

def detect_changes(old: WinningProduct, new: WinningProduct) -> List[str]:
    changes = []

    if old.pricing.amount != new.pricing.amount:
        changes.append(f"Price changed from ${old.pricing.amount} to ${new.pricing.amount}")

    old_score = old.metrics.trending_score
    new_score = new.metrics.trending_score
    if old_score != new_score:
        direction = "increased" if new_score > old_score else "decreased"
        changes.append(f"Trending score {direction} from {old_score:g} to {new_score:g}")

    return changes


def detect_new_opportunities(old: WinningProduct, new: WinningProduct) -> List[str]:
    if len(new.opportunities) > len(old.opportunities):
        return ["New market opportunities identified"]
    return []


def generate_alerts(old: WinningProduct, new: WinningProduct) -> List[Alert]:
    alerts = []

    if old.pricing.amount != new.pricing.amount:
        alerts.append(Alert(
            type="price_change",
            message=f"Price changed for {new.name}",
            severity=Level.MEDIUM,
        ))

    delta = new.metrics.trending_score - old.metrics.trending_score
    if abs(delta) >= TREND_SHIFT_THRESHOLD:
        direction = "up" if delta > 0 else "down"
        alerts.append(Alert(
            type="trend_shift",
            message=f"Trending score for {new.name} moved {direction} by {abs(delta):g}",
            severity=Level.HIGH if abs(delta) >= 2 * TREND_SHIFT_THRESHOLD else Level.MEDIUM,
        ))

    old_names = {c.name for c in old.competitors}
    added = [c.name for c in new.competitors if c.name not in old_names]
    if added:
        alerts.append(Alert(
            type="new_competitor",
            message=f"New competitors for {new.name}: {', '.join(added)}",
            severity=Level.LOW,
        ))

    if len(new.opportunities) > len(old.opportunities):
        alerts.append(Alert(
            type="opportunity",
            message=f"New opportunities identified for {new.name}",
            severity=Level.LOW,
        ))

    return alerts


@dataclass
class Strategies:
    """Heuristic rule set used by the analyzer. Swap any member to customize."""
    find_competitors: Callable[[StructuredProduct], List[Competitor]] = find_competitors
    identify_opportunities: Callable[..., List[Opportunity]] = identify_opportunities
    assess_risks: Callable[[StructuredProduct], List[Risk]] = assess_risks
    recommend: Callable[..., List[Recommendation]] = recommend
    generate_insights: Callable[..., Insights] = generate_insights
    market_position: Callable[..., str] = market_position
    competitive_advantages: Callable[..., List[str]] = competitive_advantages
    threats: Callable[..., List[str]] = threats
    deep_dive_recommendations: Callable[..., List[DeepDiveRecommendation]] = deep_dive_recommendations
    detect_changes: Callable[..., List[str]] = detect_changes
    detect_new_opportunities: Callable[..., List[str]] = detect_new_opportunities
    generate_alerts: Callable[..., List[Alert]] = generate_alerts
