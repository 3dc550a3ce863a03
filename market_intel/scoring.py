"""
Trending score and secondary metrics for scraped products.

All thresholds live in module constants so they can be tuned without
touching the scoring logic.
"""

from typing import Dict, Iterable

from .schemas import Difficulty, Level, ProductMetrics, StructuredProduct

SOURCE_CREDIBILITY: Dict[str, int] = {
    "Product Hunt": 30,
    "Facebook Ads Library": 25,
    "Whop": 20,
    "Indie Hackers": 20,
    "BetaList": 15,
    "Gumroad": 15,
}
DEFAULT_CREDIBILITY = 10

# (min, max, bonus), first band containing the price wins
PRICE_BANDS = [
    (20, 100, 20),
    (10, 200, 15),
    (5, 500, 10),
]

HOT_CATEGORIES = ["ai", "productivity", "marketing", "design", "development"]
HIGH_DEMAND_CATEGORIES = ["productivity", "marketing", "ai", "saas"]
COMPLEX_CATEGORIES = ["saas", "software", "ai"]

MAX_FEATURE_BONUS = 15
POINTS_PER_FEATURE = 2
MAX_IMAGE_BONUS = 15
POINTS_PER_IMAGE = 3
DESCRIPTION_BONUS = 10
DESCRIPTION_MIN_CHARS = 100
CATEGORY_BONUS = 10


def _category_in(category: str, names: Iterable[str]) -> bool:
    return any(name in category for name in names)


def trending_score(product: StructuredProduct) -> float:
    """Heuristic 0-100 popularity signal."""
    score = SOURCE_CREDIBILITY.get(product.source_name, DEFAULT_CREDIBILITY)

    price = product.pricing.amount
    if price:
        for low, high, bonus in PRICE_BANDS:
            if low <= price <= high:
                score += bonus
                break

    if product.features:
        score += min(len(product.features) * POINTS_PER_FEATURE, MAX_FEATURE_BONUS)

    if product.description and len(product.description) >= DESCRIPTION_MIN_CHARS:
        score += DESCRIPTION_BONUS

    if product.images:
        score += min(len(product.images) * POINTS_PER_IMAGE, MAX_IMAGE_BONUS)

    if _category_in(product.metadata.category or "", HOT_CATEGORIES):
        score += CATEGORY_BONUS

    return float(max(0, min(score, 100)))


def competition_level(score: float) -> Level:
    if score > 70:
        return Level.HIGH
    if score > 40:
        return Level.MEDIUM
    return Level.LOW


def market_demand(product: StructuredProduct) -> Level:
    if _category_in(product.metadata.category or "", HIGH_DEMAND_CATEGORIES):
        return Level.HIGH
    if len(product.features) > 5:
        return Level.MEDIUM
    return Level.LOW


def profitability(product: StructuredProduct) -> Level:
    price = product.pricing.amount or 0
    if price >= 50:
        return Level.HIGH
    if price >= 20:
        return Level.MEDIUM
    return Level.LOW


def difficulty(product: StructuredProduct) -> Difficulty:
    if _category_in(product.metadata.category or "", COMPLEX_CATEGORIES):
        return Difficulty.HARD
    if len(product.features) > 10:
        return Difficulty.MEDIUM
    return Difficulty.EASY


def compute_metrics(product: StructuredProduct) -> ProductMetrics:
    score = trending_score(product)
    return ProductMetrics(
        trending_score=score,
        competition_level=competition_level(score),
        market_demand=market_demand(product),
        profitability=profitability(product),
        difficulty=difficulty(product),
    )
