"""
Trending score, secondary metrics and analyzer heuristic rules.
"""

import unittest

from market_intel.schemas import Competitor, Level, Difficulty, ProductMetrics, WinningProduct
from market_intel.scoring import (
    competition_level,
    compute_metrics,
    difficulty,
    market_demand,
    profitability,
    trending_score,
)
from market_intel import strategies

from tests.fakes import make_product


def make_winning(name="Planner", amount=29.0, score=50.0, competitors=None, opportunities=None) -> WinningProduct:
    product = make_product(title=name, amount=amount)
    return WinningProduct(
        id="w1",
        name=name,
        category="template",
        description="",
        pricing=product.pricing,
        metrics=ProductMetrics(trending_score=score, competition_level=competition_level(score)),
        competitors=competitors or [],
        opportunities=opportunities or [],
    )


class TestTrendingScore(unittest.TestCase):

    def test_baseline_for_unknown_source(self):
        product = make_product(source_name="Somewhere", amount=None, category="misc")
        self.assertEqual(trending_score(product), 10)

    def test_maximum_signal(self):
        product = make_product(
            source_name="Product Hunt",
            amount=50,
            category="ai tools",
            features=[f"f{i}" for i in range(8)],
            images=[f"i{i}" for i in range(6)],
            description="x" * 100,
        )
        # 30 credibility + 20 price + 15 features + 10 description + 15 images + 10 category
        self.assertEqual(trending_score(product), 100)

    def test_price_bands(self):
        def score_at(amount):
            return trending_score(make_product(source_name="X", amount=amount, category="misc"))

        self.assertEqual(score_at(50), 30)
        self.assertEqual(score_at(150), 25)
        self.assertEqual(score_at(400), 20)
        self.assertEqual(score_at(1000), 10)

    def test_description_threshold(self):
        short = make_product(source_name="X", amount=None, category="misc", description="x" * 99)
        long = make_product(source_name="X", amount=None, category="misc", description="x" * 100)
        self.assertEqual(trending_score(long) - trending_score(short), 10)

    def test_feature_and_image_caps(self):
        product = make_product(
            source_name="X",
            amount=None,
            category="misc",
            features=["f"] * 30,
            images=["i"] * 30,
        )
        self.assertEqual(trending_score(product), 10 + 15 + 15)

    def test_always_in_range(self):
        for amount in (None, 1, 25, 99999):
            for features in ([], ["f"] * 100):
                score = trending_score(make_product(amount=amount, features=features))
                self.assertGreaterEqual(score, 0)
                self.assertLessEqual(score, 100)


class TestSecondaryMetrics(unittest.TestCase):

    def test_competition_thresholds(self):
        self.assertEqual(competition_level(71), Level.HIGH)
        self.assertEqual(competition_level(70), Level.MEDIUM)
        self.assertEqual(competition_level(41), Level.MEDIUM)
        self.assertEqual(competition_level(40), Level.LOW)

    def test_market_demand(self):
        self.assertEqual(market_demand(make_product(category="marketing")), Level.HIGH)
        self.assertEqual(market_demand(make_product(category="misc", features=["f"] * 6)), Level.MEDIUM)
        self.assertEqual(market_demand(make_product(category="misc")), Level.LOW)

    def test_profitability(self):
        self.assertEqual(profitability(make_product(amount=50)), Level.HIGH)
        self.assertEqual(profitability(make_product(amount=20)), Level.MEDIUM)
        self.assertEqual(profitability(make_product(amount=None)), Level.LOW)

    def test_difficulty(self):
        self.assertEqual(difficulty(make_product(category="saas")), Difficulty.HARD)
        self.assertEqual(difficulty(make_product(category="misc", features=["f"] * 11)), Difficulty.MEDIUM)
        self.assertEqual(difficulty(make_product(category="misc")), Difficulty.EASY)

    def test_compute_metrics(self):
        metrics = compute_metrics(make_product(source_name="Product Hunt", amount=50, category="saas"))
        self.assertEqual(metrics.trending_score, 50)
        self.assertEqual(metrics.competition_level, Level.MEDIUM)
        self.assertEqual(metrics.profitability, Level.HIGH)
        self.assertEqual(metrics.difficulty, Difficulty.HARD)


class TestProductRules(unittest.TestCase):

    def test_placeholder_competitor(self):
        competitors = strategies.find_competitors(make_product(amount=10, features=["a", "b", "c", "d"]))

        self.assertEqual(len(competitors), 1)
        self.assertAlmostEqual(competitors[0].pricing, 12.0)
        self.assertEqual(competitors[0].features, ["a", "b", "c"])

    def test_opportunities(self):
        product = make_product(amount=10, features=["a"])
        competitors = [Competitor(name="Big", url="https://big.test", pricing=100)]

        found = strategies.identify_opportunities(product, competitors)

        self.assertEqual([o.type for o in found], ["pricing", "features"])
        self.assertEqual(found[1].impact, Level.HIGH)

    def test_risks(self):
        self.assertEqual(
            [r.type for r in strategies.assess_risks(make_product(source_name="Facebook Ads Library"))],
            ["saturation"],
        )
        self.assertEqual(
            [r.type for r in strategies.assess_risks(make_product(source_name="Chrome Web Store"))],
            ["platform-dependency"],
        )
        self.assertEqual(strategies.assess_risks(make_product(source_name="Gumroad")), [])

    def test_recommendations(self):
        product = make_product(source_name="Shopify App Store", amount=10)
        competitors = [Competitor(name="Big", url="https://big.test", pricing=100)]
        opportunities = strategies.identify_opportunities(product, competitors)
        risks = strategies.assess_risks(product)

        actions = [r.action for r in strategies.recommend(product, opportunities, risks)]

        self.assertEqual(actions, ["Consider gradual price increase testing", "Diversify distribution channels"])

    def test_insights(self):
        products = [make_product(category="template")] * 3 + [make_product(category="course", amount=None)]

        insights = strategies.generate_insights(products, [])

        self.assertEqual(insights.hot_categories, ["template", "course"])
        self.assertEqual(insights.pricing_trends[0], "Average price: $29.00")
        self.assertEqual(insights.feature_gaps, strategies.FEATURE_GAPS)


class TestDeepDiveRules(unittest.TestCase):

    def _competitors(self, *amounts):
        return [make_product(title=f"C{i}", amount=a) for i, a in enumerate(amounts)]

    def test_market_position(self):
        self.assertEqual(strategies.market_position(None, []), "Unknown position")
        self.assertEqual(strategies.market_position(make_winning(), []), "First mover advantage")
        self.assertEqual(strategies.market_position(make_winning(amount=10), self._competitors(100)), "Cost leader")
        self.assertEqual(strategies.market_position(make_winning(amount=200), self._competitors(100)), "Premium player")
        self.assertEqual(strategies.market_position(make_winning(amount=100), self._competitors(100)), "Market follower")

    def test_advantages_and_threats(self):
        product = make_winning(score=85)
        competitors = self._competitors(*[10] * 6)

        self.assertIn("High market traction", strategies.competitive_advantages(product, competitors))
        self.assertEqual(
            strategies.threats(product, competitors),
            ["High competition", "Market saturation risk"],
        )

    def test_advantages_generic_with_competitors(self):
        self.assertEqual(strategies.competitive_advantages(None, self._competitors(10)), [])
        self.assertEqual(strategies.competitive_advantages(make_winning(score=50), []), [])
        self.assertEqual(
            strategies.competitive_advantages(make_winning(score=50), self._competitors(10)),
            ["Competitive feature set"],
        )

    def test_recommendations(self):
        recs = strategies.deep_dive_recommendations(make_winning(amount=20), self._competitors(1, 2, 3, 4))
        self.assertEqual(
            [r.action for r in recs],
            ["Focus on unique value proposition", "Consider premium pricing strategy"],
        )


class TestMonitorRules(unittest.TestCase):

    def test_no_changes(self):
        old = make_winning()
        self.assertEqual(strategies.detect_changes(old, old), [])
        self.assertEqual(strategies.generate_alerts(old, old), [])

    def test_price_and_trend_alerts(self):
        old = make_winning(amount=29, score=50)
        new = make_winning(amount=39, score=75)

        changes = strategies.detect_changes(old, new)
        alerts = {a.type: a for a in strategies.generate_alerts(old, new)}

        self.assertEqual(changes[0], "Price changed from $29.0 to $39.0")
        self.assertIn("increased", changes[1])
        self.assertEqual(alerts["price_change"].severity, Level.MEDIUM)
        self.assertEqual(alerts["trend_shift"].severity, Level.HIGH)

    def test_small_trend_move_ignored(self):
        alerts = strategies.generate_alerts(make_winning(score=50), make_winning(score=55))
        self.assertEqual(alerts, [])

    def test_new_competitor_and_opportunity(self):
        old = make_winning()
        new = make_winning(
            competitors=[Competitor(name="Rival", url="https://rival.test")],
            opportunities=strategies.identify_opportunities(make_product(features=[]), []),
        )

        types = [a.type for a in strategies.generate_alerts(old, new)]

        self.assertEqual(types, ["new_competitor", "opportunity"])
        self.assertEqual(strategies.detect_new_opportunities(old, new), ["New market opportunities identified"])

    def test_strategies_overridable(self):
        custom = strategies.Strategies(find_competitors=lambda product: [])
        self.assertEqual(custom.find_competitors(make_product()), [])
        self.assertIs(custom.assess_risks, strategies.assess_risks)


if __name__ == "__main__":
    unittest.main()
