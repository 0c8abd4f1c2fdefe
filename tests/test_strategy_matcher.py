"""Tests for the StrategyMatcher catalog scoring and suggestions."""
import pytest

from defidesk.services.risk_profiler import RiskLevel
from defidesk.services.strategy_matcher import (
    OptimizationType,
    StrategyCategory,
    StrategyCriteria,
    StrategyMatcher,
    StrategyMatcherConfig,
)


@pytest.fixture
def matcher():
    return StrategyMatcher()


def _ids(matches):
    return [m.strategy.id for m in matches]


class TestFindMatchingStrategies:

    def test_conservative_ranking(self, matcher):
        result = matcher.find_matching_strategies(StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW))
        assert result.success
        assert _ids(result.value) == [
            "usdc-lending-silo",
            "stable-yield-diversified",
            "sei-usdc-lp-dragonswap",
        ]

    def test_scores_sorted_descending(self, matcher):
        matches = matcher.find_matching_strategies(StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)).value
        scores = [m.match_score for m in matches]
        assert scores == sorted(scores, reverse=True)

    def test_top_score_components(self):
        matcher = StrategyMatcher(StrategyMatcherConfig(prefer_popular_strategies=False))
        top = matcher.find_matching_strategies(StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)).value[0]
        # amount 1.0, risk 1.0, protocol 0.7, apy 0.8, leverage 1.0
        assert top.match_score == pytest.approx(0.91)
        assert "Risk level matches your tolerance" in top.reasons

    def test_popularity_boost(self, matcher):
        top = matcher.find_matching_strategies(StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)).value[0]
        assert top.match_score == pytest.approx(0.91 * 1.085)

    def test_leverage_needs_permission(self, matcher):
        criteria = StrategyCriteria(amount=5000, risk_tolerance=RiskLevel.HIGH)
        without = {m.strategy.id: m.match_score for m in matcher.find_matching_strategies(criteria).value}
        allowed = StrategyCriteria(amount=5000, risk_tolerance=RiskLevel.HIGH, allow_leverage=True)
        with_leverage = {m.strategy.id: m.match_score for m in matcher.find_matching_strategies(allowed).value}
        assert with_leverage["leveraged-sei-farming"] > without.get("leveraged-sei-farming", 0)

    def test_category_filter(self, matcher):
        criteria = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW, categories=(StrategyCategory.LENDING,))
        assert _ids(matcher.find_matching_strategies(criteria).value) == ["usdc-lending-silo"]

    def test_preferred_protocol(self, matcher):
        criteria = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW, preferred_protocols=("Silo",))
        top = matcher.find_matching_strategies(criteria).value[0]
        assert top.strategy.id == "usdc-lending-silo"
        assert "Uses your preferred protocols" in top.reasons

    def test_excluded_protocol_lowers_score(self, matcher):
        base = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.MEDIUM)
        excluded = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.MEDIUM, excluded_protocols=("dragonswap",))
        score = {m.strategy.id: m.match_score for m in matcher.find_matching_strategies(base).value}
        score_excluded = {m.strategy.id: m.match_score for m in matcher.find_matching_strategies(excluded).value}
        assert score_excluded.get("sei-usdc-lp-dragonswap", 0) < score["sei-usdc-lp-dragonswap"]

    def test_min_apy_penalty(self, matcher):
        low = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)
        demanding = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW, min_apy=10)
        before = {m.strategy.id: m.match_score for m in matcher.find_matching_strategies(low).value}
        after = {m.strategy.id: m.match_score for m in matcher.find_matching_strategies(demanding).value}
        assert after["usdc-lending-silo"] < before["usdc-lending-silo"]

    def test_threshold_and_limit(self):
        matcher = StrategyMatcher(StrategyMatcherConfig(min_match_score=0.95))
        matches = matcher.find_matching_strategies(StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)).value
        assert _ids(matches) == ["usdc-lending-silo"]

        matcher = StrategyMatcher(StrategyMatcherConfig(max_results=1, min_match_score=0.0))
        assert len(matcher.find_matching_strategies(StrategyCriteria(amount=1, risk_tolerance=RiskLevel.LOW)).value) == 1

    def test_risk_adjustment_factor_rewards_safer_strategies(self):
        criteria = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.MEDIUM)
        plain = StrategyMatcher().find_matching_strategies(criteria).value
        tuned = StrategyMatcher(StrategyMatcherConfig(risk_adjustment_factor=1.25)).find_matching_strategies(criteria).value
        plain_score = {m.strategy.id: m.match_score for m in plain}["usdc-lending-silo"]
        tuned_score = {m.strategy.id: m.match_score for m in tuned}["usdc-lending-silo"]
        assert tuned_score > plain_score


class TestAdjustments:

    def test_amount_below_minimum(self, matcher):
        strategy = matcher.get_strategy("arbitrage-cross-dex")
        adjustments = matcher.recommend_strategy_adjustments(
            strategy, StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW),
        )
        assert [(a.type, a.suggested) for a in adjustments] == [("amount", 5000)]

    def test_lower_risk_alternative_in_category(self, matcher):
        strategy = matcher.get_strategy("sei-usdc-lp-dragonswap")
        adjustments = matcher.recommend_strategy_adjustments(
            strategy, StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW),
        )
        assert adjustments[0].type == "protocol"
        assert adjustments[0].suggested == "low"

    def test_duration(self, matcher):
        strategy = matcher.get_strategy("leveraged-sei-farming")
        adjustments = matcher.recommend_strategy_adjustments(
            strategy, StrategyCriteria(amount=5000, risk_tolerance=RiskLevel.HIGH, max_duration=86400),
        )
        assert [a.type for a in adjustments] == ["duration"]


class TestCatalogQueries:

    def test_get_unknown_strategy(self, matcher):
        assert matcher.get_strategy("nope") is None

    def test_by_category_sorted_by_popularity(self, matcher):
        strategies = matcher.get_strategies_by_category(StrategyCategory.YIELD_FARMING)
        assert [s.id for s in strategies] == ["sei-usdc-lp-dragonswap", "stable-yield-diversified"]

    def test_trending(self, matcher):
        assert [s.id for s in matcher.get_trending_strategies(limit=2)] == [
            "usdc-lending-silo",
            "sei-usdc-lp-dragonswap",
        ]

    def test_strategy_properties(self, matcher):
        leveraged = matcher.get_strategy("leveraged-sei-farming")
        assert leveraged.uses_leverage
        assert leveraged.difficulty == "medium"
        assert matcher.get_strategy("usdc-lending-silo").difficulty == "easy"


class TestOptimizationSuggestions:

    def test_empty_portfolio(self, matcher):
        criteria = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)
        assert matcher.generate_optimization_suggestions([], criteria) == []

    def test_single_lending_position(self, matcher):
        criteria = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)
        suggestions = matcher.generate_optimization_suggestions([matcher.get_strategy("usdc-lending-silo")], criteria)
        assert suggestions[0].type == OptimizationType.YIELD_INCREASE
        assert suggestions[0].title == "Switch to Cross-DEX Arbitrage"
        assert OptimizationType.DIVERSIFICATION in [s.type for s in suggestions]
        impacts = [s.estimated_impact for s in suggestions]
        assert impacts == sorted(impacts, reverse=True)

    def test_risk_reduction(self, matcher):
        criteria = StrategyCriteria(amount=1000, risk_tolerance=RiskLevel.LOW)
        current = [matcher.get_strategy("arbitrage-cross-dex"), matcher.get_strategy("usdc-lending-silo")]
        types = [s.type for s in matcher.generate_optimization_suggestions(current, criteria)]
        assert OptimizationType.RISK_REDUCTION in types
