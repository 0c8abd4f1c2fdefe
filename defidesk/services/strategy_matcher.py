"""Strategy matcher - scores a curated DeFi strategy catalog against user criteria.

Not on the command path; used for recommendation features.
"""
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from defidesk.core.error_codes import ErrorCode, StrategyMatchingError
from defidesk.core.logging import get_logger
from defidesk.core.result import Result
from defidesk.services.risk_profiler import RISK_ORDER, RiskLevel

logger = get_logger(__name__)

# Sub-score weights (sum to 1.0)
AMOUNT_WEIGHT = 0.25
RISK_WEIGHT = 0.30
PROTOCOL_WEIGHT = 0.20
APY_WEIGHT = 0.15
LEVERAGE_WEIGHT = 0.10

HIGH_GAS_STEP = 500000


class StrategyCategory(str, Enum):
    LENDING = "lending"
    YIELD_FARMING = "yield_farming"
    LEVERAGED_FARMING = "leveraged_farming"
    ARBITRAGE = "arbitrage"


class OptimizationType(str, Enum):
    YIELD_INCREASE = "yield_increase"
    RISK_REDUCTION = "risk_reduction"
    DIVERSIFICATION = "diversification"
    GAS_OPTIMIZATION = "gas_optimization"


class StrategyMatcherConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_match_score: float = 0.5
    max_results: int = 10
    enable_dynamic_adjustments: bool = True
    prefer_popular_strategies: bool = True
    risk_adjustment_factor: float = 1.0


@dataclass(frozen=True)
class StrategyStep:
    id: str
    description: str
    protocol: str
    action: str
    estimated_gas: int
    required: bool = True


@dataclass(frozen=True)
class StrategyInfo:
    """Catalog entry. ``popularity`` and ``success_rate`` are fractions in [0, 1]."""
    id: str
    name: str
    description: str
    category: StrategyCategory
    risk_level: RiskLevel
    expected_apy: float
    min_amount: float
    protocols: Tuple[str, ...]
    steps: Tuple[StrategyStep, ...]
    max_amount: Optional[float] = None
    duration: Optional[int] = None  # seconds
    advantages: Tuple[str, ...] = ()
    disadvantages: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    popularity: float = 0.5
    success_rate: float = 0.8
    requirements: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def uses_leverage(self) -> bool:
        return self.category == StrategyCategory.LEVERAGED_FARMING or "leverage" in self.name.lower()

    @property
    def difficulty(self) -> str:
        if len(self.steps) <= 2:
            return "easy"
        if len(self.steps) <= 4:
            return "medium"
        return "hard"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "risk_level": self.risk_level.value,
            "expected_apy": self.expected_apy,
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "protocols": list(self.protocols),
            "steps": [step.__dict__ for step in self.steps],
        }


@dataclass(frozen=True)
class StrategyCriteria:
    amount: float
    risk_tolerance: RiskLevel
    preferred_protocols: Tuple[str, ...] = ()
    excluded_protocols: Tuple[str, ...] = ()
    min_apy: Optional[float] = None
    max_duration: Optional[int] = None
    categories: Optional[Tuple[StrategyCategory, ...]] = None
    allow_leverage: bool = False


@dataclass(frozen=True)
class StrategyAdjustment:
    type: str  # amount, duration, protocol, leverage
    current: Any
    suggested: Any
    reason: str
    impact: float


@dataclass
class StrategyMatchResult:
    strategy: StrategyInfo
    match_score: float
    reasons: List[str] = field(default_factory=list)
    adjustments: List[StrategyAdjustment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.to_dict(),
            "match_score": round(self.match_score, 4),
            "reasons": list(self.reasons),
            "adjustments": [a.__dict__ for a in self.adjustments],
        }


@dataclass(frozen=True)
class OptimizationSuggestion:
    type: OptimizationType
    title: str
    description: str
    potential_benefit: str
    estimated_impact: float
    difficulty: str
    requirements: Tuple[str, ...] = ()
    steps: Tuple[str, ...] = ()


DEFAULT_STRATEGIES: Tuple[StrategyInfo, ...] = (
    StrategyInfo(
        id="usdc-lending-silo",
        name="USDC Lending on Silo",
        description="Conservative lending strategy for stable returns",
        category=StrategyCategory.LENDING,
        risk_level=RiskLevel.LOW,
        expected_apy=5.2,
        min_amount=100,
        max_amount=1_000_000,
        protocols=("silo",),
        steps=(
            StrategyStep("supply-usdc", "Supply USDC to Silo lending pool", "silo", "supply", 150000),
        ),
        advantages=("Low risk", "Stable returns", "High liquidity"),
        disadvantages=("Lower APY than risky strategies",),
        tags=("stable", "conservative", "lending"),
        popularity=0.85,
        success_rate=0.95,
        requirements=("USDC balance",),
    ),
    StrategyInfo(
        id="sei-usdc-lp-dragonswap",
        name="SEI/USDC LP on DragonSwap",
        description="Provide liquidity to SEI/USDC pair for trading fees",
        category=StrategyCategory.YIELD_FARMING,
        risk_level=RiskLevel.MEDIUM,
        expected_apy=12.5,
        min_amount=500,
        max_amount=500_000,
        protocols=("dragonswap",),
        steps=(
            StrategyStep("approve-tokens", "Approve SEI and USDC for trading", "dragonswap", "approve", 100000),
            StrategyStep("add-liquidity", "Add liquidity to SEI/USDC pool", "dragonswap", "addLiquidity", 200000),
        ),
        advantages=("Good APY", "Trading fee income", "Popular pair"),
        disadvantages=("Impermanent loss risk", "Price volatility"),
        tags=("liquidity", "trading-fees", "medium-risk"),
        popularity=0.75,
        success_rate=0.85,
        requirements=("SEI and USDC balance", "Impermanent loss understanding"),
        warnings=("Subject to impermanent loss",),
    ),
    StrategyInfo(
        id="leveraged-sei-farming",
        name="Leveraged SEI Yield Farming",
        description="Use leverage to amplify SEI farming returns",
        category=StrategyCategory.LEVERAGED_FARMING,
        risk_level=RiskLevel.HIGH,
        expected_apy=25.8,
        min_amount=1000,
        max_amount=100_000,
        duration=2_592_000,
        protocols=("takara", "dragonswap"),
        steps=(
            StrategyStep("supply-collateral", "Supply SEI as collateral", "takara", "supply", 180000),
            StrategyStep("borrow-usdc", "Borrow USDC against SEI collateral", "takara", "borrow", 220000),
            StrategyStep("farm-with-borrowed", "Use borrowed USDC for yield farming", "dragonswap", "farm", 250000),
        ),
        advantages=("High potential returns", "Leverage amplification"),
        disadvantages=("High risk", "Liquidation risk", "Complex management"),
        tags=("leverage", "high-risk", "advanced"),
        popularity=0.45,
        success_rate=0.65,
        requirements=("SEI collateral", "Risk management skills", "Active monitoring"),
        warnings=("High liquidation risk", "Requires active management"),
    ),
    StrategyInfo(
        id="arbitrage-cross-dex",
        name="Cross-DEX Arbitrage",
        description="Profit from price differences across DEXes",
        category=StrategyCategory.ARBITRAGE,
        risk_level=RiskLevel.HIGH,
        expected_apy=35.0,
        min_amount=5000,
        protocols=("dragonswap", "symphony"),
        steps=(
            StrategyStep("scan-opportunities", "Scan for arbitrage opportunities", "scanner", "scan", 0),
            StrategyStep("execute-arbitrage", "Execute arbitrage trades", "multiple", "arbitrage", 400000),
        ),
        advantages=("High returns", "Market neutral", "Fast execution"),
        disadvantages=("Technical complexity", "MEV competition", "Gas sensitivity"),
        tags=("arbitrage", "advanced", "technical"),
        popularity=0.25,
        success_rate=0.70,
        requirements=("Technical knowledge", "Fast execution capability", "MEV protection"),
        warnings=("Requires technical expertise", "Competition from MEV bots"),
    ),
    StrategyInfo(
        id="stable-yield-diversified",
        name="Diversified Stable Yield",
        description="Spread stablecoins across multiple protocols",
        category=StrategyCategory.YIELD_FARMING,
        risk_level=RiskLevel.LOW,
        expected_apy=7.8,
        min_amount=1000,
        protocols=("silo", "takara"),
        steps=(
            StrategyStep("split-allocation", "Split funds between protocols", "multiple", "allocate", 300000),
            StrategyStep("monitor-rates", "Monitor and rebalance rates", "multiple", "rebalance", 200000, required=False),
        ),
        advantages=("Risk diversification", "Stable returns", "Protocol risk mitigation"),
        disadvantages=("Higher gas costs", "Management overhead"),
        tags=("diversified", "stable", "conservative"),
        popularity=0.60,
        success_rate=0.92,
        requirements=("Multiple stablecoins", "Rebalancing strategy"),
    ),
)


def _risk_rank(level: RiskLevel) -> int:
    return RISK_ORDER.index(level)


class StrategyMatcher:
    def __init__(
        self,
        config: Optional[StrategyMatcherConfig] = None,
        strategies: Sequence[StrategyInfo] = DEFAULT_STRATEGIES,
    ):
        self.config = config or StrategyMatcherConfig()
        self._strategies: Dict[str, StrategyInfo] = {s.id: s for s in strategies}
        self._by_category: Dict[StrategyCategory, List[str]] = {}
        for s in strategies:
            self._by_category.setdefault(s.category, []).append(s.id)

    # === MATCHING ===

    def find_matching_strategies(self, criteria: StrategyCriteria) -> Result[List[StrategyMatchResult]]:
        """Score every catalog strategy and return the best matches, highest first."""
        try:
            matches: List[StrategyMatchResult] = []
            for strategy in self._strategies.values():
                if criteria.categories and strategy.category not in criteria.categories:
                    continue
                match = self._evaluate(strategy, criteria)
                if match.match_score >= self.config.min_match_score:
                    matches.append(match)
                else:
                    logger.debug("Strategy %s below threshold (%.3f)", strategy.id, match.match_score)

            matches.sort(key=lambda m: m.match_score, reverse=True)
            return Result.ok(matches[: self.config.max_results])

        except Exception as e:
            logger.exception("Strategy matching failed")
            return Result.fail(StrategyMatchingError(
                ErrorCode.STRATEGY_MATCHING_FAILED,
                "Failed to find matching strategies",
                details={"original_error": e, "amount": criteria.amount},
            ))

    def get_strategy(self, strategy_id: str) -> Optional[StrategyInfo]:
        return self._strategies.get(strategy_id)

    def get_strategies_by_category(self, category: StrategyCategory) -> List[StrategyInfo]:
        found = [self._strategies[i] for i in self._by_category.get(category, [])]
        return sorted(found, key=lambda s: s.popularity, reverse=True)

    def get_trending_strategies(self, limit: int = 5) -> List[StrategyInfo]:
        ranked = sorted(
            self._strategies.values(),
            key=lambda s: s.popularity * 0.6 + s.success_rate * 0.4,
            reverse=True,
        )
        return ranked[:limit]

    def recommend_strategy_adjustments(self, strategy: StrategyInfo, criteria: StrategyCriteria) -> List[StrategyAdjustment]:
        """What the user would have to change for ``strategy`` to fit, most impactful first."""
        adjustments: List[StrategyAdjustment] = []

        if criteria.amount < strategy.min_amount:
            adjustments.append(StrategyAdjustment(
                "amount", criteria.amount, strategy.min_amount, "Minimum amount requirement not met", 0.8,
            ))
        elif strategy.max_amount and criteria.amount > strategy.max_amount:
            adjustments.append(StrategyAdjustment(
                "amount", criteria.amount, strategy.max_amount, "Amount exceeds strategy maximum", 0.6,
            ))

        if _risk_rank(strategy.risk_level) > _risk_rank(criteria.risk_tolerance):
            alternative = self._lower_risk_alternative(strategy, criteria.risk_tolerance)
            if alternative:
                adjustments.append(StrategyAdjustment(
                    "protocol", strategy.risk_level.value, alternative.value, "Strategy risk exceeds tolerance", 0.9,
                ))

        if criteria.max_duration and strategy.duration and criteria.max_duration < strategy.duration:
            adjustments.append(StrategyAdjustment(
                "duration", criteria.max_duration, strategy.duration, "Strategy requires longer commitment", 0.4,
            ))

        adjustments.sort(key=lambda a: a.impact, reverse=True)
        return adjustments

    def _evaluate(self, strategy: StrategyInfo, criteria: StrategyCriteria) -> StrategyMatchResult:
        reasons: List[str] = []

        amount_score = self._amount_score(strategy, criteria)
        risk_score = self._risk_score(strategy, criteria)
        protocol_score = self._protocol_score(strategy, criteria)
        apy_score = self._apy_score(strategy, criteria)
        leverage_score = 0.0 if strategy.uses_leverage and not criteria.allow_leverage else 1.0

        if amount_score > 0.8:
            reasons.append("Amount fits strategy requirements")
        if risk_score > 0.8:
            reasons.append("Risk level matches your tolerance")
        if protocol_score > 0.8:
            reasons.append("Uses your preferred protocols")
        if apy_score > 0.8:
            reasons.append("Expected APY meets your requirements")

        score = (
            amount_score * AMOUNT_WEIGHT
            + risk_score * RISK_WEIGHT
            + protocol_score * PROTOCOL_WEIGHT
            + apy_score * APY_WEIGHT
            + leverage_score * LEVERAGE_WEIGHT
        )

        if self.config.prefer_popular_strategies:
            score *= 1 + strategy.popularity * 0.1

        adjustments = (
            self.recommend_strategy_adjustments(strategy, criteria)
            if self.config.enable_dynamic_adjustments else []
        )
        return StrategyMatchResult(strategy=strategy, match_score=score, reasons=reasons, adjustments=adjustments)

    @staticmethod
    def _amount_score(strategy: StrategyInfo, criteria: StrategyCriteria) -> float:
        if criteria.amount < strategy.min_amount:
            return 0.0
        if strategy.max_amount and criteria.amount > strategy.max_amount:
            return 0.5

        optimal_min = strategy.min_amount * 2
        optimal_max = strategy.max_amount * 0.8 if strategy.max_amount else strategy.min_amount * 10
        if optimal_min <= criteria.amount <= optimal_max:
            return 1.0
        return 0.8

    def _risk_score(self, strategy: StrategyInfo, criteria: StrategyCriteria) -> float:
        strategy_rank = _risk_rank(strategy.risk_level)
        tolerance_rank = _risk_rank(criteria.risk_tolerance)
        if strategy_rank > tolerance_rank:
            return 0.0
        if strategy_rank == tolerance_rank:
            return 1.0
        # Safer than asked for; the adjustment factor tunes how much that is rewarded
        return min(0.8 * self.config.risk_adjustment_factor, 1.0)

    @staticmethod
    def _protocol_score(strategy: StrategyInfo, criteria: StrategyCriteria) -> float:
        protocols = {p.lower() for p in strategy.protocols}
        if protocols & {p.lower() for p in criteria.excluded_protocols}:
            return 0.0

        preferred = {p.lower() for p in criteria.preferred_protocols}
        if not preferred:
            return 0.7
        return min(len(protocols & preferred) / len(preferred), 1.0)

    @staticmethod
    def _apy_score(strategy: StrategyInfo, criteria: StrategyCriteria) -> float:
        if not criteria.min_apy:
            return 0.8
        if strategy.expected_apy >= criteria.min_apy:
            return 1.0
        deficit = (criteria.min_apy - strategy.expected_apy) / criteria.min_apy
        return max(0.0, 1.0 - deficit)

    def _lower_risk_alternative(self, strategy: StrategyInfo, target: RiskLevel) -> Optional[RiskLevel]:
        for other in self._strategies.values():
            if other.category == strategy.category and _risk_rank(other.risk_level) <= _risk_rank(target):
                return other.risk_level
        return None

    # === OPTIMIZATION ===

    def generate_optimization_suggestions(
        self,
        current_strategies: Sequence[StrategyInfo],
        criteria: StrategyCriteria,
    ) -> List[OptimizationSuggestion]:
        """Portfolio-level suggestions, sorted by estimated impact."""
        if not current_strategies:
            return []

        suggestions: List[OptimizationSuggestion] = []
        suggestions.extend(self._yield_suggestions(current_strategies))

        if any(_risk_rank(s.risk_level) > _risk_rank(criteria.risk_tolerance) for s in current_strategies):
            suggestions.append(OptimizationSuggestion(
                type=OptimizationType.RISK_REDUCTION,
                title="Reduce Position Risk",
                description="Some positions exceed your risk tolerance",
                potential_benefit="Improved portfolio stability",
                estimated_impact=15,
                difficulty="easy",
                requirements=("Review current positions",),
                steps=(
                    "Identify high-risk positions",
                    "Reduce position sizes or exit entirely",
                    "Reallocate to lower-risk strategies",
                ),
            ))

        protocol_counts = Counter(p for s in current_strategies for p in s.protocols)
        if protocol_counts and max(protocol_counts.values()) / len(current_strategies) > 0.6:
            suggestions.append(OptimizationSuggestion(
                type=OptimizationType.DIVERSIFICATION,
                title="Diversify Protocol Exposure",
                description="High concentration in single protocol detected",
                potential_benefit="Reduced protocol risk",
                estimated_impact=20,
                difficulty="medium",
                requirements=("Identify alternative protocols",),
                steps=(
                    "Review current protocol allocation",
                    "Research alternative protocols",
                    "Gradually migrate some positions",
                ),
            ))

        if any(step.estimated_gas > HIGH_GAS_STEP for s in current_strategies for step in s.steps):
            suggestions.append(OptimizationSuggestion(
                type=OptimizationType.GAS_OPTIMIZATION,
                title="Optimize Gas Usage",
                description="Some strategies have high gas costs",
                potential_benefit="Reduced transaction fees",
                estimated_impact=10,
                difficulty="easy",
                requirements=("Review transaction timing",),
                steps=(
                    "Batch transactions when possible",
                    "Time transactions for lower gas periods",
                    "Consider gas-efficient alternatives",
                ),
            ))

        suggestions.sort(key=lambda s: s.estimated_impact, reverse=True)
        return suggestions

    def _yield_suggestions(self, current_strategies: Sequence[StrategyInfo]) -> List[OptimizationSuggestion]:
        current_max = max(s.expected_apy for s in current_strategies)
        if current_max <= 0:
            return []

        better = sorted(
            (s for s in self._strategies.values() if s.expected_apy > current_max * 1.2),
            key=lambda s: s.expected_apy,
            reverse=True,
        )[:3]

        suggestions = []
        for strategy in better:
            improvement = (strategy.expected_apy - current_max) / current_max * 100
            suggestions.append(OptimizationSuggestion(
                type=OptimizationType.YIELD_INCREASE,
                title=f"Switch to {strategy.name}",
                description=f"Higher yield strategy with {strategy.expected_apy:.1f}% APY",
                potential_benefit=f"+{improvement:.1f}% yield increase",
                estimated_impact=improvement,
                difficulty=strategy.difficulty,
                requirements=strategy.requirements,
                steps=(
                    "Exit current positions",
                    f"Allocate funds to {strategy.name}",
                    "Monitor performance and adjust as needed",
                ),
            ))
        return suggestions
