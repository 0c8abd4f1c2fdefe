"""Risk profiler - deterministic operation risk scoring and user risk profiles.

Scoring:
- Each risk factor carries a level (VERY_LOW..VERY_HIGH) and an impact weight.
- Overall score = impact-weighted average of level scores, scaled up for
  leverage > 3 and beginner users, capped at 1.0.
- Increasing leverage never lowers the score: a mild leverage factor is not
  allowed to dilute the average of the other factors.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from defidesk.core.error_codes import ErrorCode, RiskAnalysisError
from defidesk.core.logging import get_logger
from defidesk.core.result import Result

logger = get_logger(__name__)


class RiskLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class RiskFactorType(str, Enum):
    SMART_CONTRACT = "smart_contract"
    OPERATIONAL = "operational"
    MARKET = "market"
    CONCENTRATION = "concentration"
    LIQUIDITY = "liquidity"
    VOLATILITY = "volatility"


class ExperienceLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class TimeHorizon(str, Enum):
    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"


RISK_ORDER: Tuple[RiskLevel, ...] = (
    RiskLevel.VERY_LOW, RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.VERY_HIGH,
)

RISK_LEVEL_SCORES: Dict[RiskLevel, float] = {
    RiskLevel.VERY_LOW: 0.1,
    RiskLevel.LOW: 0.3,
    RiskLevel.MEDIUM: 0.5,
    RiskLevel.HIGH: 0.7,
    RiskLevel.VERY_HIGH: 0.9,
}

PROTOCOL_RISK: Dict[str, RiskLevel] = {
    "dragonswap": RiskLevel.LOW,
    "symphony": RiskLevel.LOW,
    "silo": RiskLevel.LOW,
    "takara": RiskLevel.MEDIUM,
    "citrex": RiskLevel.MEDIUM,
    "experimental": RiskLevel.HIGH,
}

OPERATION_RISK: Dict[str, RiskLevel] = {
    "lend": RiskLevel.LOW,
    "supply": RiskLevel.LOW,
    "withdraw": RiskLevel.LOW,
    "swap": RiskLevel.LOW,
    "borrow": RiskLevel.MEDIUM,
    "add_liquidity": RiskLevel.MEDIUM,
    "leveraged_farming": RiskLevel.HIGH,
    "arbitrage": RiskLevel.HIGH,
    "perpetuals": RiskLevel.HIGH,
    "options": RiskLevel.VERY_HIGH,
}

# Deep-liquidity venues tolerate larger tickets before slippage bites
DEEP_LIQUIDITY_PROTOCOLS = frozenset({"dragonswap", "symphony"})

COMPLEX_OPERATIONS = frozenset({"arbitrage", "leveraged_farming", "options", "perpetuals"})

# Longer phrases first so "very high" is not read as "high"
RISK_TOLERANCE_KEYWORDS: Tuple[Tuple[str, RiskLevel], ...] = (
    ("extremely conservative", RiskLevel.VERY_LOW),
    ("very conservative", RiskLevel.VERY_LOW),
    ("very low", RiskLevel.VERY_LOW),
    ("extremely aggressive", RiskLevel.VERY_HIGH),
    ("very aggressive", RiskLevel.VERY_HIGH),
    ("very high", RiskLevel.VERY_HIGH),
    ("conservative", RiskLevel.LOW),
    ("safe", RiskLevel.LOW),
    ("low", RiskLevel.LOW),
    ("moderate", RiskLevel.MEDIUM),
    ("balanced", RiskLevel.MEDIUM),
    ("medium", RiskLevel.MEDIUM),
    ("aggressive", RiskLevel.HIGH),
    ("risky", RiskLevel.HIGH),
    ("high", RiskLevel.HIGH),
)

CONTEXTUAL_RISK_PATTERNS: Tuple[Tuple["re.Pattern[str]", RiskLevel], ...] = (
    (re.compile(r"can'?t afford to lose|no risk|100% safe"), RiskLevel.VERY_LOW),
    (re.compile(r"little risk|minimal risk|very safe"), RiskLevel.LOW),
    (re.compile(r"some risk|moderate|balanced"), RiskLevel.MEDIUM),
    (re.compile(r"willing to risk|higher returns|growth"), RiskLevel.HIGH),
    (re.compile(r"maximum returns|all in|yolo"), RiskLevel.VERY_HIGH),
)

_CAPACITY_EXPERIENCE_MULTIPLIER = {
    ExperienceLevel.EXPERT: 1.3,
    ExperienceLevel.ADVANCED: 1.2,
    ExperienceLevel.INTERMEDIATE: 1.0,
    ExperienceLevel.BEGINNER: 0.7,
}


class RiskProfilerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    conservative_threshold: float = 0.3
    moderate_threshold: float = 0.6
    aggressive_threshold: float = 0.8
    enable_dynamic_scoring: bool = True
    market_volatility_weight: float = 0.2


@dataclass(frozen=True)
class RiskPreferences:
    max_single_position: float = 0.2
    max_protocol_exposure: float = 0.3
    allow_leverage: bool = True
    max_leverage: float = 3
    allow_experimental: bool = False
    prefer_audited: bool = True


@dataclass(frozen=True)
class RiskProfile:
    tolerance: RiskLevel
    capacity: float
    time_horizon: TimeHorizon
    experience: ExperienceLevel
    preferences: RiskPreferences = field(default_factory=RiskPreferences)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tolerance": self.tolerance.value,
            "capacity": self.capacity,
            "time_horizon": self.time_horizon.value,
            "experience": self.experience.value,
            "preferences": dict(self.preferences.__dict__),
        }


@dataclass(frozen=True)
class RiskAssessmentInput:
    amount: float
    protocol: str
    operation: str
    leverage: Optional[float] = None
    timeframe: Optional[str] = None
    user_profile: Optional[RiskProfile] = None
    market_conditions: Optional[Dict[str, Any]] = None
    position_size: Optional[float] = None
    portfolio_value: Optional[float] = None


@dataclass(frozen=True)
class RiskFactor:
    type: RiskFactorType
    level: RiskLevel
    impact: float
    description: str
    mitigation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "level": self.level.value,
            "impact": self.impact,
            "description": self.description,
            "mitigation": self.mitigation,
        }


@dataclass
class RiskAssessment:
    overall_risk: RiskLevel
    risk_score: float
    factors: List[RiskFactor]
    recommendations: List[str]
    warnings: List[str]
    max_recommended_amount: Optional[float] = None
    confidence: float = 0.7

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_risk": self.overall_risk.value,
            "risk_score": self.risk_score,
            "factors": [f.to_dict() for f in self.factors],
            "recommendations": list(self.recommendations),
            "warnings": list(self.warnings),
            "max_recommended_amount": self.max_recommended_amount,
            "confidence": self.confidence,
        }


@dataclass
class RiskCompatibility:
    compatible: bool
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def issues(self) -> List[str]:
        return list(self.warnings)


def risk_level_score(level: RiskLevel) -> float:
    return RISK_LEVEL_SCORES[level]


def level_for_score(score: float) -> RiskLevel:
    if score <= 0.2:
        return RiskLevel.VERY_LOW
    if score <= 0.4:
        return RiskLevel.LOW
    if score <= 0.6:
        return RiskLevel.MEDIUM
    if score <= 0.8:
        return RiskLevel.HIGH
    return RiskLevel.VERY_HIGH


def leverage_risk(leverage: float) -> RiskLevel:
    if leverage <= 2:
        return RiskLevel.LOW
    if leverage <= 5:
        return RiskLevel.MEDIUM
    if leverage <= 10:
        return RiskLevel.HIGH
    return RiskLevel.VERY_HIGH


def _weighted_score(factors: List[RiskFactor]) -> float:
    total_impact = sum(f.impact for f in factors)
    if total_impact <= 0:
        return 0.0
    return sum(risk_level_score(f.level) * f.impact for f in factors) / total_impact


class RiskProfiler:
    """Operation risk assessment plus user risk-profile helpers."""

    def __init__(self, config: Optional[RiskProfilerConfig] = None):
        self.config = config or RiskProfilerConfig()

    def assess_risk(self, input: RiskAssessmentInput) -> Result[RiskAssessment]:
        try:
            factors = self._identify_factors(input)
            score = self._score(factors, input)
            overall = level_for_score(score)

            max_recommended = None
            if input.user_profile and input.portfolio_value:
                max_recommended = round(input.portfolio_value * input.user_profile.capacity, 2)

            assessment = RiskAssessment(
                overall_risk=overall,
                risk_score=round(score, 6),
                factors=factors,
                recommendations=self._recommendations(factors, overall, input),
                warnings=self._warnings(factors, input),
                max_recommended_amount=max_recommended,
                confidence=_assessment_confidence(input),
            )
            logger.debug("Risk for %s on %s: %s (%.3f)", input.operation, input.protocol, overall.value, score)
            return Result.ok(assessment)

        except Exception as e:
            logger.exception("Risk assessment failed")
            return Result.fail(RiskAnalysisError(
                ErrorCode.RISK_ASSESSMENT_FAILED,
                "Failed to assess risk",
                details={"original_error": e, "operation": getattr(input, "operation", None)},
            ))

    def interpret_risk_tolerance(self, text: str) -> Result[RiskLevel]:
        """Map phrases like "pretty conservative" or "yolo" to a RiskLevel."""
        normalized = (text or "").lower().strip()

        for keyword, level in RISK_TOLERANCE_KEYWORDS:
            if re.search(rf"\b{re.escape(keyword)}\b", normalized):
                return Result.ok(level)

        for pattern, level in CONTEXTUAL_RISK_PATTERNS:
            if pattern.search(normalized):
                return Result.ok(level)

        return Result.fail(RiskAnalysisError(
            ErrorCode.RISK_TOLERANCE_UNCLEAR,
            f"Could not interpret risk tolerance: {text}",
            details={"input": normalized},
        ))

    def create_risk_profile(
        self,
        risk_tolerance: Optional[str] = None,
        experience: Optional[str] = None,
        time_horizon: Optional[str] = None,
        portfolio_size: float = 0,
        leverage_comfort: Optional[str] = None,
        experimentation: Optional[str] = None,
        audit_preference: Optional[str] = None,
    ) -> Result[RiskProfile]:
        """Build a RiskProfile from free-text questionnaire answers."""
        try:
            if risk_tolerance:
                tolerance_result = self.interpret_risk_tolerance(risk_tolerance)
                if not tolerance_result.success:
                    return tolerance_result
                tolerance = tolerance_result.value
            else:
                tolerance = RiskLevel.MEDIUM

            exp = _interpret_experience(experience or "")
            leverage_text = (leverage_comfort or "").lower()
            preferences = RiskPreferences(
                allow_leverage="no" not in leverage_text,
                max_leverage=10 if "high" in leverage_text else 3,
                allow_experimental="yes" in (experimentation or "").lower(),
                prefer_audited="no" not in (audit_preference or "").lower(),
            )
            return Result.ok(RiskProfile(
                tolerance=tolerance,
                capacity=_risk_capacity(portfolio_size or 0, exp),
                time_horizon=_interpret_time_horizon(time_horizon or ""),
                experience=exp,
                preferences=preferences,
            ))
        except Exception as e:
            logger.exception("Risk profile creation failed")
            return Result.fail(RiskAnalysisError(
                ErrorCode.RISK_PROFILE_ERROR,
                "Failed to create risk profile",
                details={"original_error": e},
            ))

    def validate_risk_compatibility(self, operation: RiskAssessmentInput, profile: RiskProfile) -> RiskCompatibility:
        """Check an operation against a user's tolerance, capacity and experience."""
        result = RiskCompatibility(compatible=True)

        assessment_result = self.assess_risk(_with_profile(operation, profile))
        if not assessment_result.success:
            return RiskCompatibility(compatible=False, warnings=["Could not assess operation risk"])
        assessment = assessment_result.value

        tolerance_ok = RISK_ORDER.index(assessment.overall_risk) <= RISK_ORDER.index(profile.tolerance)
        if not tolerance_ok:
            result.warnings.append(
                f"Operation risk ({assessment.overall_risk.value}) exceeds your risk tolerance ({profile.tolerance.value})"
            )
            result.suggestions.append("Consider reducing the amount or using a less risky strategy")

        portfolio = operation.portfolio_value or 0
        capacity_ok = portfolio == 0 or operation.amount / portfolio <= profile.capacity
        if not capacity_ok:
            result.warnings.append("Operation size exceeds your risk capacity")
            result.suggestions.append("Reduce the amount to stay within your risk limits")

        experience_ok = (
            operation.operation.lower() not in COMPLEX_OPERATIONS
            or profile.experience in (ExperienceLevel.ADVANCED, ExperienceLevel.EXPERT)
        )
        if not experience_ok:
            result.warnings.append("This operation may be too complex for your experience level")
            result.suggestions.append("Consider starting with simpler operations or seeking guidance")

        result.compatible = tolerance_ok and capacity_ok and experience_ok
        return result

    # === FACTORS ===

    def _identify_factors(self, input: RiskAssessmentInput) -> List[RiskFactor]:
        factors: List[RiskFactor] = []
        protocol = (input.protocol or "").lower()

        protocol_level = PROTOCOL_RISK.get(protocol, RiskLevel.MEDIUM)
        factors.append(RiskFactor(
            type=RiskFactorType.SMART_CONTRACT,
            level=protocol_level,
            impact=risk_level_score(protocol_level),
            description=f"{input.protocol} protocol smart contract risk",
            mitigation="Use well-audited protocols" if protocol_level == RiskLevel.HIGH else None,
        ))

        operation_level = OPERATION_RISK.get((input.operation or "").lower(), RiskLevel.MEDIUM)
        factors.append(RiskFactor(
            type=RiskFactorType.OPERATIONAL,
            level=operation_level,
            impact=risk_level_score(operation_level),
            description=f"{input.operation} operation complexity risk",
        ))

        if input.leverage and input.leverage > 1:
            level = leverage_risk(input.leverage)
            factors.append(RiskFactor(
                type=RiskFactorType.MARKET,
                level=level,
                impact=risk_level_score(level),
                description=f"{input.leverage:g}x leverage increases liquidation risk",
                mitigation="Monitor position closely and maintain sufficient collateral",
            ))

        if input.portfolio_value and input.amount > 0:
            exposure = input.amount / input.portfolio_value
            if exposure > 0.5:
                factors.append(RiskFactor(
                    type=RiskFactorType.CONCENTRATION,
                    level=RiskLevel.HIGH,
                    impact=0.8,
                    description="High portfolio concentration risk",
                    mitigation="Diversify across multiple positions and assets",
                ))
            elif exposure > 0.2:
                factors.append(RiskFactor(
                    type=RiskFactorType.CONCENTRATION,
                    level=RiskLevel.MEDIUM,
                    impact=0.4,
                    description="Moderate portfolio concentration",
                ))

        liquidity_level = _liquidity_risk(protocol, input.amount)
        if liquidity_level != RiskLevel.LOW:
            factors.append(RiskFactor(
                type=RiskFactorType.LIQUIDITY,
                level=liquidity_level,
                impact=risk_level_score(liquidity_level),
                description="Potential liquidity constraints",
                mitigation="Consider splitting into smaller transactions",
            ))

        volatility = (input.market_conditions or {}).get("volatility")
        if self.config.enable_dynamic_scoring and volatility is not None:
            level = self._volatility_level(float(volatility))
            factors.append(RiskFactor(
                type=RiskFactorType.VOLATILITY,
                level=level,
                impact=self.config.market_volatility_weight,
                description=f"Market volatility is {level.value.replace('_', ' ')}",
                mitigation="Use tighter slippage and smaller tickets" if level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH) else None,
            ))

        return factors

    def _volatility_level(self, volatility: float) -> RiskLevel:
        if volatility <= self.config.conservative_threshold:
            return RiskLevel.LOW
        if volatility <= self.config.moderate_threshold:
            return RiskLevel.MEDIUM
        if volatility <= self.config.aggressive_threshold:
            return RiskLevel.HIGH
        return RiskLevel.VERY_HIGH

    def _score(self, factors: List[RiskFactor], input: RiskAssessmentInput) -> float:
        if not factors:
            return 0.0

        # A mild leverage factor must not pull the average below the unlevered score
        unlevered = [f for f in factors if f.type != RiskFactorType.MARKET]
        score = max(_weighted_score(factors), _weighted_score(unlevered))

        if input.leverage and input.leverage > 3:
            score *= 1.2
        if input.user_profile and input.user_profile.experience == ExperienceLevel.BEGINNER:
            score *= 1.1

        return min(score, 1.0)

    def _recommendations(self, factors: List[RiskFactor], overall: RiskLevel, input: RiskAssessmentInput) -> List[str]:
        recommendations: List[str] = []
        if overall in (RiskLevel.HIGH, RiskLevel.VERY_HIGH):
            recommendations.append("Consider reducing the operation size")
            recommendations.append("Monitor the position closely after execution")

        recommendations.extend(f.mitigation for f in factors if f.mitigation)

        if input.user_profile and input.user_profile.experience == ExperienceLevel.BEGINNER:
            recommendations.append("Start with smaller amounts to gain experience")
            recommendations.append("Study the protocol documentation before proceeding")

        return list(dict.fromkeys(recommendations))

    def _warnings(self, factors: List[RiskFactor], input: RiskAssessmentInput) -> List[str]:
        warnings = [f.description for f in factors if f.level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH)]
        if input.leverage and input.leverage > 5:
            warnings.append("Extremely high leverage - liquidation risk is severe")
        if input.amount > 100000:
            warnings.append("Large amount - consider market impact and slippage")
        return warnings


def _assessment_confidence(input: RiskAssessmentInput) -> float:
    """More caller context means a more trustworthy score."""
    known = sum(1 for v in (input.portfolio_value, input.user_profile, input.market_conditions) if v)
    return round(0.7 + 0.1 * known, 2)


def _liquidity_risk(protocol: str, amount: float) -> RiskLevel:
    if protocol in DEEP_LIQUIDITY_PROTOCOLS:
        return RiskLevel.MEDIUM if amount > 1_000_000 else RiskLevel.LOW
    return RiskLevel.HIGH if amount > 100_000 else RiskLevel.MEDIUM


def _interpret_experience(text: str) -> ExperienceLevel:
    t = text.lower()
    if "expert" in t or "professional" in t:
        return ExperienceLevel.EXPERT
    if "advanced" in t or "experienced" in t:
        return ExperienceLevel.ADVANCED
    if "intermediate" in t or "some experience" in t:
        return ExperienceLevel.INTERMEDIATE
    return ExperienceLevel.BEGINNER


def _interpret_time_horizon(text: str) -> TimeHorizon:
    t = text.lower()
    if "long" in t or "year" in t or "hold" in t:
        return TimeHorizon.LONG_TERM
    if "medium" in t or "month" in t:
        return TimeHorizon.MEDIUM_TERM
    return TimeHorizon.SHORT_TERM


def _risk_capacity(portfolio_size: float, experience: ExperienceLevel) -> float:
    capacity = 0.3
    if portfolio_size > 1_000_000:
        capacity *= 1.2
    elif portfolio_size > 100_000:
        capacity *= 1.1
    elif portfolio_size < 10_000:
        capacity *= 0.8
    capacity *= _CAPACITY_EXPERIENCE_MULTIPLIER[experience]
    return min(capacity, 0.5)


def _with_profile(operation: RiskAssessmentInput, profile: RiskProfile) -> RiskAssessmentInput:
    return RiskAssessmentInput(
        amount=operation.amount,
        protocol=operation.protocol,
        operation=operation.operation,
        leverage=operation.leverage,
        timeframe=operation.timeframe,
        user_profile=profile,
        market_conditions=operation.market_conditions,
        position_size=operation.position_size,
        portfolio_value=operation.portfolio_value,
    )
