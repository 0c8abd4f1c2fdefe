"""Amount parser for natural language amount expressions.

Supports:
- Exact: "1000", "250.5", "1,500"
- Unit-suffixed: "1.5k", "2m", "3 b", "1t"
- Percentage (needs context): "50%", "25 percent", "10 percent of my balance"
- Relative (needs context): "all", "half my portfolio", "a quarter of the position"
- Natural language: "two hundred fifty", "a few hundred", "around 500"

Strategies are tried in a fixed order. A strategy that produces a value outside
``[min_amount, max_amount]`` does not end the search; the next strategy gets a
chance before the parse is reported as failed.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from defidesk.core.error_codes import AmountParsingError, ErrorCode
from defidesk.core.logging import get_logger
from defidesk.core.result import Result

logger = get_logger(__name__)


class AmountParserConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_amount: float = 0.000001
    max_amount: float = 1e12
    default_decimals: int = 6
    allow_percentages: bool = True
    allow_relative_amounts: bool = True


@dataclass(frozen=True)
class AmountContext:
    """Base amounts that percentages and relative terms resolve against."""
    user_balance: Optional[float] = None
    portfolio_value: Optional[float] = None
    position_size: Optional[float] = None
    currency: Optional[str] = None


@dataclass
class AmountAlternative:
    value: float
    interpretation: str

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "interpretation": self.interpretation}


@dataclass
class AmountParsingResult:
    """Structured amount parse."""
    value: float
    original_input: str
    confidence: float
    strategy: str
    unit: Optional[str] = None
    alternatives: List[AmountAlternative] = field(default_factory=list)

    @property
    def normalized(self) -> str:
        return plain_number(self.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "normalized": self.normalized,
            "original_input": self.original_input,
            "confidence": self.confidence,
            "strategy": self.strategy,
            "unit": self.unit,
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


# === LOOKUP TABLES ===

UNIT_MULTIPLIERS = {
    "": 1,
    "k": 1_000,
    "m": 1_000_000,
    "b": 1_000_000_000,
    "t": 1_000_000_000_000,
}

# Order matters: first keyword found wins
RELATIVE_KEYWORDS: Tuple[Tuple[str, float], ...] = (
    ("all", 1.0),
    ("everything", 1.0),
    ("entire", 1.0),
    ("whole", 1.0),
    ("complete", 1.0),
    ("half", 0.5),
    ("quarter", 0.25),
    ("third", 0.333),
    ("most", 0.8),
    ("majority", 0.6),
    ("some", 0.3),
    ("little", 0.1),
    ("small", 0.1),
)

NUMBER_WORDS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19, "twenty": 20,
    "thirty": 30, "forty": 40, "fifty": 50, "sixty": 60, "seventy": 70,
    "eighty": 80, "ninety": 90, "hundred": 100, "thousand": 1_000,
    "million": 1_000_000, "billion": 1_000_000_000,
}

_EXACT_RE = re.compile(r"^\d+(\.\d+)?$")
_UNIT_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([kmbt]?)$", re.IGNORECASE)
_PERCENT_RES = (
    re.compile(r"^(\d+(?:\.\d+)?)\s*(?:%|percent|pct|percentage)$", re.IGNORECASE),
    re.compile(r"^(\d+(?:\.\d+)?)\s*(?:%|percent)\s+of\b", re.IGNORECASE),
)

# (pattern, value getter); value getter receives the match
_EXPRESSIONS: Tuple[Tuple["re.Pattern[str]", Callable[["re.Match[str]"], float]], ...] = (
    (re.compile(r"a\s+thousand", re.IGNORECASE), lambda m: 1000.0),
    (re.compile(r"few\s+hundred", re.IGNORECASE), lambda m: 300.0),
    (re.compile(r"several\s+hundred", re.IGNORECASE), lambda m: 500.0),
    (re.compile(r"couple\s+(?:of\s+)?hundred", re.IGNORECASE), lambda m: 200.0),
    (re.compile(r"(?:around|about|roughly)\s+(\d+(?:\.\d+)?)", re.IGNORECASE), lambda m: float(m.group(1))),
)

# Base amount labels used in alternative interpretations
_BASE_LABELS = {
    "user_balance": "wallet balance",
    "portfolio_value": "portfolio value",
    "position_size": "current position",
}


def plain_number(value: float) -> str:
    """Render a float without exponent noise: 500.0 -> '500', 0.25 -> '0.25'."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.12f}".rstrip("0").rstrip(".")


def _normalize_input(raw: str) -> str:
    text = raw.strip().lower()
    text = text.replace(",", "")
    return re.sub(r"\s+", " ", text)


class AmountParser:
    """Turns free-text amounts into validated numbers."""

    def __init__(self, config: Optional[AmountParserConfig] = None):
        self.config = config or AmountParserConfig()
        # Fixed evaluation order; first in-range value wins
        self._strategies: Tuple[Tuple[str, Callable[[str, Optional[AmountContext]], Optional[AmountParsingResult]]], ...] = (
            ("exact", self._parse_exact),
            ("unit", self._parse_unit),
            ("percentage", self._parse_percentage),
            ("relative", self._parse_relative),
            ("natural_language", self._parse_written_numbers),
            ("expression", self._parse_expression),
        )

    def parse_amount(self, raw_input: str, context: Optional[AmountContext] = None) -> Result[AmountParsingResult]:
        """Parse an amount from text.

        Args:
            raw_input: Amount text as typed by the user
            context: Optional base amounts for percentage/relative inputs

        Returns:
            Result with AmountParsingResult, or AmountParsingError
        """
        try:
            text = _normalize_input(raw_input or "")
            if not text:
                return Result.fail(AmountParsingError(
                    ErrorCode.INVALID_AMOUNT_INPUT,
                    "Amount input is empty",
                ))

            rejected: List[Dict[str, Any]] = []
            for name, strategy in self._strategies:
                parsed = strategy(text, context)
                if parsed is None:
                    continue

                range_error = self._validate_range(parsed.value)
                if range_error is not None:
                    logger.debug("Amount strategy %s produced out-of-range value %s (%s)",
                                 name, parsed.value, range_error.code)
                    rejected.append({"strategy": name, "value": parsed.value, "code": range_error.code})
                    continue

                parsed.original_input = raw_input
                logger.debug("Amount '%s' parsed by %s -> %s", raw_input, name, parsed.value)
                return Result.ok(parsed)

            return Result.fail(AmountParsingError(
                ErrorCode.AMOUNT_PARSING_FAILED,
                f"Could not parse amount: {raw_input}",
                details={
                    "input": raw_input,
                    "suggestions": self._failure_suggestions(text, context),
                    "rejected": rejected,
                },
            ))

        except Exception as e:
            logger.exception("Unexpected error parsing amount")
            return Result.fail(AmountParsingError(
                ErrorCode.PARSING_ERROR,
                "Unexpected error while parsing amount",
                details={"input": raw_input, "original_error": e},
            ))

    def format_amount(self, amount: float, currency: Optional[str] = None) -> str:
        """Format an amount with K/M/B units; output parses back to the same value."""
        formatted = self._format_number(amount)
        return f"{formatted} {currency}" if currency else formatted

    def validate_amount(self, amount: float) -> Result[float]:
        """Range-check a number against the configured bounds."""
        error = self._validate_range(amount)
        return Result.fail(error) if error else Result.ok(amount)

    # === STRATEGIES ===

    def _parse_exact(self, text: str, context: Optional[AmountContext]) -> Optional[AmountParsingResult]:
        if not _EXACT_RE.match(text):
            return None
        return AmountParsingResult(value=float(text), original_input=text, confidence=1.0, strategy="exact")

    def _parse_unit(self, text: str, context: Optional[AmountContext]) -> Optional[AmountParsingResult]:
        match = _UNIT_RE.match(text)
        if not match:
            return None
        number, unit = match.group(1), match.group(2).lower()
        value = float(number) * UNIT_MULTIPLIERS[unit]
        return AmountParsingResult(
            value=value,
            original_input=text,
            confidence=0.95,
            strategy="unit",
            unit=unit or None,
        )

    def _parse_percentage(self, text: str, context: Optional[AmountContext]) -> Optional[AmountParsingResult]:
        if not self.config.allow_percentages or context is None:
            return None

        for pattern in _PERCENT_RES:
            match = pattern.match(text)
            if not match:
                continue
            percentage = float(match.group(1))
            if percentage < 0 or percentage > 100:
                continue

            base_name, base = _first_base(context, ("user_balance", "portfolio_value", "position_size"))
            if not base:
                continue

            return AmountParsingResult(
                value=base * percentage / 100,
                original_input=text,
                confidence=0.9,
                strategy="percentage",
                unit="%",
                alternatives=_percentage_alternatives(percentage, base_name, context),
            )
        return None

    def _parse_relative(self, text: str, context: Optional[AmountContext]) -> Optional[AmountParsingResult]:
        if not self.config.allow_relative_amounts or context is None:
            return None

        for keyword, fraction in RELATIVE_KEYWORDS:
            # Whole-word match so "small" does not also hit "all"
            if not re.search(rf"\b{keyword}\b", text):
                continue

            base_name, base = _first_base(context, _relative_base_order(text))
            if not base:
                continue

            return AmountParsingResult(
                value=base * fraction,
                original_input=text,
                confidence=0.85,
                strategy="relative",
                alternatives=[
                    AmountAlternative(value=other * fraction, interpretation=f"{keyword} of {_BASE_LABELS[other_name]}")
                    for other_name, other in _other_bases(context, base_name, base)
                ],
            )
        return None

    def _parse_written_numbers(self, text: str, context: Optional[AmountContext]) -> Optional[AmountParsingResult]:
        total = 0
        current = 0
        for word in re.split(r"[\s-]+", text):
            value = NUMBER_WORDS.get(word)
            if value is None:
                continue
            if value == 100:
                current *= 100
            elif value == 1_000:
                total += current * 1_000
                current = 0
            elif value >= 1_000_000:
                total += current * value
                current = 0
            else:
                current += value

        result = total + current
        if result <= 0:
            return None
        return AmountParsingResult(value=float(result), original_input=text, confidence=0.8, strategy="natural_language")

    def _parse_expression(self, text: str, context: Optional[AmountContext]) -> Optional[AmountParsingResult]:
        for pattern, get_value in _EXPRESSIONS:
            match = pattern.search(text)
            if not match:
                continue
            value = get_value(match)
            if value <= 0:
                continue
            return AmountParsingResult(
                value=value,
                original_input=text,
                confidence=0.7,
                strategy="expression",
                alternatives=[
                    AmountAlternative(value=value * 0.8, interpretation="Conservative estimate"),
                    AmountAlternative(value=value * 1.2, interpretation="Liberal estimate"),
                ],
            )
        return None

    # === HELPERS ===

    def _validate_range(self, amount: float) -> Optional[AmountParsingError]:
        if amount is None or math.isnan(amount) or amount <= 0:
            return AmountParsingError(ErrorCode.INVALID_AMOUNT, "Amount must be a positive number",
                                      details={"amount": amount})
        if amount < self.config.min_amount:
            return AmountParsingError(ErrorCode.AMOUNT_TOO_SMALL,
                                      f"Amount too small. Minimum: {self.config.min_amount}",
                                      details={"min_amount": self.config.min_amount})
        if amount > self.config.max_amount:
            return AmountParsingError(ErrorCode.AMOUNT_TOO_LARGE,
                                      f"Amount too large. Maximum: {self.config.max_amount}",
                                      details={"max_amount": self.config.max_amount})
        return None

    def _failure_suggestions(self, text: str, context: Optional[AmountContext]) -> List[str]:
        suggestions = ['Try exact numbers like "100" or "1500.50"']
        if not re.search(r"[kmbt]", text):
            suggestions.append('Use units like "1.5k" for 1,500 or "2m" for 2,000,000')
        if self.config.allow_percentages and context is not None:
            suggestions.append('Try percentages like "50%" or "25 percent"')
        if self.config.allow_relative_amounts and context is not None:
            suggestions.append('Try relative amounts like "half", "all", or "quarter"')
        return suggestions

    def _format_number(self, num: float) -> str:
        for divisor, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
            if num >= divisor:
                scaled = num / divisor
                text = f"{scaled:.2f}"
                if not math.isclose(float(text) * divisor, num, rel_tol=1e-9):
                    text = f"{scaled:.{self.config.default_decimals + 3}f}".rstrip("0").rstrip(".")
                return f"{text}{suffix}"
        text = f"{num:.{self.config.default_decimals}f}"
        if not math.isclose(float(text), num, rel_tol=1e-9):
            return plain_number(num)
        return text


def _first_base(context: AmountContext, order: Tuple[str, ...]) -> Tuple[Optional[str], Optional[float]]:
    for name in order:
        value = getattr(context, name)
        if value:
            return name, value
    return None, None


def _other_bases(context: AmountContext, chosen_name: str, chosen: float) -> List[Tuple[str, float]]:
    others = []
    for name in ("user_balance", "portfolio_value", "position_size"):
        value = getattr(context, name)
        if name != chosen_name and value and value != chosen:
            others.append((name, value))
    return others


def _relative_base_order(text: str) -> Tuple[str, ...]:
    if "portfolio" in text:
        return ("portfolio_value", "user_balance", "position_size")
    if "position" in text:
        return ("position_size", "user_balance", "portfolio_value")
    return ("user_balance", "portfolio_value", "position_size")


def _percentage_alternatives(percentage: float, base_name: str, context: AmountContext) -> List[AmountAlternative]:
    alternatives = []
    if base_name == "user_balance" and context.portfolio_value and context.portfolio_value != context.user_balance:
        alternatives.append(AmountAlternative(
            value=context.portfolio_value * percentage / 100,
            interpretation=f"{plain_number(percentage)}% of total portfolio",
        ))
    if base_name != "position_size" and context.position_size:
        alternatives.append(AmountAlternative(
            value=context.position_size * percentage / 100,
            interpretation=f"{plain_number(percentage)}% of current position",
        ))
    return alternatives
