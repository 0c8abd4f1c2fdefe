"""Tests for the AmountParser.

Validates:
  - Exact, unit-suffixed and written amounts parse without context.
  - Percentages and relative terms need a base amount.
  - Out-of-range values fall through to later strategies, then fail.
  - format_amount output parses back to the same value.
  - Each strategy has a fixed confidence, falling in strategy order.
"""
import pytest

from defidesk.core.error_codes import ErrorCode
from defidesk.services.amount_parser import (
    AmountContext,
    AmountParser,
    AmountParserConfig,
    plain_number,
)


@pytest.fixture
def parser():
    return AmountParser()


@pytest.fixture
def wallet():
    return AmountContext(user_balance=1000.0, portfolio_value=5000.0, position_size=200.0)


class TestPlainNumber:

    def test_integer_value(self):
        assert plain_number(500.0) == "500"

    def test_fraction(self):
        assert plain_number(0.25) == "0.25"

    def test_no_exponent(self):
        assert plain_number(0.000001) == "0.000001"


class TestExactAndUnits:

    def test_exact(self, parser):
        result = parser.parse_amount("1000")
        assert result.success
        assert result.value.value == 1000.0
        assert result.value.strategy == "exact"
        assert result.value.confidence == 1.0

    def test_thousands_separator(self, parser):
        assert parser.parse_amount("1,500").value.value == 1500.0

    def test_decimal(self, parser):
        assert parser.parse_amount("250.5").value.normalized == "250.5"

    def test_k_suffix(self, parser):
        result = parser.parse_amount("1.5k")
        assert result.value.value == 1500.0
        assert result.value.unit == "k"
        assert result.value.strategy == "unit"

    def test_m_suffix_with_space(self, parser):
        assert parser.parse_amount("2 M").value.value == 2_000_000.0

    def test_original_input_preserved(self, parser):
        assert parser.parse_amount(" 1.5K ").value.original_input == " 1.5K "


class TestPercentages:

    def test_needs_context(self, parser):
        result = parser.parse_amount("50%")
        assert not result.success
        assert result.code == ErrorCode.AMOUNT_PARSING_FAILED.value

    def test_percent_of_balance(self, parser, wallet):
        result = parser.parse_amount("50%", wallet)
        assert result.value.value == 500.0
        assert result.value.unit == "%"
        assert result.value.strategy == "percentage"
        assert result.value.confidence == 0.9

    def test_percent_word_form(self, parser, wallet):
        assert parser.parse_amount("25 percent", wallet).value.value == 250.0

    def test_alternatives_offer_other_bases(self, parser, wallet):
        alternatives = parser.parse_amount("10%", wallet).value.alternatives
        values = {a.value for a in alternatives}
        assert 500.0 in values  # 10% of portfolio
        assert 20.0 in values  # 10% of position

    def test_disabled_by_config(self, wallet):
        parser = AmountParser(AmountParserConfig(allow_percentages=False))
        assert not parser.parse_amount("50%", wallet).success


class TestRelativeAmounts:

    def test_half(self, parser, wallet):
        result = parser.parse_amount("half", wallet)
        assert result.value.value == 500.0
        assert result.value.strategy == "relative"

    def test_portfolio_base(self, parser, wallet):
        assert parser.parse_amount("half my portfolio", wallet).value.value == 2500.0

    def test_small_is_not_all(self, parser, wallet):
        assert parser.parse_amount("a small amount", wallet).value.value == pytest.approx(100.0)

    def test_all(self, parser, wallet):
        assert parser.parse_amount("all", wallet).value.value == 1000.0


class TestNaturalLanguage:

    def test_written_number(self, parser):
        result = parser.parse_amount("two hundred fifty")
        assert result.value.value == 250.0
        assert result.value.strategy == "natural_language"

    def test_written_thousands(self, parser):
        assert parser.parse_amount("three thousand").value.value == 3000.0

    def test_approximation(self, parser):
        result = parser.parse_amount("around 500")
        assert result.value.value == 500.0
        assert result.value.strategy == "expression"
        assert [a.value for a in result.value.alternatives] == [400.0, 600.0]

    def test_few_hundred(self, parser):
        assert parser.parse_amount("a few hundred").value.value == 300.0


class TestFailures:

    def test_empty_input(self, parser):
        result = parser.parse_amount("   ")
        assert result.code == ErrorCode.INVALID_AMOUNT_INPUT.value

    def test_gibberish(self, parser):
        result = parser.parse_amount("banana")
        assert result.code == ErrorCode.AMOUNT_PARSING_FAILED.value
        assert result.error.details["suggestions"]

    def test_zero_rejected(self, parser):
        result = parser.parse_amount("0")
        assert not result.success
        assert result.error.details["rejected"]

    def test_above_max(self):
        parser = AmountParser(AmountParserConfig(max_amount=1000))
        result = parser.parse_amount("5000")
        assert not result.success
        assert result.error.details["rejected"][0]["code"] == ErrorCode.AMOUNT_TOO_LARGE.value

    def test_validate_amount(self, parser):
        assert parser.validate_amount(10).success
        assert parser.validate_amount(-1).code == ErrorCode.INVALID_AMOUNT.value


class TestFormatAmount:

    def test_thousands(self, parser):
        assert parser.format_amount(1500) == "1.50K"

    def test_with_currency(self, parser):
        assert parser.format_amount(2_000_000, "USDC") == "2.00M USDC"

    def test_small_values(self, parser):
        assert parser.format_amount(12.5) == "12.500000"

    def test_fraction_beyond_default_decimals(self, parser):
        assert parser.format_amount(1.2345678) == "1.2345678"

    @pytest.mark.parametrize("value", [1234.5678, 1.2345678, 0.0000015, 12.3456789, 999.9999999, 2_500_000.25])
    def test_formatted_value_parses_back(self, parser, value):
        formatted = parser.format_amount(value)
        assert parser.parse_amount(formatted).value.value == pytest.approx(value, rel=1e-9)

    @pytest.mark.parametrize("raw", [
        "1000", "1.5k", "2.5m", "33%", "third", "two hundred fifty", "around 12.3456789", "1.2345678", "0.0000015",
    ])
    def test_round_trip_for_every_strategy(self, parser, wallet, raw):
        parsed = parser.parse_amount(raw, wallet).value.value
        reparsed = parser.parse_amount(parser.format_amount(parsed)).value.value
        assert reparsed == pytest.approx(parsed, rel=1e-9)


STRATEGY_CONFIDENCE = [
    ("1000", "exact", 1.0),
    ("1.5k", "unit", 0.95),
    ("50%", "percentage", 0.9),
    ("half", "relative", 0.85),
    ("five hundred", "natural_language", 0.8),
    ("a few hundred", "expression", 0.7),
]


class TestConfidence:

    @pytest.mark.parametrize("raw,strategy,confidence", STRATEGY_CONFIDENCE)
    def test_strategy_confidence(self, parser, wallet, raw, strategy, confidence):
        result = parser.parse_amount(raw, wallet).value
        assert result.strategy == strategy
        assert result.confidence == confidence

    def test_confidence_falls_with_each_later_strategy(self, parser, wallet):
        scores = [parser.parse_amount(raw, wallet).value.confidence for raw, _, _ in STRATEGY_CONFIDENCE]
        assert scores == sorted(scores, reverse=True)
        assert len(set(scores)) == len(scores)
