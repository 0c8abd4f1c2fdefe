"""Tests for the DisambiguationEngine.

Validates:
  - Each ambiguity type is detected independently.
  - Only the highest-priority ambiguity is turned into a question.
  - Resolving merges only the fields the chosen option sets.
"""
import pytest

from conftest import amount, leverage, protocol, slippage, token
from defidesk.core.error_codes import ErrorCode
from defidesk.processing.schemas import (
    AmbiguityType,
    CommandParameters,
    DefiIntent,
    PrimaryParameters,
)
from defidesk.services.disambiguation_engine import (
    CANCEL_OPTION_ID,
    PROCEED_OPTION_ID,
    REDUCE_RISK_OPTION_ID,
    DisambiguationContext,
    DisambiguationEngine,
    entities_from_parameters,
)


@pytest.fixture
def engine():
    return DisambiguationEngine()


def _context(intent, entity_list, ambiguities, user_context=None, text=""):
    return DisambiguationContext(
        original_input=text,
        intent=intent,
        entities=tuple(entity_list),
        ambiguities=tuple(ambiguities),
        user_context=user_context,
    )


def _options(engine, intent, entity_list, user_context=None):
    ambiguities = engine.detect_ambiguities(intent, entity_list, "", user_context)
    result = engine.generate_disambiguation_options(_context(intent, entity_list, ambiguities, user_context))
    assert result.success
    return result.value


class TestStrategyOrder:

    def test_priorities_descending(self, engine):
        priorities = [s.priority for s in engine.strategies]
        assert priorities == sorted(priorities, reverse=True)
        assert engine.strategies[0].type == AmbiguityType.UNCLEAR_INTENT


class TestDetectAmbiguities:

    def test_clear_lend(self, engine):
        found = engine.detect_ambiguities(DefiIntent.LEND, [amount("100"), token("USDC"), protocol("silo")], "")
        assert found == []

    def test_missing_protocol(self, engine):
        found = engine.detect_ambiguities(DefiIntent.LEND, [amount("100"), token("USDC")], "")
        assert found == [AmbiguityType.MISSING_PROTOCOL]

    def test_single_protocol_intent_never_missing(self, engine):
        found = engine.detect_ambiguities(DefiIntent.CLOSE_POSITION, [token("ETH")], "")
        assert AmbiguityType.MISSING_PROTOCOL not in found

    def test_swap_direction(self, engine):
        found = engine.detect_ambiguities(DefiIntent.SWAP, [amount("100"), token("USDC"), protocol("symphony")], "")
        assert found == [AmbiguityType.TOKEN_DIRECTION]

    def test_multiple_amounts(self, engine):
        found = engine.detect_ambiguities(
            DefiIntent.LEND, [amount("100"), amount("200"), token("USDC"), protocol("silo")], "",
        )
        assert found == [AmbiguityType.MULTIPLE_AMOUNTS]

    def test_unknown_intent(self, engine):
        assert AmbiguityType.UNCLEAR_INTENT in engine.detect_ambiguities(DefiIntent.UNKNOWN, [], "hmm")

    def test_protocol_choice_with_history(self, engine, multi_protocol_context):
        found = engine.detect_ambiguities(DefiIntent.LEND, [amount("100"), token("USDC")], "", multi_protocol_context)
        assert AmbiguityType.PROTOCOL_CHOICE in found

    def test_parameter_conflict(self, engine):
        found = engine.detect_ambiguities(
            DefiIntent.BORROW, [amount("100"), token("USDC"), protocol("silo"), leverage("2"), leverage("3")], "",
        )
        assert AmbiguityType.PARAMETER_CONFLICT in found

    @pytest.mark.parametrize("values", [("high", "max"), ("3", "max"), ("2", "2.0")])
    def test_no_conflict_without_two_distinct_numbers(self, engine, values):
        found = engine.detect_ambiguities(
            DefiIntent.SWAP, [amount("10"), token("SEI")] + [leverage(v) for v in values], "",
        )
        assert AmbiguityType.PARAMETER_CONFLICT not in found

    def test_high_leverage_needs_confirmation(self, engine):
        found = engine.detect_ambiguities(
            DefiIntent.BORROW, [amount("100"), token("USDC"), protocol("silo"), leverage("10")], "",
        )
        assert found == [AmbiguityType.RISK_CONFIRMATION]

    def test_large_amount_needs_confirmation(self, engine):
        found = engine.detect_ambiguities(DefiIntent.LEND, [amount("60000"), token("USDC"), protocol("silo")], "")
        assert found == [AmbiguityType.RISK_CONFIRMATION]

    def test_high_risk_intent(self, engine):
        found = engine.detect_ambiguities(DefiIntent.OPEN_POSITION, [amount("100"), token("ETH")], "")
        assert found == [AmbiguityType.RISK_CONFIRMATION]

    def test_acknowledged_risk_not_asked_again(self, engine):
        found = engine.detect_ambiguities(
            DefiIntent.OPEN_POSITION, [amount("100"), token("ETH")], "", risk_acknowledged=True,
        )
        assert found == []


class TestGenerateOptions:

    def test_no_ambiguities(self, engine):
        result = engine.generate_disambiguation_options(_context(DefiIntent.LEND, [], []))
        assert result.code == ErrorCode.NO_STRATEGIES.value

    def test_direction_beats_missing_protocol(self, engine):
        options = _options(engine, DefiIntent.SWAP, [amount("100"), token("USDC")])
        assert options.ambiguity_type == AmbiguityType.TOKEN_DIRECTION
        assert [o.id for o in options.options] == ["from_token", "to_token"]
        assert options.question == "Do you want to swap FROM USDC or TO USDC?"

    def test_from_token_option_sets_amount(self, engine):
        options = _options(engine, DefiIntent.SWAP, [amount("100"), token("USDC")])
        primary = options.find("from_token").parameters.primary
        assert primary.from_token == "USDC"
        assert primary.amount == "100"
        assert primary.token is None

    def test_missing_protocol_options(self, engine, lending_context):
        options = _options(engine, DefiIntent.LEND, [amount("100"), token("USDC")], lending_context)
        assert options.ambiguity_type == AmbiguityType.MISSING_PROTOCOL
        assert [o.id for o in options.options] == ["protocol_silo", "protocol_takara"]
        # Silo was used before
        assert options.find("protocol_silo").confidence == pytest.approx(0.9)
        assert options.find("protocol_takara").confidence == pytest.approx(0.8)
        assert options.find("protocol_silo").parameters.primary.protocol == "silo"

    def test_multiple_amount_options(self, engine):
        options = _options(engine, DefiIntent.LEND, [amount("100"), amount("200"), token("USDC"), protocol("silo")])
        assert [o.parameters.primary.amount for o in options.options] == ["100", "200"]
        assert options.default_option == "amount_0"

    def test_unclear_intent_options_carry_intent(self, engine):
        options = _options(engine, DefiIntent.UNKNOWN, [])
        assert options.timeout == 45000
        assert options.find("intent_lend").intent == DefiIntent.LEND
        assert len(options.options) == 5

    def test_protocol_choice_options(self, engine):
        result = engine.generate_disambiguation_options(
            _context(DefiIntent.SWAP, [amount("100")], [AmbiguityType.PROTOCOL_CHOICE]),
        )
        options = result.value
        assert [o.id for o in options.options] == ["choice_dragonswap", "choice_symphony"]
        assert options.find("choice_symphony").description == "Best rates for large trades"

    def test_risk_confirmation_defaults_to_cancel(self, engine):
        options = _options(
            engine, DefiIntent.BORROW, [amount("60000"), token("USDC"), protocol("silo"), leverage("10")],
        )
        assert options.ambiguity_type == AmbiguityType.RISK_CONFIRMATION
        assert options.default_option == CANCEL_OPTION_ID
        assert options.timeout == 60000
        assert options.find(PROCEED_OPTION_ID).parameters.optional.risk_acknowledged is True

    def test_reduce_risk_halves_amount_and_caps_leverage(self, engine):
        options = _options(
            engine, DefiIntent.BORROW, [amount("60000"), token("USDC"), protocol("silo"), leverage("10")],
        )
        reduced = options.find(REDUCE_RISK_OPTION_ID).parameters
        assert reduced.primary.amount == "30000"
        assert reduced.primary.leverage == 2.0
        assert reduced.optional.risk_acknowledged is True

    def test_parameter_conflict_options(self, engine):
        result = engine.generate_disambiguation_options(_context(
            DefiIntent.SWAP,
            [slippage("0.5"), slippage("1")],
            [AmbiguityType.PARAMETER_CONFLICT],
        ))
        options = result.value
        assert options.question == "Which value should I use?"
        assert [(o.id, o.parameters.primary.slippage) for o in options.options] == [
            ("slippage_0", 0.5),
            ("slippage_1", 1.0),
        ]

    def test_detected_conflict_always_yields_options(self, engine):
        found_entities = [amount("10"), token("SEI"), leverage("high"), leverage("2"), leverage("2"), leverage("3")]
        found = engine.detect_ambiguities(DefiIntent.SWAP, found_entities, "")
        assert AmbiguityType.PARAMETER_CONFLICT in found

        result = engine.generate_disambiguation_options(_context(
            DefiIntent.SWAP, found_entities, [AmbiguityType.PARAMETER_CONFLICT],
        ))
        assert result.success
        assert [o.parameters.primary.leverage for o in result.value.options] == [2.0, 3.0]


class TestResolveDisambiguation:

    def test_merge_only_option_fields(self, engine):
        original = CommandParameters(primary=PrimaryParameters(amount="100", token="USDC", slippage=0.5))
        options = _options(engine, DefiIntent.SWAP, [amount("100"), token("USDC")])
        resolved = engine.resolve_disambiguation(original, "to_token", options).value
        assert resolved.primary.to_token == "USDC"
        assert resolved.primary.token is None
        assert resolved.primary.amount == "100"
        assert resolved.primary.slippage == 0.5

    def test_protocol_choice_keeps_amount(self, engine, lending_context):
        original = CommandParameters(primary=PrimaryParameters(amount="100", token="USDC"))
        options = _options(engine, DefiIntent.LEND, [amount("100"), token("USDC")], lending_context)
        resolved = engine.resolve_disambiguation(original, "protocol_takara", options).value
        assert resolved.primary.protocol == "takara"
        assert resolved.primary.amount == "100"
        assert original.primary.protocol is None

    def test_invalid_option(self, engine):
        options = _options(engine, DefiIntent.SWAP, [amount("100"), token("USDC")])
        result = engine.resolve_disambiguation(CommandParameters(), "nope", options)
        assert result.code == ErrorCode.INVALID_OPTION.value
        assert result.error.details["available_options"] == ["from_token", "to_token"]


class TestSmartSuggestions:

    def test_frequent_protocol(self, engine, lending_context):
        suggestions = engine.generate_smart_suggestions(
            _context(DefiIntent.LEND, [], [AmbiguityType.MISSING_PROTOCOL], lending_context),
        )
        assert "You frequently use Silo" in suggestions
        assert "Silo currently offers the highest USDC lending rates" in suggestions

    def test_risk_hint(self, engine):
        suggestions = engine.generate_smart_suggestions(
            _context(DefiIntent.OPEN_POSITION, [], [AmbiguityType.RISK_CONFIRMATION]),
        )
        assert suggestions == ["Consider starting with a smaller amount to test the strategy"]


class TestEntitiesFromParameters:

    def test_rebuilds_entities(self):
        parameters = CommandParameters(primary=PrimaryParameters(
            amount="100", from_token="USDC", to_token="SEI", leverage=2.0,
        ))
        rebuilt = entities_from_parameters(parameters)
        assert [(e.type.value, e.normalized) for e in rebuilt] == [
            ("amount", "100"),
            ("token", "USDC"),
            ("token", "SEI"),
            ("leverage", "2"),
        ]
