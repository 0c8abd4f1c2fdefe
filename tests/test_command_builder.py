"""Tests for the CommandBuilder: actions, gas, risk, confirmation, batches."""
import pytest

from defidesk.core.error_codes import ErrorCode
from defidesk.processing.command_builder import (
    DEFAULT_GAS_PRICE_WEI,
    BuilderConfig,
    CommandBuilder,
    RiskAssessor,
    highest_risk,
)
from defidesk.processing.schemas import (
    CommandParameters,
    CommandRiskLevel,
    DefiIntent,
    OptionalParameters,
    ParsingContext,
    PrimaryParameters,
)
from defidesk.processing.templates import get_template


@pytest.fixture
def builder():
    return CommandBuilder()


def _params(optional=None, **primary):
    return CommandParameters(primary=PrimaryParameters(**primary), optional=optional or OptionalParameters())


def _build(builder, intent, parameters, context=None):
    result = builder.build_command(intent, parameters, get_template(intent), context)
    assert result.success
    return result.value


class TestBuildCommand:

    def test_lend_on_silo(self, builder):
        command = _build(builder, DefiIntent.LEND, _params(amount="1000", token="USDC", protocol="silo"))
        assert command.action == "silo_supply"
        assert command.estimated_gas == 135000
        assert command.risk_level == CommandRiskLevel.LOW
        assert not command.confirmation_required
        assert command.id.startswith("cmd_")

    def test_fresh_id_per_build(self, builder):
        parameters = _params(amount="1000", token="USDC", protocol="silo")
        first = _build(builder, DefiIntent.LEND, parameters)
        second = _build(builder, DefiIntent.LEND, parameters)
        assert first.id != second.id

    def test_precise_swap(self, builder):
        command = _build(builder, DefiIntent.SWAP, _params(
            optional=OptionalParameters(max_slippage=0.05),
            amount="100", from_token="USDC", to_token="SEI",
        ))
        assert command.action == "precise_swap"
        assert command.estimated_gas == 180000

    def test_leveraged_borrow(self, builder):
        command = _build(builder, DefiIntent.BORROW, _params(amount="100", token="USDC", leverage=3.0))
        assert command.action == "leveraged_borrow"
        assert command.estimated_gas == 260000
        assert command.risk_level == CommandRiskLevel.MEDIUM
        assert command.confirmation_required

    def test_citrex_forces_high_risk(self, builder):
        command = _build(builder, DefiIntent.OPEN_POSITION, _params(amount="100", token="ETH", protocol="citrex"))
        assert command.action == "ctx_openPosition"
        assert command.risk_level == CommandRiskLevel.HIGH
        assert command.estimated_gas == 450000
        assert command.confirmation_required

    def test_large_amount_needs_confirmation(self, builder):
        command = _build(builder, DefiIntent.LEND, _params(amount="20000", token="USDC", protocol="silo"))
        assert command.confirmation_required

    def test_confirmation_threshold_configurable(self):
        builder = CommandBuilder(BuilderConfig(confirmation_amount=50000))
        command = _build(builder, DefiIntent.LEND, _params(amount="20000", token="USDC", protocol="silo"))
        assert not command.confirmation_required

    def test_read_only_intent(self, builder):
        command = _build(builder, DefiIntent.PORTFOLIO_STATUS, _params())
        assert command.action == "getPortfolioStatus"
        assert command.estimated_gas == 0

    def test_intent_without_template(self, builder):
        result = builder.build_command(DefiIntent.SHOW_POSITIONS, _params())
        assert result.value.action == "getPositions"
        assert result.value.estimated_gas == 100000


class TestRiskAssessor:

    def test_large_arbitrage_is_high(self):
        assessor = RiskAssessor()
        parameters = _params(amount="200000", token="USDC")
        assert assessor.score(DefiIntent.ARBITRAGE, parameters) == 6
        assert assessor.assess(DefiIntent.ARBITRAGE, parameters) == CommandRiskLevel.HIGH

    def test_experimental_protocol_points(self):
        assessor = RiskAssessor()
        assert assessor.score(DefiIntent.LEND, _params(amount="10", protocol="experimental_vault")) == 3

    def test_highest_risk(self):
        assert highest_risk([CommandRiskLevel.LOW, CommandRiskLevel.HIGH, CommandRiskLevel.MEDIUM]) == CommandRiskLevel.HIGH
        assert highest_risk([]) == CommandRiskLevel.LOW


class TestBatch:

    def test_empty_batch(self, builder):
        assert builder.build_batch_command([]).code == ErrorCode.EMPTY_BATCH.value

    def test_batch_aggregates(self, builder):
        result = builder.build_batch_command([
            (DefiIntent.LEND, _params(amount="1000", token="USDC", protocol="silo"), get_template(DefiIntent.LEND)),
            (DefiIntent.BORROW, _params(amount="100", token="USDC", leverage=3.0), get_template(DefiIntent.BORROW)),
        ])
        batch = result.value
        assert batch.action == "batch"
        assert [c.intent for c in batch.batch] == [DefiIntent.LEND, DefiIntent.BORROW]
        assert batch.estimated_gas == 135000 + 260000
        assert batch.risk_level == CommandRiskLevel.MEDIUM
        assert batch.confirmation_required
        assert batch.metadata.protocols_involved == ["silo"]

    def test_batch_fails_when_one_build_fails(self):
        class FlakyBuilder(CommandBuilder):
            def determine_action(self, intent, parameters):
                if intent == DefiIntent.BORROW:
                    raise ValueError("no action")
                return super().determine_action(intent, parameters)

        result = FlakyBuilder().build_batch_command([
            (DefiIntent.LEND, _params(amount="1000", token="USDC"), None),
            (DefiIntent.BORROW, _params(amount="100", token="USDC"), None),
        ])
        assert result.code == ErrorCode.COMMAND_BUILD_ERROR.value
        assert len(result.error.details["errors"]) == 1


class TestExecutionReadiness:

    def test_ready(self, builder, wallet_context):
        command = _build(builder, DefiIntent.LEND, _params(amount="1000", token="USDC", protocol="silo"))
        readiness = builder.validate_execution_readiness(command, wallet_context)
        assert readiness.ready
        assert readiness.issues == []

    def test_insufficient_balance(self, builder, wallet_context):
        command = _build(builder, DefiIntent.LEND, _params(amount="6000", token="USDC", protocol="silo"))
        readiness = builder.validate_execution_readiness(command, wallet_context)
        assert not readiness.ready
        assert readiness.issues == ["Insufficient USDC balance"]

    def test_high_risk_flagged(self, builder):
        command = _build(builder, DefiIntent.OPEN_POSITION, _params(amount="100", token="ETH", protocol="citrex"))
        issues = builder.validate_execution_readiness(command).issues
        assert "High risk operation - review carefully before execution" in issues

    def test_no_gas_token(self, builder):
        command = _build(builder, DefiIntent.LEND, _params(amount="10", token="USDC", protocol="silo"))
        context = ParsingContext(balances={"USDC": "100", "SEI": "0"})
        assert "Insufficient SEI for gas fees" in builder.validate_execution_readiness(command, context).issues


class TestOptimizeCommand:

    def test_swap_optimization(self, builder):
        command = _build(builder, DefiIntent.SWAP, _params(amount="20000", from_token="USDC", to_token="SEI"))
        optimized = builder.optimize_command(command)

        optional = optimized.parameters.optional
        assert optional.max_slippage == pytest.approx(0.75)
        assert optional.gas_price == str(int(float(DEFAULT_GAS_PRICE_WEI) * 1.2))
        assert optional.gas_limit == 198000

        route = optimized.parameters.derived.route
        assert len(route) == 1
        assert route[0].protocol == "dragonswap"
        assert route[0].pool == "USDC/SEI"
        assert route[0].amount_in == "20000"

        assert command.parameters.optional.max_slippage is None
        assert optimized.id == command.id

    def test_context_gas_price(self, builder):
        command = _build(builder, DefiIntent.LEND, _params(amount="10", token="USDC", protocol="silo"))
        optimized = builder.optimize_command(command, ParsingContext(gas_price="1000"))
        assert optimized.parameters.optional.gas_price == "1000"
        assert optimized.parameters.derived.route is None
