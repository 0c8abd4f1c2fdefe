"""Command builder - turns validated parameters into an ExecutableCommand.

Responsible for the action name, the risk level, the gas estimate and whether
the user must confirm. Metadata (approvals, duration) is attached afterwards
by the CommandParser.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from defidesk.core.error_codes import CommandBuildingError, ErrorCode
from defidesk.core.ids import new_command_id
from defidesk.core.logging import get_logger
from defidesk.core.result import Result
from defidesk.core.time import now_ms
from defidesk.processing.schemas import (
    CommandMetadata,
    CommandParameters,
    CommandRiskLevel,
    DefiIntent,
    ExecutableCommand,
    OptionalParameters,
    ParsingContext,
    RouteStep,
)
from defidesk.processing.templates import CommandTemplate

logger = get_logger(__name__)

ACTIONS: Dict[DefiIntent, str] = {
    DefiIntent.LEND: "supply",
    DefiIntent.BORROW: "borrow",
    DefiIntent.REPAY: "repay",
    DefiIntent.WITHDRAW: "withdraw",
    DefiIntent.SWAP: "swap",
    DefiIntent.ADD_LIQUIDITY: "addLiquidity",
    DefiIntent.REMOVE_LIQUIDITY: "removeLiquidity",
    DefiIntent.OPEN_POSITION: "openPosition",
    DefiIntent.CLOSE_POSITION: "closePosition",
    DefiIntent.ARBITRAGE: "arbitrage",
    DefiIntent.CROSS_PROTOCOL_ARBITRAGE: "crossProtocolArbitrage",
    DefiIntent.PORTFOLIO_STATUS: "getPortfolioStatus",
    DefiIntent.RISK_ASSESSMENT: "assessRisk",
    DefiIntent.YIELD_OPTIMIZATION: "optimizeYield",
    DefiIntent.REBALANCE: "rebalance",
    DefiIntent.SHOW_RATES: "getRates",
    DefiIntent.SHOW_POSITIONS: "getPositions",
    DefiIntent.COMPARE_PROTOCOLS: "compareProtocols",
    DefiIntent.MARKET_ANALYSIS: "analyzeMarket",
    DefiIntent.HELP: "getHelp",
    DefiIntent.EXPLAIN: "explain",
    DefiIntent.UNKNOWN: "unknown",
}

PROTOCOL_ACTION_PREFIXES: Dict[str, str] = {
    "dragonswap": "ds",
    "symphony": "sym",
    "citrex": "ctx",
    "silo": "silo",
    "takara": "tkr",
}

BASE_GAS: Dict[DefiIntent, int] = {
    DefiIntent.LEND: 150000,
    DefiIntent.BORROW: 200000,
    DefiIntent.REPAY: 120000,
    DefiIntent.WITHDRAW: 120000,
    DefiIntent.SWAP: 180000,
    DefiIntent.ADD_LIQUIDITY: 250000,
    DefiIntent.REMOVE_LIQUIDITY: 200000,
    DefiIntent.OPEN_POSITION: 300000,
    DefiIntent.CLOSE_POSITION: 200000,
    DefiIntent.ARBITRAGE: 400000,
}
DEFAULT_GAS = 100000

# protocol -> (gas multiplier, forced risk level)
PROTOCOL_ADJUSTMENTS: Dict[str, Tuple[float, Optional[CommandRiskLevel]]] = {
    "dragonswap": (1.0, None),
    "symphony": (1.2, None),
    "citrex": (1.5, CommandRiskLevel.HIGH),
    "silo": (0.9, None),
}

CONFIRMATION_INTENTS = frozenset({
    DefiIntent.BORROW,
    DefiIntent.OPEN_POSITION,
    DefiIntent.CLOSE_POSITION,
    DefiIntent.ARBITRAGE,
    DefiIntent.CROSS_PROTOCOL_ARBITRAGE,
})

DEFAULT_GAS_PRICE_WEI = "20000000000"


class BuilderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_slippage: float = 0.5
    confirmation_amount: float = 10000
    confirmation_leverage: float = 2


@dataclass
class ExecutionReadiness:
    ready: bool
    issues: List[str] = field(default_factory=list)


def _amount(parameters: CommandParameters) -> float:
    try:
        return float(parameters.primary.amount or 0)
    except ValueError:
        return 0.0


class RiskAssessor:
    """Additive point score: intent base + amount + leverage + protocol + price impact."""

    INTENT_POINTS: Dict[DefiIntent, int] = {
        DefiIntent.LEND: 1,
        DefiIntent.BORROW: 3,
        DefiIntent.SWAP: 2,
        DefiIntent.OPEN_POSITION: 4,
        DefiIntent.ARBITRAGE: 4,
        DefiIntent.CROSS_PROTOCOL_ARBITRAGE: 5,
        DefiIntent.ADD_LIQUIDITY: 2,
        DefiIntent.PORTFOLIO_STATUS: 0,
        DefiIntent.SHOW_RATES: 0,
    }

    def score(self, intent: DefiIntent, parameters: CommandParameters) -> int:
        points = self.INTENT_POINTS.get(intent, 1)

        amount = _amount(parameters)
        if amount > 100000:
            points += 2
        elif amount > 10000:
            points += 1

        leverage = parameters.primary.leverage or 1
        if leverage > 5:
            points += 3
        elif leverage > 2:
            points += 2
        elif leverage > 1:
            points += 1

        if (parameters.primary.protocol or "").lower().startswith("experimental"):
            points += 2

        impact = parameters.derived.price_impact
        if impact is not None and impact > 5:
            points += 2

        return points

    def assess(self, intent: DefiIntent, parameters: CommandParameters) -> CommandRiskLevel:
        points = self.score(intent, parameters)
        if points >= 6:
            return CommandRiskLevel.HIGH
        if points >= 3:
            return CommandRiskLevel.MEDIUM
        return CommandRiskLevel.LOW


_RISK_ORDER = (CommandRiskLevel.LOW, CommandRiskLevel.MEDIUM, CommandRiskLevel.HIGH)


def highest_risk(levels: Sequence[CommandRiskLevel]) -> CommandRiskLevel:
    return max(levels, key=_RISK_ORDER.index, default=CommandRiskLevel.LOW)


class CommandBuilder:
    def __init__(self, config: Optional[BuilderConfig] = None, risk_assessor: Optional[RiskAssessor] = None):
        self.config = config or BuilderConfig()
        self.risk_assessor = risk_assessor or RiskAssessor()

    def build_command(
        self,
        intent: DefiIntent,
        parameters: CommandParameters,
        template: Optional[CommandTemplate] = None,
        context: Optional[ParsingContext] = None,
    ) -> Result[ExecutableCommand]:
        """Build a fresh command. Every call yields a new command id."""
        try:
            protocol = (parameters.primary.protocol or "").lower()
            gas_multiplier, forced_risk = PROTOCOL_ADJUSTMENTS.get(protocol, (1.0, None))

            risk_level = forced_risk or self.risk_assessor.assess(intent, parameters)
            command = ExecutableCommand(
                id=new_command_id(),
                intent=intent,
                action=self.determine_action(intent, parameters),
                parameters=parameters,
                metadata=CommandMetadata(timestamp=now_ms()),
                confirmation_required=self.requires_confirmation(intent, parameters, risk_level),
                estimated_gas=int(self.estimate_gas(intent, parameters, template) * gas_multiplier),
                risk_level=risk_level,
            )
            logger.info(
                "Built %s command %s (risk=%s, gas=%s)",
                command.action, command.id, risk_level.value, command.estimated_gas,
                extra={"command_id": command.id, "intent": intent.value, "stage": "build"},
            )
            return Result.ok(command)

        except Exception as e:
            logger.exception("Failed to build command", extra={"intent": intent.value, "stage": "build"})
            return Result.fail(CommandBuildingError(
                ErrorCode.COMMAND_BUILD_ERROR,
                "Failed to build command",
                details={"original_error": e, "intent": intent.value},
            ))

    def determine_action(self, intent: DefiIntent, parameters: CommandParameters) -> str:
        base = ACTIONS.get(intent, "unknown")

        prefix = PROTOCOL_ACTION_PREFIXES.get((parameters.primary.protocol or "").lower())
        if prefix:
            return f"{prefix}_{base}"

        modifiers = []
        if parameters.primary.leverage and parameters.primary.leverage > 1:
            modifiers.append("leveraged")
        if parameters.optional.max_slippage is not None and parameters.optional.max_slippage < 0.1:
            modifiers.append("precise")
        if parameters.derived.route and len(parameters.derived.route) > 1:
            modifiers.append("multiHop")

        return "_".join(modifiers + [base])

    def estimate_gas(
        self,
        intent: DefiIntent,
        parameters: CommandParameters,
        template: Optional[CommandTemplate] = None,
    ) -> int:
        fallback = template.gas_estimate if template else DEFAULT_GAS
        gas = float(BASE_GAS.get(intent, fallback))
        if parameters.derived.route and len(parameters.derived.route) > 1:
            gas *= 1.5
        if parameters.primary.leverage and parameters.primary.leverage > 1:
            gas *= 1.3
        return int(gas)

    def requires_confirmation(self, intent: DefiIntent, parameters: CommandParameters, risk_level: CommandRiskLevel) -> bool:
        if risk_level == CommandRiskLevel.HIGH:
            return True
        if _amount(parameters) > self.config.confirmation_amount:
            return True
        if parameters.primary.leverage and parameters.primary.leverage > self.config.confirmation_leverage:
            return True
        return intent in CONFIRMATION_INTENTS

    # === BATCH ===

    def build_batch_command(
        self,
        commands: Sequence[Tuple[DefiIntent, CommandParameters, Optional[CommandTemplate]]],
        context: Optional[ParsingContext] = None,
    ) -> Result[ExecutableCommand]:
        """Bundle several commands into one; fails if any single build fails."""
        if not commands:
            return Result.fail(CommandBuildingError(ErrorCode.EMPTY_BATCH, "Batch contains no commands"))

        results = [self.build_command(intent, params, template, context) for intent, params, template in commands]
        failures = [r.error for r in results if not r.success]
        if failures:
            return Result.fail(CommandBuildingError(
                ErrorCode.COMMAND_BUILD_ERROR,
                "Failed to build some commands in batch",
                details={"errors": [f.to_dict() for f in failures]},
            ))

        built = [r.value for r in results]
        protocols = list(dict.fromkeys(
            c.parameters.primary.protocol for c in built if c.parameters.primary.protocol
        ))
        batch = ExecutableCommand(
            id=new_command_id(),
            intent=DefiIntent.UNKNOWN,
            action="batch",
            parameters=CommandParameters(),
            metadata=CommandMetadata(timestamp=now_ms(), protocols_involved=protocols),
            confirmation_required=any(c.confirmation_required for c in built),
            estimated_gas=sum(c.estimated_gas or 0 for c in built),
            risk_level=highest_risk([c.risk_level for c in built]),
            batch=built,
        )
        logger.info("Built batch %s with %d commands", batch.id, len(built), extra={"command_id": batch.id, "stage": "build"})
        return Result.ok(batch)

    # === READINESS / OPTIMIZATION ===

    def validate_execution_readiness(
        self,
        command: ExecutableCommand,
        context: Optional[ParsingContext] = None,
    ) -> ExecutionReadiness:
        issues: List[str] = []
        primary = command.parameters.primary

        token = primary.token or primary.from_token
        if primary.amount and token and context is not None and context.balances:
            balance = context.balance_of(token)
            if balance is None or balance < _amount(command.parameters):
                issues.append(f"Insufficient {token} balance")

        if command.metadata.required_approvals:
            issues.append("Token approvals required before execution")

        sei = context.balance_of("SEI") if context else None
        if sei is not None:
            gas_cost = (command.estimated_gas or 0) * 1e-9 * 20
            if sei < gas_cost:
                issues.append("Insufficient SEI for gas fees")

        if command.risk_level == CommandRiskLevel.HIGH:
            issues.append("High risk operation - review carefully before execution")

        return ExecutionReadiness(ready=not issues, issues=issues)

    def optimize_command(self, command: ExecutableCommand, context: Optional[ParsingContext] = None) -> ExecutableCommand:
        """Return a copy with tuned slippage, gas settings and (for swaps) a route."""
        overrides = {}

        if command.intent == DefiIntent.SWAP:
            overrides["max_slippage"] = self._optimized_slippage(_amount(command.parameters))

        base_price = float((context.gas_price if context else None) or DEFAULT_GAS_PRICE_WEI)
        multiplier = 1.2 if command.confirmation_required else 1.0
        overrides["gas_price"] = str(int(base_price * multiplier))
        if command.estimated_gas:
            overrides["gas_limit"] = int(command.estimated_gas * 1.1)

        parameters = command.parameters.merged_with(CommandParameters(optional=OptionalParameters(**overrides)))

        primary = parameters.primary
        if command.intent == DefiIntent.SWAP and primary.from_token and primary.to_token:
            step = RouteStep(
                protocol=primary.protocol or "dragonswap",
                pool=f"{primary.from_token}/{primary.to_token}",
                token_in=primary.from_token,
                token_out=primary.to_token,
                amount_in=primary.amount,
            )
            parameters = parameters.model_copy(update={
                "derived": parameters.derived.model_copy(update={"route": [step]}),
            })

        return command.model_copy(update={"parameters": parameters})

    def _optimized_slippage(self, amount: float) -> float:
        base = self.config.default_slippage
        if amount > 100000:
            return base * 2
        if amount > 10000:
            return base * 1.5
        return base
