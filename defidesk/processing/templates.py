"""Command templates: required parameters and validation rules per intent."""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from defidesk.processing.schemas import DefiIntent

# Tokens the lending and swap venues accept today
SUPPORTED_TEMPLATE_TOKENS = ("USDC", "USDT", "SEI", "ETH")


@dataclass(frozen=True)
class ParameterConstraints:
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    enum: Optional[Tuple[Any, ...]] = None
    custom: Optional[Callable[[Any], bool]] = None


@dataclass(frozen=True)
class ParameterValidationRule:
    """Check applied to one parameter. ``type`` is string|number|boolean|token|protocol|address."""
    field: str
    type: str
    required: bool = False
    validator: Optional[Callable[[Any], bool]] = None
    constraints: Optional[ParameterConstraints] = None
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandTemplate:
    intent: DefiIntent
    action: str
    required_parameters: Tuple[str, ...]
    optional_parameters: Tuple[str, ...] = ()
    validation_rules: Tuple[ParameterValidationRule, ...] = ()
    risk_level: str = "low"
    gas_estimate: int = 100000
    examples: Tuple[str, ...] = field(default_factory=tuple)


def _positive(value: Any) -> bool:
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def _supported_token(value: Any) -> bool:
    return str(value).upper() in SUPPORTED_TEMPLATE_TOKENS


_AMOUNT_RULE = ParameterValidationRule(
    field="amount",
    type="number",
    required=True,
    validator=_positive,
    constraints=ParameterConstraints(min=0.01),
)


def _token_rule(name: str, validator: Optional[Callable[[Any], bool]] = _supported_token) -> ParameterValidationRule:
    return ParameterValidationRule(field=name, type="token", required=True, validator=validator)


_PROTOCOL_RULE = ParameterValidationRule(field="protocol", type="protocol")
_SLIPPAGE_RULE = ParameterValidationRule(
    field="slippage", type="number", constraints=ParameterConstraints(min=0, max=50),
)
_LEVERAGE_RULE = ParameterValidationRule(
    field="leverage", type="number", constraints=ParameterConstraints(min=1, max=50),
)
_RECIPIENT_RULE = ParameterValidationRule(field="recipient", type="address")


COMMAND_TEMPLATES: Dict[DefiIntent, CommandTemplate] = {
    DefiIntent.LEND: CommandTemplate(
        intent=DefiIntent.LEND,
        action="supply",
        required_parameters=("amount", "token"),
        optional_parameters=("protocol", "deadline"),
        validation_rules=(_AMOUNT_RULE, _token_rule("token"), _PROTOCOL_RULE),
        risk_level="low",
        gas_estimate=150000,
        examples=("Lend 1000 USDC", "Supply 500 USDT to Silo"),
    ),
    DefiIntent.BORROW: CommandTemplate(
        intent=DefiIntent.BORROW,
        action="borrow",
        required_parameters=("amount", "token"),
        optional_parameters=("protocol", "leverage", "deadline"),
        validation_rules=(_AMOUNT_RULE, _token_rule("token"), _PROTOCOL_RULE, _LEVERAGE_RULE),
        risk_level="medium",
        gas_estimate=200000,
        examples=("Borrow 500 USDT", "Take 1000 USDC loan"),
    ),
    DefiIntent.REPAY: CommandTemplate(
        intent=DefiIntent.REPAY,
        action="repay",
        required_parameters=("amount", "token"),
        optional_parameters=("protocol",),
        validation_rules=(_AMOUNT_RULE, _token_rule("token"), _PROTOCOL_RULE),
        gas_estimate=120000,
        examples=("Repay 200 USDC",),
    ),
    DefiIntent.WITHDRAW: CommandTemplate(
        intent=DefiIntent.WITHDRAW,
        action="withdraw",
        required_parameters=("amount", "token"),
        optional_parameters=("protocol", "recipient"),
        validation_rules=(_AMOUNT_RULE, _token_rule("token"), _PROTOCOL_RULE, _RECIPIENT_RULE),
        gas_estimate=120000,
        examples=("Withdraw 300 USDC from Takara",),
    ),
    DefiIntent.SWAP: CommandTemplate(
        intent=DefiIntent.SWAP,
        action="swap",
        required_parameters=("amount", "from_token", "to_token"),
        optional_parameters=("protocol", "slippage", "deadline", "recipient"),
        validation_rules=(
            _AMOUNT_RULE,
            _token_rule("from_token"),
            _token_rule("to_token"),
            _PROTOCOL_RULE,
            _SLIPPAGE_RULE,
            _RECIPIENT_RULE,
        ),
        risk_level="low",
        gas_estimate=120000,
        examples=("Swap 1000 USDC to SEI", "Trade 500 USDT for ETH"),
    ),
    DefiIntent.ADD_LIQUIDITY: CommandTemplate(
        intent=DefiIntent.ADD_LIQUIDITY,
        action="addLiquidity",
        required_parameters=("amount", "token"),
        optional_parameters=("protocol", "slippage"),
        validation_rules=(_AMOUNT_RULE, _token_rule("token", validator=None), _PROTOCOL_RULE, _SLIPPAGE_RULE),
        risk_level="medium",
        gas_estimate=250000,
        examples=("Add 1000 USDC liquidity on DragonSwap",),
    ),
    DefiIntent.REMOVE_LIQUIDITY: CommandTemplate(
        intent=DefiIntent.REMOVE_LIQUIDITY,
        action="removeLiquidity",
        required_parameters=("amount", "token"),
        optional_parameters=("protocol", "slippage"),
        validation_rules=(_AMOUNT_RULE, _token_rule("token", validator=None), _PROTOCOL_RULE),
        risk_level="medium",
        gas_estimate=200000,
        examples=("Remove 500 USDC liquidity from Symphony",),
    ),
    DefiIntent.OPEN_POSITION: CommandTemplate(
        intent=DefiIntent.OPEN_POSITION,
        action="openPosition",
        required_parameters=("amount", "token"),
        optional_parameters=("protocol", "leverage", "slippage"),
        validation_rules=(_AMOUNT_RULE, _token_rule("token", validator=None), _PROTOCOL_RULE, _LEVERAGE_RULE),
        risk_level="high",
        gas_estimate=300000,
        examples=("Open a 5x long on ETH with 1000 USDC",),
    ),
    DefiIntent.CLOSE_POSITION: CommandTemplate(
        intent=DefiIntent.CLOSE_POSITION,
        action="closePosition",
        required_parameters=("token",),
        optional_parameters=("protocol", "amount"),
        validation_rules=(_token_rule("token", validator=None), _PROTOCOL_RULE),
        risk_level="medium",
        gas_estimate=200000,
        examples=("Close my ETH position",),
    ),
    DefiIntent.ARBITRAGE: CommandTemplate(
        intent=DefiIntent.ARBITRAGE,
        action="arbitrage",
        required_parameters=("amount", "token"),
        optional_parameters=("slippage",),
        validation_rules=(_AMOUNT_RULE, _token_rule("token", validator=None), _SLIPPAGE_RULE),
        risk_level="high",
        gas_estimate=400000,
        examples=("Arbitrage 5000 USDC between DragonSwap and Symphony",),
    ),
    DefiIntent.PORTFOLIO_STATUS: CommandTemplate(
        intent=DefiIntent.PORTFOLIO_STATUS,
        action="getPortfolioStatus",
        required_parameters=(),
        gas_estimate=0,
        examples=("Show my portfolio",),
    ),
    DefiIntent.SHOW_RATES: CommandTemplate(
        intent=DefiIntent.SHOW_RATES,
        action="getRates",
        required_parameters=(),
        optional_parameters=("protocol", "token"),
        validation_rules=(_PROTOCOL_RULE,),
        gas_estimate=0,
        examples=("What are the USDC lending rates?",),
    ),
}


def get_template(intent: DefiIntent) -> Optional[CommandTemplate]:
    return COMMAND_TEMPLATES.get(intent)

