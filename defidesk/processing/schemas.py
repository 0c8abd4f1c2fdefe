"""Strict Pydantic schemas for the command processing pipeline.

Every model is frozen: parameters are merged into new instances, never
mutated in place. ``DerivedParameters`` is written only by pricing/routing
estimation, never from user entities.
"""
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DefiIntent(str, Enum):
    LEND = "lend"
    BORROW = "borrow"
    REPAY = "repay"
    WITHDRAW = "withdraw"
    SWAP = "swap"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    OPEN_POSITION = "open_position"
    CLOSE_POSITION = "close_position"
    ARBITRAGE = "arbitrage"
    CROSS_PROTOCOL_ARBITRAGE = "cross_protocol_arbitrage"
    PORTFOLIO_STATUS = "portfolio_status"
    RISK_ASSESSMENT = "risk_assessment"
    YIELD_OPTIMIZATION = "yield_optimization"
    REBALANCE = "rebalance"
    SHOW_RATES = "show_rates"
    SHOW_POSITIONS = "show_positions"
    COMPARE_PROTOCOLS = "compare_protocols"
    MARKET_ANALYSIS = "market_analysis"
    HELP = "help"
    EXPLAIN = "explain"
    UNKNOWN = "unknown"


class EntityType(str, Enum):
    TOKEN = "token"
    AMOUNT = "amount"
    PROTOCOL = "protocol"
    LEVERAGE = "leverage"
    SLIPPAGE = "slippage"


class AmbiguityType(str, Enum):
    MISSING_PROTOCOL = "missing_protocol"
    MISSING_TOKEN = "missing_token"
    TOKEN_DIRECTION = "token_direction"  # swaps: from or to?
    MULTIPLE_AMOUNTS = "multiple_amounts"
    UNCLEAR_INTENT = "unclear_intent"
    PROTOCOL_CHOICE = "protocol_choice"
    PARAMETER_CONFLICT = "parameter_conflict"
    RISK_CONFIRMATION = "risk_confirmation"


class ValidationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationCode(str, Enum):
    REQUIRED_PARAMETER_MISSING = "REQUIRED_PARAMETER_MISSING"
    PARAMETER_INFERRED = "PARAMETER_INFERRED"
    INVALID_TYPE = "INVALID_TYPE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    HIGH_PERCENTAGE_OF_BALANCE = "HIGH_PERCENTAGE_OF_BALANCE"
    INSUFFICIENT_COLLATERAL = "INSUFFICIENT_COLLATERAL"
    HIGH_UTILIZATION = "HIGH_UTILIZATION"
    SAME_TOKEN_SWAP = "SAME_TOKEN_SWAP"
    HIGH_PRICE_IMPACT = "HIGH_PRICE_IMPACT"
    LOW_LIQUIDITY_TOKEN = "LOW_LIQUIDITY_TOKEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class CommandRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FinancialEntity(BaseModel):
    """A span extracted upstream from the user's text."""
    model_config = ConfigDict(frozen=True)

    type: EntityType
    value: str
    normalized: str
    confidence: float = Field(1.0, ge=0.0, le=1.0)


# === COMMAND PARAMETERS ===

class PrimaryParameters(BaseModel):
    """User-facing fields; everything optional until a template requires it."""
    model_config = ConfigDict(frozen=True)

    amount: Optional[str] = None
    token: Optional[str] = None
    from_token: Optional[str] = None
    to_token: Optional[str] = None
    protocol: Optional[str] = None
    leverage: Optional[float] = None
    slippage: Optional[float] = None
    deadline: Optional[int] = None


class OptionalParameters(BaseModel):
    """Execution tuning fields."""
    model_config = ConfigDict(frozen=True)

    max_slippage: Optional[float] = None
    min_output: Optional[str] = None
    gas_limit: Optional[int] = None
    gas_price: Optional[str] = None
    recipient: Optional[str] = None
    referrer: Optional[str] = None
    route: Optional[List[str]] = None
    risk_acknowledged: Optional[bool] = None


class Fee(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["protocol", "gas", "network"]
    amount: str
    token: str
    percentage: float = 0.0


class RouteStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    protocol: str
    token_in: str
    token_out: str
    pool: Optional[str] = None
    amount_in: Optional[str] = None
    amount_out: Optional[str] = None


class DerivedParameters(BaseModel):
    """Values computed by pricing/routing estimation."""
    model_config = ConfigDict(frozen=True)

    output_amount: Optional[str] = None
    price_impact: Optional[float] = None
    fees: Optional[List[Fee]] = None
    route: Optional[List[RouteStep]] = None
    health_factor_after: Optional[float] = None
    liquidation_price: Optional[str] = None
    total_cost: Optional[str] = None


_SECTIONS = ("primary", "optional", "derived")


class CommandParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: PrimaryParameters = Field(default_factory=PrimaryParameters)
    optional: OptionalParameters = Field(default_factory=OptionalParameters)
    derived: DerivedParameters = Field(default_factory=DerivedParameters)

    def get_value(self, field: str) -> Any:
        """Look a field up in primary, then optional, then derived."""
        for section in _SECTIONS:
            part = getattr(self, section)
            if field in type(part).model_fields:
                value = getattr(part, field)
                if value is not None:
                    return value
        return None

    def merged_with(self, overrides: "CommandParameters") -> "CommandParameters":
        """Return new parameters where fields explicitly set in ``overrides`` win.

        Each section is merged independently; fields the override never set
        keep their original values.
        """
        merged = {}
        for section in _SECTIONS:
            base = getattr(self, section).model_dump()
            base.update(getattr(overrides, section).model_dump(exclude_unset=True))
            merged[section] = base
        return CommandParameters.model_validate(merged)

    def with_primary(self, **updates: Any) -> "CommandParameters":
        return self.merged_with(CommandParameters(primary=PrimaryParameters(**updates)))


# === VALIDATION / DISAMBIGUATION ===

class CommandValidationError(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    code: ValidationCode
    message: str
    severity: ValidationSeverity
    suggestion: Optional[str] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == ValidationSeverity.ERROR


class DisambiguationOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    description: str
    parameters: CommandParameters = Field(default_factory=CommandParameters)
    confidence: float = Field(..., ge=0.0, le=1.0)
    intent: Optional[DefiIntent] = None


class DisambiguationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    options: List[DisambiguationOption] = Field(..., min_length=1)
    default_option: Optional[str] = None
    timeout: int = 30000  # advisory deadline hint in ms; nothing here schedules it
    ambiguity_type: Optional[AmbiguityType] = None

    def find(self, option_id: str) -> Optional[DisambiguationOption]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


# === CONTEXT ===

class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    protocol: str
    type: str  # lending, borrowing, liquidity, trading
    value: float
    health_factor: Optional[float] = None


class ParsingContext(BaseModel):
    """Account state resolved by the caller before the pipeline runs."""
    model_config = ConfigDict(frozen=True)

    user_address: Optional[str] = None
    balances: Dict[str, str] = Field(default_factory=dict)
    allowances: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    positions: List[Position] = Field(default_factory=list)
    market_data: Dict[str, Any] = Field(default_factory=dict)
    gas_price: Optional[str] = None
    block_number: Optional[int] = None

    @field_validator("balances", mode="before")
    @classmethod
    def _stringify_balances(cls, v):
        if isinstance(v, dict):
            return {str(k).upper(): str(val) for k, val in v.items()}
        return v

    @field_validator("allowances", mode="before")
    @classmethod
    def _upper_allowance_tokens(cls, v):
        if isinstance(v, dict):
            return {str(k).upper(): val for k, val in v.items()}
        return v

    def balance_of(self, token: Optional[str]) -> Optional[float]:
        if not token:
            return None
        raw = self.balances.get(token.upper())
        if raw in (None, ""):
            return None
        try:
            return float(raw)
        except ValueError:
            return None


# === COMMAND OUTPUT ===

class Approval(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    spender: str
    amount: str
    required: bool = True
    gas_estimate: int = 50000


class CommandMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int
    source: str = "nlp"
    confidence: float = 1.0
    processing_time: int = 0
    required_approvals: List[Approval] = Field(default_factory=list)
    protocols_involved: List[str] = Field(default_factory=list)
    estimated_duration: int = 60


class ExecutableCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    intent: DefiIntent
    action: str
    parameters: CommandParameters
    metadata: CommandMetadata
    validation_status: Literal["valid", "warning", "error"] = "valid"
    confirmation_required: bool = False
    estimated_gas: Optional[int] = None
    risk_level: CommandRiskLevel = CommandRiskLevel.LOW
    # Sub-commands of a batch, in execution order; empty for single commands
    batch: List["ExecutableCommand"] = Field(default_factory=list)


class CommandSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["optimization", "warning", "alternative"]
    title: str
    description: str
    action: str
    expected_benefit: Optional[str] = None
    risk_level: Optional[CommandRiskLevel] = None


class CommandProcessingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: DefiIntent
    parameters: CommandParameters
    command: Optional[ExecutableCommand] = None
    validation_errors: List[CommandValidationError] = Field(default_factory=list)
    warnings: List[CommandValidationError] = Field(default_factory=list)
    suggestions: List[CommandSuggestion] = Field(default_factory=list)
    hints: List[str] = Field(default_factory=list)
    requires_disambiguation: bool = False
    disambiguation_options: Optional[DisambiguationOptions] = None
    estimated_gas: Optional[int] = None
    risk_level: Optional[CommandRiskLevel] = None
