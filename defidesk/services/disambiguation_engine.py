"""Disambiguation engine - detects ambiguous commands and builds clarification options.

Flow: detect ambiguities -> pick the highest-priority strategy -> generate options
-> merge the user's chosen option back into the command parameters.

Only one question is asked per turn. Resolving it may surface the next
ambiguity on the following validation pass.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from defidesk.core.error_codes import CommandProcessingError, ErrorCode
from defidesk.core.logging import get_logger
from defidesk.core.result import Result
from defidesk.processing.schemas import (
    AmbiguityType,
    CommandParameters,
    DefiIntent,
    DisambiguationOption,
    DisambiguationOptions,
    EntityType,
    FinancialEntity,
    OptionalParameters,
    ParsingContext,
    PrimaryParameters,
)
from defidesk.services import protocol_registry
from defidesk.services.amount_parser import plain_number

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 30000
UNCLEAR_INTENT_TIMEOUT_MS = 45000
RISK_CONFIRMATION_TIMEOUT_MS = 60000

RISKY_LEVERAGE = 5
RISKY_AMOUNT = 50000
HIGH_RISK_INTENTS = frozenset({
    DefiIntent.OPEN_POSITION,
    DefiIntent.ARBITRAGE,
    DefiIntent.CROSS_PROTOCOL_ARBITRAGE,
})

PROCEED_OPTION_ID = "proceed_with_risk"
CANCEL_OPTION_ID = "cancel_risky_operation"
REDUCE_RISK_OPTION_ID = "reduce_risk"

COMMON_INTENTS: Tuple[Tuple[DefiIntent, str, str], ...] = (
    (DefiIntent.LEND, "Lend/Supply tokens", "Earn yield by lending your tokens"),
    (DefiIntent.BORROW, "Borrow tokens", "Borrow tokens against your collateral"),
    (DefiIntent.SWAP, "Swap tokens", "Exchange one token for another"),
    (DefiIntent.PORTFOLIO_STATUS, "Check portfolio", "View your current positions and balances"),
    (DefiIntent.SHOW_RATES, "Check rates", "View current lending and borrowing rates"),
)

# Short comparison blurbs for protocol-choice questions
PROTOCOL_COMPARISON = {
    DefiIntent.LEND: {"Silo": "Highest safety, competitive rates", "Takara": "Best auto-compounding features"},
    DefiIntent.SWAP: {"DragonSwap": "Lowest fees for small trades", "Symphony": "Best rates for large trades"},
}


@dataclass(frozen=True)
class DisambiguationContext:
    original_input: str
    intent: DefiIntent
    entities: Tuple[FinancialEntity, ...]
    ambiguities: Tuple[AmbiguityType, ...]
    user_context: Optional[ParsingContext] = None


@dataclass(frozen=True)
class DisambiguationStrategy:
    type: AmbiguityType
    priority: int
    resolver: Callable[[DisambiguationContext], DisambiguationOptions]


def _entities_of(entities: Sequence[FinancialEntity], entity_type: EntityType) -> List[FinancialEntity]:
    return [e for e in entities if e.type == entity_type]


def _as_float(raw: Optional[str]) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _distinct_numeric(entities: Sequence[FinancialEntity], entity_type: EntityType) -> List[Tuple[FinancialEntity, float]]:
    """First entity for each distinct numeric value of ``entity_type``; unparseable values are skipped."""
    seen: Dict[float, FinancialEntity] = {}
    for entity in _entities_of(entities, entity_type):
        value = _as_float(entity.normalized)
        if value is not None and value not in seen:
            seen[value] = entity
    return [(entity, value) for value, entity in seen.items()]


def entities_from_parameters(parameters: CommandParameters) -> List[FinancialEntity]:
    """Rebuild the entity list implied by already-extracted parameters."""
    primary = parameters.primary
    entities: List[FinancialEntity] = []

    def add(entity_type: EntityType, value) -> None:
        if value is None or value == "":
            return
        text = plain_number(value) if isinstance(value, float) else str(value)
        entities.append(FinancialEntity(type=entity_type, value=text, normalized=text))

    add(EntityType.AMOUNT, primary.amount)
    add(EntityType.TOKEN, primary.token)
    add(EntityType.TOKEN, primary.from_token)
    add(EntityType.TOKEN, primary.to_token)
    add(EntityType.PROTOCOL, primary.protocol)
    add(EntityType.LEVERAGE, primary.leverage)
    add(EntityType.SLIPPAGE, primary.slippage)
    return entities


class DisambiguationEngine:
    def __init__(self):
        # Highest priority first; evaluated in this order, first detected type wins
        self._strategies: Tuple[DisambiguationStrategy, ...] = (
            DisambiguationStrategy(AmbiguityType.UNCLEAR_INTENT, 10, self._resolve_unclear_intent),
            DisambiguationStrategy(AmbiguityType.TOKEN_DIRECTION, 9, self._resolve_token_direction),
            DisambiguationStrategy(AmbiguityType.MISSING_PROTOCOL, 8, self._resolve_missing_protocol),
            DisambiguationStrategy(AmbiguityType.MULTIPLE_AMOUNTS, 7, self._resolve_multiple_amounts),
            DisambiguationStrategy(AmbiguityType.PROTOCOL_CHOICE, 6, self._resolve_protocol_choice),
            DisambiguationStrategy(AmbiguityType.RISK_CONFIRMATION, 5, self._resolve_risk_confirmation),
            DisambiguationStrategy(AmbiguityType.PARAMETER_CONFLICT, 4, self._resolve_parameter_conflict),
        )

    @property
    def strategies(self) -> Tuple[DisambiguationStrategy, ...]:
        return self._strategies

    # === DETECTION ===

    def detect_ambiguities(
        self,
        intent: DefiIntent,
        entities: Sequence[FinancialEntity],
        original_input: str,
        context: Optional[ParsingContext] = None,
        risk_acknowledged: bool = False,
    ) -> List[AmbiguityType]:
        """Every ambiguity present in the command; each check runs independently."""
        ambiguities: List[AmbiguityType] = []
        has_protocol = bool(_entities_of(entities, EntityType.PROTOCOL))

        if (
            protocol_registry.requires_protocol(intent)
            and not has_protocol
            and len(protocol_registry.available_protocols(intent)) > 1
        ):
            ambiguities.append(AmbiguityType.MISSING_PROTOCOL)

        if intent == DefiIntent.SWAP and self._has_token_direction_ambiguity(entities):
            ambiguities.append(AmbiguityType.TOKEN_DIRECTION)

        if len(_entities_of(entities, EntityType.AMOUNT)) > 1:
            ambiguities.append(AmbiguityType.MULTIPLE_AMOUNTS)

        if intent == DefiIntent.UNKNOWN:
            ambiguities.append(AmbiguityType.UNCLEAR_INTENT)

        positions = context.positions if context else None
        if protocol_registry.has_protocol_choice(intent, has_protocol, positions):
            ambiguities.append(AmbiguityType.PROTOCOL_CHOICE)

        if self._has_parameter_conflicts(entities):
            ambiguities.append(AmbiguityType.PARAMETER_CONFLICT)

        if not risk_acknowledged and self._needs_risk_confirmation(intent, entities):
            ambiguities.append(AmbiguityType.RISK_CONFIRMATION)

        if ambiguities:
            logger.debug("Ambiguities for %r: %s", original_input, [a.value for a in ambiguities])
        return ambiguities

    @staticmethod
    def _has_token_direction_ambiguity(entities: Sequence[FinancialEntity]) -> bool:
        return (
            len(_entities_of(entities, EntityType.TOKEN)) == 1
            and len(_entities_of(entities, EntityType.AMOUNT)) == 1
        )

    @staticmethod
    def _has_parameter_conflicts(entities: Sequence[FinancialEntity]) -> bool:
        return (
            len(_distinct_numeric(entities, EntityType.LEVERAGE)) > 1
            or len(_distinct_numeric(entities, EntityType.SLIPPAGE)) > 1
        )

    @staticmethod
    def _needs_risk_confirmation(intent: DefiIntent, entities: Sequence[FinancialEntity]) -> bool:
        leverage = _entities_of(entities, EntityType.LEVERAGE)
        if leverage:
            value = _as_float(leverage[0].normalized)
            if value is not None and value > RISKY_LEVERAGE:
                return True

        amounts = _entities_of(entities, EntityType.AMOUNT)
        if amounts:
            value = _as_float(amounts[0].normalized)
            if value is not None and value > RISKY_AMOUNT:
                return True

        return intent in HIGH_RISK_INTENTS

    # === OPTION GENERATION ===

    def generate_disambiguation_options(self, context: DisambiguationContext) -> Result[DisambiguationOptions]:
        """Build the single clarification question for the highest-priority ambiguity."""
        try:
            strategy = next((s for s in self._strategies if s.type in context.ambiguities), None)
            if strategy is None:
                return Result.fail(CommandProcessingError(
                    ErrorCode.NO_STRATEGIES,
                    "No disambiguation strategies available",
                    details={"ambiguities": [a.value for a in context.ambiguities]},
                ))

            logger.debug("Disambiguating %s (priority %d)", strategy.type.value, strategy.priority)
            return Result.ok(strategy.resolver(context))

        except Exception as e:
            logger.exception("Failed to generate disambiguation options")
            return Result.fail(CommandProcessingError(
                ErrorCode.DISAMBIGUATION_ERROR,
                "Failed to generate disambiguation options",
                details={"original_error": e},
            ))

    def _resolve_unclear_intent(self, context: DisambiguationContext) -> DisambiguationOptions:
        options = [
            DisambiguationOption(
                id=f"intent_{intent.value}",
                label=label,
                description=description,
                confidence=0.9,
                intent=intent,
            )
            for intent, label, description in COMMON_INTENTS
        ]
        return DisambiguationOptions(
            question="What would you like to do?",
            options=options,
            default_option=options[0].id,
            timeout=UNCLEAR_INTENT_TIMEOUT_MS,
            ambiguity_type=AmbiguityType.UNCLEAR_INTENT,
        )

    def _resolve_token_direction(self, context: DisambiguationContext) -> DisambiguationOptions:
        tokens = _entities_of(context.entities, EntityType.TOKEN)
        amounts = _entities_of(context.entities, EntityType.AMOUNT)
        if not tokens or not amounts:
            raise ValueError("Missing token or amount for direction disambiguation")

        token = tokens[0].normalized
        amount = amounts[0].normalized
        options = [
            DisambiguationOption(
                id="from_token",
                label=f"Swap FROM {token}",
                description=f"Sell {amount} {token} for another token",
                parameters=CommandParameters(primary=PrimaryParameters(from_token=token, amount=amount, token=None)),
                confidence=0.8,
            ),
            DisambiguationOption(
                id="to_token",
                label=f"Swap TO {token}",
                description=f"Buy {token} with another token",
                parameters=CommandParameters(primary=PrimaryParameters(to_token=token, token=None)),
                confidence=0.8,
            ),
        ]
        return DisambiguationOptions(
            question=f"Do you want to swap FROM {token} or TO {token}?",
            options=options,
            default_option=options[0].id,
            timeout=DEFAULT_TIMEOUT_MS,
            ambiguity_type=AmbiguityType.TOKEN_DIRECTION,
        )

    def _resolve_missing_protocol(self, context: DisambiguationContext) -> DisambiguationOptions:
        options = [
            DisambiguationOption(
                id=f"protocol_{name.lower()}",
                label=name,
                description=protocol_registry.protocol_description(name, context.intent),
                parameters=CommandParameters(primary=PrimaryParameters(protocol=name.lower())),
                confidence=self._protocol_confidence(name, context),
            )
            for name in protocol_registry.available_protocols(context.intent)
        ]
        return DisambiguationOptions(
            question="Which protocol would you like to use?",
            options=options,
            default_option=options[0].id,
            timeout=DEFAULT_TIMEOUT_MS,
            ambiguity_type=AmbiguityType.MISSING_PROTOCOL,
        )

    def _resolve_multiple_amounts(self, context: DisambiguationContext) -> DisambiguationOptions:
        options = [
            DisambiguationOption(
                id=f"amount_{i}",
                label=entity.value,
                description=f"Use {entity.normalized} as the amount",
                parameters=CommandParameters(primary=PrimaryParameters(amount=entity.normalized)),
                confidence=entity.confidence,
            )
            for i, entity in enumerate(_entities_of(context.entities, EntityType.AMOUNT))
        ]
        return DisambiguationOptions(
            question="Which amount do you want to use?",
            options=options,
            default_option=options[0].id,
            timeout=DEFAULT_TIMEOUT_MS,
            ambiguity_type=AmbiguityType.MULTIPLE_AMOUNTS,
        )

    def _resolve_protocol_choice(self, context: DisambiguationContext) -> DisambiguationOptions:
        blurbs = PROTOCOL_COMPARISON.get(context.intent, {})
        options = [
            DisambiguationOption(
                id=f"choice_{name.lower()}",
                label=name,
                description=blurbs.get(name, f"Use {name} protocol"),
                parameters=CommandParameters(primary=PrimaryParameters(protocol=name.lower())),
                confidence=0.85,
            )
            for name in protocol_registry.available_protocols(context.intent)
        ]
        return DisambiguationOptions(
            question="Which protocol offers the best value for your needs?",
            options=options,
            default_option=options[0].id,
            timeout=DEFAULT_TIMEOUT_MS,
            ambiguity_type=AmbiguityType.PROTOCOL_CHOICE,
        )

    def _resolve_risk_confirmation(self, context: DisambiguationContext) -> DisambiguationOptions:
        acknowledged = OptionalParameters(risk_acknowledged=True)
        options = [
            DisambiguationOption(
                id=PROCEED_OPTION_ID,
                label="Yes, proceed",
                description="I understand the risks and want to proceed",
                parameters=CommandParameters(optional=acknowledged),
                confidence=0.9,
            ),
            DisambiguationOption(
                id=CANCEL_OPTION_ID,
                label="No, cancel",
                description="Cancel this operation for safety",
                confidence=0.9,
            ),
            DisambiguationOption(
                id=REDUCE_RISK_OPTION_ID,
                label="Reduce risk",
                description="Modify the operation to reduce risk",
                parameters=CommandParameters(primary=self._reduced_risk_primary(context), optional=acknowledged),
                confidence=0.8,
            ),
        ]
        return DisambiguationOptions(
            question="This operation carries significant risk. Do you want to proceed?",
            options=options,
            default_option=CANCEL_OPTION_ID,
            timeout=RISK_CONFIRMATION_TIMEOUT_MS,
            ambiguity_type=AmbiguityType.RISK_CONFIRMATION,
        )

    @staticmethod
    def _reduced_risk_primary(context: DisambiguationContext) -> PrimaryParameters:
        """Half the amount, leverage capped at 2x."""
        updates = {}
        amounts = _entities_of(context.entities, EntityType.AMOUNT)
        amount = _as_float(amounts[0].normalized) if amounts else None
        if amount:
            updates["amount"] = plain_number(amount / 2)

        leverage = _entities_of(context.entities, EntityType.LEVERAGE)
        value = _as_float(leverage[0].normalized) if leverage else None
        if value and value > 2:
            updates["leverage"] = 2.0
        return PrimaryParameters(**updates)

    def _resolve_parameter_conflict(self, context: DisambiguationContext) -> DisambiguationOptions:
        options: List[DisambiguationOption] = []
        for entity_type, label in ((EntityType.LEVERAGE, "leverage"), (EntityType.SLIPPAGE, "slippage")):
            conflicting = _distinct_numeric(context.entities, entity_type)
            if len(conflicting) < 2:
                continue
            for i, (entity, value) in enumerate(conflicting):
                options.append(DisambiguationOption(
                    id=f"{label}_{i}",
                    label=f"{entity.value} {label}",
                    description=f"Use {entity.normalized} as the {label}",
                    parameters=CommandParameters(primary=PrimaryParameters(**{label: value})),
                    confidence=entity.confidence,
                ))
        return DisambiguationOptions(
            question="Which value should I use?",
            options=options,
            default_option=options[0].id if options else None,
            timeout=DEFAULT_TIMEOUT_MS,
            ambiguity_type=AmbiguityType.PARAMETER_CONFLICT,
        )

    @staticmethod
    def _protocol_confidence(protocol: str, context: DisambiguationContext) -> float:
        confidence = 0.8
        positions = context.user_context.positions if context.user_context else []
        if any(p.protocol.lower() == protocol.lower() for p in positions):
            confidence += 0.1
        return min(confidence, 1.0)

    # === RESOLUTION ===

    def resolve_disambiguation(
        self,
        original_parameters: CommandParameters,
        selected_option_id: str,
        options: DisambiguationOptions,
    ) -> Result[CommandParameters]:
        """Merge the chosen option into the parameters; only fields the option sets override."""
        try:
            selected = options.find(selected_option_id)
            if selected is None:
                return Result.fail(CommandProcessingError(
                    ErrorCode.INVALID_OPTION,
                    "Invalid disambiguation option selected",
                    details={
                        "selected_option_id": selected_option_id,
                        "available_options": [o.id for o in options.options],
                    },
                ))
            return Result.ok(original_parameters.merged_with(selected.parameters))

        except Exception as e:
            logger.exception("Failed to resolve disambiguation")
            return Result.fail(CommandProcessingError(
                ErrorCode.RESOLUTION_ERROR,
                "Failed to resolve disambiguation",
                details={"original_error": e, "selected_option_id": selected_option_id},
            ))

    def generate_smart_suggestions(self, context: DisambiguationContext) -> List[str]:
        suggestions: List[str] = []

        positions = context.user_context.positions if context.user_context else []
        favourite = protocol_registry.most_used_protocol(positions)
        if favourite:
            available = {p.lower(): p for p in protocol_registry.available_protocols(context.intent)}
            if favourite.lower() in available:
                suggestions.append(f"You frequently use {available[favourite.lower()]}")

        if context.intent == DefiIntent.LEND:
            suggestions.append("Silo currently offers the highest USDC lending rates")
        if context.intent == DefiIntent.SWAP:
            suggestions.append("Symphony typically has better rates for large swaps")

        if AmbiguityType.RISK_CONFIRMATION in context.ambiguities:
            suggestions.append("Consider starting with a smaller amount to test the strategy")

        return suggestions
