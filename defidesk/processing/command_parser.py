"""Command parser - turns (intent, entities) into an executable command or a clarification.

Pipeline per call:
    template lookup -> entity normalization -> parameter extraction
    -> derived estimates -> validation -> build -> metadata + suggestions

A command is handed back only when validation has no blocking errors and no
clarification is pending. Otherwise the result carries the errors or the
single disambiguation question, and ``command`` is None.
"""
import re
import time
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from defidesk.core.error_codes import CommandProcessingError, ErrorCode, ProtocolResolutionError
from defidesk.core.logging import get_logger
from defidesk.core.result import Result
from defidesk.core.time import elapsed_ms, now_epoch_seconds, now_ms
from defidesk.processing.command_builder import CommandBuilder
from defidesk.processing.schemas import (
    Approval,
    CommandMetadata,
    CommandParameters,
    CommandProcessingResult,
    CommandRiskLevel,
    CommandSuggestion,
    DefiIntent,
    DerivedParameters,
    DisambiguationOptions,
    EntityType,
    ExecutableCommand,
    Fee,
    FinancialEntity,
    OptionalParameters,
    ParsingContext,
    PrimaryParameters,
    ValidationSeverity,
)
from defidesk.processing.templates import COMMAND_TEMPLATES, CommandTemplate, get_template
from defidesk.services import protocol_registry
from defidesk.services.amount_parser import AmountContext, AmountParser, plain_number
from defidesk.services.asset_resolver import AssetResolver
from defidesk.services.disambiguation_engine import (
    CANCEL_OPTION_ID,
    DisambiguationContext,
    DisambiguationEngine,
)
from defidesk.services.parameter_validator import ParameterValidator
from defidesk.services.risk_profiler import RiskAssessmentInput, RiskProfiler

logger = get_logger(__name__)

# Placeholder market figures until a price feed is wired in
REFERENCE_PRICE = 1800
BASE_HEALTH_FACTOR = 2.5
PROTOCOL_FEE_PERCENT = 0.3
GAS_PRICE_GWEI = 1e-9
GAS_TOKEN = "SEI"

ARBITRAGE_INTENTS = frozenset({DefiIntent.ARBITRAGE, DefiIntent.CROSS_PROTOCOL_ARBITRAGE})

INFERRED_ENTITY_TYPES = {"protocol": EntityType.PROTOCOL, "token": EntityType.TOKEN}

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


class CommandParserConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_slippage: float = 0.5
    deadline_seconds: int = 1800


def _leading_number(text: str) -> Optional[float]:
    """'5x' -> 5.0, '0.5%' -> 0.5."""
    match = _NUMBER_RE.search(text or "")
    return float(match.group()) if match else None


def _to_float(raw: Optional[str]) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


class CommandParser:
    def __init__(
        self,
        config: Optional[CommandParserConfig] = None,
        amount_parser: Optional[AmountParser] = None,
        asset_resolver: Optional[AssetResolver] = None,
        validator: Optional[ParameterValidator] = None,
        disambiguation_engine: Optional[DisambiguationEngine] = None,
        builder: Optional[CommandBuilder] = None,
        risk_profiler: Optional[RiskProfiler] = None,
    ):
        self.config = config or CommandParserConfig()
        self.amount_parser = amount_parser or AmountParser()
        self.asset_resolver = asset_resolver or AssetResolver()
        self.disambiguation_engine = disambiguation_engine or DisambiguationEngine()
        self.validator = validator or ParameterValidator(
            asset_resolver=self.asset_resolver,
            disambiguation_engine=self.disambiguation_engine,
        )
        self.builder = builder or CommandBuilder()
        self.risk_profiler = risk_profiler or RiskProfiler()

    # === PUBLIC API ===

    def parse_command(
        self,
        intent: DefiIntent,
        entities: Sequence[FinancialEntity],
        original_input: str,
        context: Optional[ParsingContext] = None,
        confidence: float = 1.0,
    ) -> Result[CommandProcessingResult]:
        """Process a classified command.

        Args:
            intent: Intent classified upstream
            entities: Entities extracted upstream
            original_input: The user's text, used for logging and clarification context
            context: Account state (balances, positions, allowances)
            confidence: Upstream classification confidence, copied to metadata

        Returns:
            Result with CommandProcessingResult; failures carry CommandProcessingError
        """
        start = time.perf_counter()
        try:
            normalized = self.normalize_entities(entities, context)

            if intent == DefiIntent.UNKNOWN:
                return self._clarify_intent(normalized, original_input, context)

            template = get_template(intent)
            if template is None:
                return Result.fail(CommandProcessingError(
                    ErrorCode.TEMPLATE_NOT_FOUND,
                    f"No command template found for intent: {intent.value}",
                    details={"intent": intent.value},
                ))

            extracted = self.extract_parameters(intent, normalized, template, context)
            if not extracted.success:
                return extracted

            return self._process(
                intent, extracted.value, template, context,
                entities=normalized, original_input=original_input, confidence=confidence, start=start,
            )

        except Exception as e:
            logger.exception("Unexpected error during command parsing", extra={"intent": intent.value, "stage": "parse"})
            return Result.fail(CommandProcessingError(
                ErrorCode.PARSING_ERROR,
                "Unexpected error during command parsing",
                details={"original_error": e, "input": original_input},
            ))

    def resolve_disambiguation(
        self,
        intent: DefiIntent,
        parameters: CommandParameters,
        selected_option_id: str,
        options: DisambiguationOptions,
        context: Optional[ParsingContext] = None,
        confidence: float = 1.0,
    ) -> Result[CommandProcessingResult]:
        """Apply the user's choice, then re-validate and rebuild (new command id)."""
        start = time.perf_counter()
        try:
            if selected_option_id == CANCEL_OPTION_ID and options.find(selected_option_id):
                logger.info("Operation cancelled by user", extra={"intent": intent.value, "event": "cancelled"})
                return Result.fail(CommandProcessingError(
                    ErrorCode.OPERATION_CANCELLED,
                    "Operation cancelled",
                    details={"selected_option_id": selected_option_id},
                ))

            merged = self.disambiguation_engine.resolve_disambiguation(parameters, selected_option_id, options)
            if not merged.success:
                return merged

            chosen = options.find(selected_option_id)
            new_intent = chosen.intent if chosen and chosen.intent else intent
            template = get_template(new_intent)
            if template is None:
                return Result.fail(CommandProcessingError(
                    ErrorCode.TEMPLATE_NOT_FOUND,
                    f"No command template found for intent: {new_intent.value}",
                    details={"intent": new_intent.value},
                ))

            resolved = merged.value
            resolved = resolved.model_copy(update={
                "derived": self.derive_parameters(new_intent, resolved.primary, resolved.optional, template, context),
            })
            return self._process(new_intent, resolved, template, context, confidence=confidence, start=start)

        except Exception as e:
            logger.exception("Failed to resolve disambiguation", extra={"intent": intent.value, "stage": "resolve"})
            return Result.fail(CommandProcessingError(
                ErrorCode.RESOLUTION_ERROR,
                "Failed to resolve disambiguation",
                details={"original_error": e, "selected_option_id": selected_option_id},
            ))

    def get_supported_intents(self) -> List[DefiIntent]:
        return list(COMMAND_TEMPLATES)

    def get_template(self, intent: DefiIntent) -> Optional[CommandTemplate]:
        return get_template(intent)

    def validate_command_syntax(self, command: ExecutableCommand) -> bool:
        """True when every required parameter of the command's template is present."""
        template = get_template(command.intent)
        if template is None:
            return False
        return all(getattr(command.parameters.primary, name, None) for name in template.required_parameters)

    # === ENTITIES / PARAMETERS ===

    def normalize_entities(
        self,
        entities: Sequence[FinancialEntity],
        context: Optional[ParsingContext] = None,
    ) -> List[FinancialEntity]:
        """Canonicalize tokens, protocols and amounts.

        Values that cannot be normalized are kept as typed so validation can
        report them precisely.
        """
        tokens = [e for e in entities if e.type == EntityType.TOKEN]
        normalized_tokens = {id(e): self._normalize_token(e) for e in tokens}
        first_token = normalized_tokens[id(tokens[0])] if tokens else None
        amount_context = self._amount_context(first_token, context)

        result: List[FinancialEntity] = []
        for entity in entities:
            if entity.type == EntityType.TOKEN:
                value = normalized_tokens[id(entity)]
            elif entity.type == EntityType.AMOUNT:
                value = self._normalize_amount(entity, amount_context)
            elif entity.type == EntityType.PROTOCOL:
                value = self._normalize_protocol(entity)
            else:
                number = _leading_number(entity.normalized or entity.value)
                value = plain_number(number) if number is not None else entity.normalized
            result.append(entity.model_copy(update={"normalized": value}))
        return result

    def _normalize_token(self, entity: FinancialEntity) -> str:
        resolved = self.asset_resolver.resolve_asset(entity.normalized or entity.value)
        if resolved.success:
            return resolved.value.asset.symbol
        return (entity.normalized or entity.value).upper()

    def _normalize_amount(self, entity: FinancialEntity, amount_context: Optional[AmountContext]) -> str:
        parsed = self.amount_parser.parse_amount(entity.value or entity.normalized, amount_context)
        if parsed.success:
            return parsed.value.normalized
        logger.warning("Amount %r not parseable: %s", entity.value, parsed.code, extra={"stage": "normalize"})
        return entity.normalized

    @staticmethod
    def _normalize_protocol(entity: FinancialEntity) -> str:
        try:
            return protocol_registry.resolve_protocol(entity.normalized or entity.value)
        except ProtocolResolutionError:
            return (entity.normalized or entity.value).lower()

    @staticmethod
    def _amount_context(token: Optional[str], context: Optional[ParsingContext]) -> Optional[AmountContext]:
        if context is None:
            return None
        portfolio = sum(p.value for p in context.positions) if context.positions else None
        return AmountContext(user_balance=context.balance_of(token), portfolio_value=portfolio, currency=token)

    def extract_parameters(
        self,
        intent: DefiIntent,
        entities: Sequence[FinancialEntity],
        template: Optional[CommandTemplate],
        context: Optional[ParsingContext] = None,
    ) -> Result[CommandParameters]:
        try:
            primary = self._primary_from_entities(entities)
            optional = OptionalParameters(
                max_slippage=primary.slippage if primary.slippage is not None else self.config.default_slippage,
                gas_price=context.gas_price if context else None,
            )
            derived = self.derive_parameters(intent, primary, optional, template, context)
            return Result.ok(CommandParameters(primary=primary, optional=optional, derived=derived))

        except Exception as e:
            logger.exception("Failed to extract parameters", extra={"intent": intent.value, "stage": "extract"})
            return Result.fail(CommandProcessingError(
                ErrorCode.PARAMETER_EXTRACTION_ERROR,
                "Failed to extract parameters",
                details={"original_error": e},
            ))

    def _primary_from_entities(self, entities: Sequence[FinancialEntity]) -> PrimaryParameters:
        def first(entity_type: EntityType) -> Optional[FinancialEntity]:
            return next((e for e in entities if e.type == entity_type), None)

        fields: Dict[str, object] = {"deadline": now_epoch_seconds() + self.config.deadline_seconds}

        amount = first(EntityType.AMOUNT)
        if amount:
            fields["amount"] = amount.normalized

        tokens = [e.normalized for e in entities if e.type == EntityType.TOKEN]
        if len(tokens) == 1:
            fields["token"] = tokens[0]
        elif len(tokens) >= 2:
            # First token is what you give, second what you get
            fields["from_token"], fields["to_token"] = tokens[0], tokens[1]

        protocol = first(EntityType.PROTOCOL)
        if protocol:
            fields["protocol"] = protocol.normalized

        for entity_type, name in ((EntityType.LEVERAGE, "leverage"), (EntityType.SLIPPAGE, "slippage")):
            entity = first(entity_type)
            value = _to_float(entity.normalized) if entity else None
            if value is not None:
                fields[name] = value

        return PrimaryParameters(**fields)

    def derive_parameters(
        self,
        intent: DefiIntent,
        primary: PrimaryParameters,
        optional: OptionalParameters,
        template: Optional[CommandTemplate],
        context: Optional[ParsingContext] = None,
    ) -> DerivedParameters:
        """Estimate outputs, fees and position health with placeholder market figures."""
        derived: Dict[str, object] = {}
        amount = _to_float(primary.amount)

        if amount is not None and primary.from_token and primary.to_token:
            slippage = optional.max_slippage if optional.max_slippage is not None else self.config.default_slippage
            derived["output_amount"] = plain_number(amount * (1 - slippage / 100))

        if amount is not None and (primary.token or primary.from_token):
            derived["price_impact"] = _price_impact(amount)

        fees: List[Fee] = []
        gas = template.gas_estimate if template else 0
        if gas:
            fees.append(Fee(
                type="protocol",
                amount=str(PROTOCOL_FEE_PERCENT),
                token=primary.token or primary.from_token or "USDC",
                percentage=PROTOCOL_FEE_PERCENT,
            ))
            fees.append(Fee(type="gas", amount=plain_number(gas * GAS_PRICE_GWEI * REFERENCE_PRICE), token=GAS_TOKEN))
            derived["fees"] = fees

        if intent == DefiIntent.BORROW and context is not None:
            derived["health_factor_after"] = max(1.0, BASE_HEALTH_FACTOR - (amount or 0) / 10000)

        if primary.leverage and primary.leverage > 0 and (primary.token or primary.from_token):
            derived["liquidation_price"] = plain_number(REFERENCE_PRICE * (1 - 1 / primary.leverage))

        if amount is not None:
            derived["total_cost"] = plain_number(amount + sum(float(f.amount) for f in fees))

        return DerivedParameters(**derived)

    # === PROCESSING ===

    def _process(
        self,
        intent: DefiIntent,
        parameters: CommandParameters,
        template: CommandTemplate,
        context: Optional[ParsingContext],
        entities: Optional[Sequence[FinancialEntity]] = None,
        original_input: str = "",
        confidence: float = 1.0,
        start: Optional[float] = None,
    ) -> Result[CommandProcessingResult]:
        start = start if start is not None else time.perf_counter()

        validation = self.validator.validate_command(intent, parameters, template, context, entities, original_input)
        if validation.inferred_parameters:
            inferred_notes = [w for w in validation.warnings if w.severity == ValidationSeverity.INFO]
            parameters = parameters.with_primary(**validation.inferred_parameters)
            parameters = parameters.model_copy(update={
                "derived": self.derive_parameters(intent, parameters.primary, parameters.optional, template, context),
            })
            if entities is not None:
                entities = list(entities) + [
                    FinancialEntity(type=INFERRED_ENTITY_TYPES[name], value=value, normalized=value)
                    for name, value in validation.inferred_parameters.items()
                    if name in INFERRED_ENTITY_TYPES
                ]
            validation = self.validator.validate_command(intent, parameters, template, context, entities, original_input)
            validation.warnings[:0] = inferred_notes

        built = self.builder.build_command(intent, parameters, template, context)
        if not built.success:
            return built

        command = self._with_metadata(built.value, context, confidence, start, validation.warnings)
        blocked = bool(validation.blocking_errors) or validation.requires_disambiguation

        hints = list(validation.suggestions)
        hints.extend(self._risk_hints(intent, parameters))
        if validation.requires_disambiguation and validation.disambiguation_options:
            hints.extend(self.disambiguation_engine.generate_smart_suggestions(DisambiguationContext(
                original_input=original_input,
                intent=intent,
                entities=tuple(entities or ()),
                ambiguities=(validation.disambiguation_options.ambiguity_type,),
                user_context=context,
            )))

        result = CommandProcessingResult(
            intent=intent,
            parameters=parameters,
            command=None if blocked else command,
            validation_errors=validation.errors,
            warnings=validation.warnings,
            suggestions=self._suggestions(command),
            hints=list(dict.fromkeys(hints)),
            requires_disambiguation=validation.requires_disambiguation,
            disambiguation_options=validation.disambiguation_options,
            estimated_gas=command.estimated_gas,
            risk_level=command.risk_level,
        )
        logger.info(
            "Processed %s: command=%s errors=%d disambiguation=%s",
            intent.value, None if blocked else command.id, len(validation.errors), validation.requires_disambiguation,
            extra={
                "command_id": command.id,
                "intent": intent.value,
                "stage": "parse",
                "elapsed_ms": elapsed_ms(start),
            },
        )
        return Result.ok(result)

    def _clarify_intent(
        self,
        entities: Sequence[FinancialEntity],
        original_input: str,
        context: Optional[ParsingContext],
    ) -> Result[CommandProcessingResult]:
        ambiguities = self.disambiguation_engine.detect_ambiguities(DefiIntent.UNKNOWN, entities, original_input, context)
        generated = self.disambiguation_engine.generate_disambiguation_options(DisambiguationContext(
            original_input=original_input,
            intent=DefiIntent.UNKNOWN,
            entities=tuple(entities),
            ambiguities=tuple(ambiguities),
            user_context=context,
        ))
        if not generated.success:
            return generated

        extracted = self.extract_parameters(DefiIntent.UNKNOWN, entities, None, context)
        if not extracted.success:
            return extracted

        return Result.ok(CommandProcessingResult(
            intent=DefiIntent.UNKNOWN,
            parameters=extracted.value,
            requires_disambiguation=True,
            disambiguation_options=generated.value,
        ))

    # === METADATA / SUGGESTIONS ===

    def _with_metadata(
        self,
        command: ExecutableCommand,
        context: Optional[ParsingContext],
        confidence: float,
        start: float,
        warnings: Sequence,
    ) -> ExecutableCommand:
        approvals = self._required_approvals(command, context)
        metadata = CommandMetadata(
            timestamp=now_ms(),
            confidence=confidence,
            processing_time=elapsed_ms(start),
            required_approvals=approvals,
            protocols_involved=self._protocols_involved(command),
            estimated_duration=self._estimate_duration(command, len(approvals)),
        )
        has_warnings = any(w.severity == ValidationSeverity.WARNING for w in warnings)
        return command.model_copy(update={
            "metadata": metadata,
            "validation_status": "warning" if has_warnings else "valid",
        })

    @staticmethod
    def _required_approvals(command: ExecutableCommand, context: Optional[ParsingContext]) -> List[Approval]:
        primary = command.parameters.primary
        token = primary.token or primary.from_token
        required = _to_float(primary.amount)
        if not token or required is None:
            return []

        spender = primary.protocol or "protocol"
        allowances = context.allowances.get(token.upper(), {}) if context else {}
        current = _to_float(allowances.get(spender, allowances.get("protocol", "0"))) or 0.0
        if current >= required:
            return []
        return [Approval(token=token, spender=spender, amount=primary.amount)]

    @staticmethod
    def _protocols_involved(command: ExecutableCommand) -> List[str]:
        protocols: List[str] = []
        if command.parameters.primary.protocol:
            protocols.append(command.parameters.primary.protocol)
        for step in command.parameters.derived.route or []:
            if step.protocol not in protocols:
                protocols.append(step.protocol)
        return protocols

    @staticmethod
    def _estimate_duration(command: ExecutableCommand, approvals: int) -> int:
        duration = 60 + approvals * 30
        if command.intent in ARBITRAGE_INTENTS:
            duration += 120
        route = command.parameters.derived.route or []
        if len(route) > 1:
            duration += len(route) * 30
        return duration

    @staticmethod
    def _suggestions(command: ExecutableCommand) -> List[CommandSuggestion]:
        suggestions: List[CommandSuggestion] = []
        impact = command.parameters.derived.price_impact

        if command.intent == DefiIntent.SWAP and impact is not None and impact > 1:
            suggestions.append(CommandSuggestion(
                type="optimization",
                title="High Price Impact",
                description="Consider splitting the trade into smaller amounts",
                action="Split trade into multiple transactions",
                expected_benefit="Reduced slippage and better price",
            ))

        if command.risk_level == CommandRiskLevel.HIGH:
            suggestions.append(CommandSuggestion(
                type="warning",
                title="High Risk Operation",
                description="This operation carries significant risk",
                action="Consider reducing the amount or leverage",
                risk_level=CommandRiskLevel.HIGH,
            ))

        if command.parameters.primary.protocol == "dragonswap":
            suggestions.append(CommandSuggestion(
                type="alternative",
                title="Alternative Protocol",
                description="Symphony might offer better rates",
                action="Compare rates on Symphony",
                expected_benefit="Potentially better APY",
            ))

        return suggestions

    def _risk_hints(self, intent: DefiIntent, parameters: CommandParameters) -> List[str]:
        amount = _to_float(parameters.primary.amount)
        if amount is None:
            return []
        assessed = self.risk_profiler.assess_risk(RiskAssessmentInput(
            amount=amount,
            protocol=parameters.primary.protocol or "unknown",
            operation=intent.value,
            leverage=parameters.primary.leverage,
        ))
        return list(assessed.value.warnings) if assessed.success else []


def _price_impact(amount: float) -> float:
    if amount > 10000:
        return 0.5
    if amount > 1000:
        return 0.1
    return 0.01
