"""Parameter validator - checks command parameters against a template and account state.

Stages, accumulating into shared error/warning lists:
1. required parameters (with inference from context)
2. per-rule type and constraint checks
3. per-intent business rules (balances, collateral, same-token swaps)
4. ambiguity detection, delegated to the DisambiguationEngine
5. parameter suggestions

Field problems are returned as CommandValidationError records, never raised.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from defidesk.core.logging import get_logger
from defidesk.processing.schemas import (
    AmbiguityType,
    CommandParameters,
    CommandValidationError,
    DefiIntent,
    DisambiguationOptions,
    FinancialEntity,
    ParsingContext,
    ValidationCode,
    ValidationSeverity,
)
from defidesk.processing.templates import CommandTemplate, ParameterConstraints, ParameterValidationRule
from defidesk.services import protocol_registry
from defidesk.services.asset_resolver import AssetResolver
from defidesk.services.disambiguation_engine import (
    DisambiguationContext,
    DisambiguationEngine,
    entities_from_parameters,
)

logger = get_logger(__name__)

EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
NATIVE_ADDRESS = re.compile(r"^[a-zA-Z0-9]{39,59}$")

GAS_RESERVE_RATIO = 0.95
RISKY_BORROW_LEVERAGE = 3

PARAMETER_HINTS: Dict[DefiIntent, Dict[str, str]] = {
    DefiIntent.LEND: {
        "amount": 'Specify amount like "1000" or "500.5"',
        "token": 'Specify token like "USDC" or "ETH"',
        "protocol": 'Specify protocol like "Silo" or "Takara"',
    },
    DefiIntent.SWAP: {
        "amount": "Specify amount to swap",
        "from_token": "Specify token to swap from",
        "to_token": "Specify token to swap to",
        "protocol": 'Specify DEX like "DragonSwap" or "Symphony"',
    },
}


class ValidatorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    borrow_ltv: float = 0.75
    liquid_tokens: Tuple[str, ...] = ("USDC", "USDT", "ETH", "SEI", "WSEI")
    high_balance_ratio: float = 0.9
    high_utilization_ratio: float = 0.8
    max_price_impact: float = 5.0


@dataclass
class ParameterValidationResult:
    errors: List[CommandValidationError] = field(default_factory=list)
    warnings: List[CommandValidationError] = field(default_factory=list)
    is_valid: bool = True
    requires_disambiguation: bool = False
    disambiguation_options: Optional[DisambiguationOptions] = None
    suggestions: List[str] = field(default_factory=list)
    # Values filled in from context for missing required parameters
    inferred_parameters: Dict[str, str] = field(default_factory=dict)

    @property
    def blocking_errors(self) -> List[CommandValidationError]:
        return [e for e in self.errors if e.is_blocking]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": [e.model_dump(mode="json") for e in self.errors],
            "warnings": [w.model_dump(mode="json") for w in self.warnings],
            "is_valid": self.is_valid,
            "requires_disambiguation": self.requires_disambiguation,
            "disambiguation_options": (
                self.disambiguation_options.model_dump(mode="json") if self.disambiguation_options else None
            ),
            "suggestions": list(self.suggestions),
            "inferred_parameters": dict(self.inferred_parameters),
        }


def _error(field_name: str, code: ValidationCode, message: str, suggestion: Optional[str] = None) -> CommandValidationError:
    return CommandValidationError(
        field=field_name, code=code, message=message, severity=ValidationSeverity.ERROR, suggestion=suggestion,
    )


def _warning(field_name: str, code: ValidationCode, message: str, suggestion: Optional[str] = None) -> CommandValidationError:
    return CommandValidationError(
        field=field_name, code=code, message=message, severity=ValidationSeverity.WARNING, suggestion=suggestion,
    )


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_valid_address(value: Any) -> bool:
    text = str(value)
    return bool(EVM_ADDRESS.match(text) or NATIVE_ADDRESS.match(text))


class ParameterValidator:
    def __init__(
        self,
        config: Optional[ValidatorConfig] = None,
        asset_resolver: Optional[AssetResolver] = None,
        disambiguation_engine: Optional[DisambiguationEngine] = None,
    ):
        self.config = config or ValidatorConfig()
        self.asset_resolver = asset_resolver or AssetResolver()
        self.disambiguation_engine = disambiguation_engine or DisambiguationEngine()
        self._liquid_tokens = frozenset(t.upper() for t in self.config.liquid_tokens)

    def validate_command(
        self,
        intent: DefiIntent,
        parameters: CommandParameters,
        template: CommandTemplate,
        context: Optional[ParsingContext] = None,
        entities: Optional[Sequence[FinancialEntity]] = None,
        original_input: str = "",
    ) -> ParameterValidationResult:
        """Run every validation stage and report the combined outcome.

        ``entities`` are the raw extracted entities when available; otherwise
        they are rebuilt from ``parameters`` for ambiguity detection.
        """
        result = ParameterValidationResult()
        try:
            self._validate_required(parameters, template, context, result)
            self._validate_types(parameters, template, result)
            self._validate_business_logic(intent, parameters, context, result)
            self._check_disambiguation(intent, parameters, context, entities, original_input, result)
            result.suggestions.extend(self._suggestions(intent, parameters, context))

        except Exception:
            logger.exception("Unexpected validation error", extra={"intent": intent.value, "stage": "validate"})
            return ParameterValidationResult(
                errors=[_error("general", ValidationCode.VALIDATION_ERROR, "Unexpected validation error")],
                is_valid=False,
            )

        result.is_valid = not result.blocking_errors
        logger.info(
            "Validated %s: %d errors, %d warnings, disambiguation=%s",
            intent.value, len(result.errors), len(result.warnings), result.requires_disambiguation,
            extra={"intent": intent.value, "stage": "validate"},
        )
        return result

    # === STAGE 1: REQUIRED ===

    def _validate_required(
        self,
        parameters: CommandParameters,
        template: CommandTemplate,
        context: Optional[ParsingContext],
        result: ParameterValidationResult,
    ) -> None:
        for name in template.required_parameters:
            value = getattr(parameters.primary, name, None)
            if value is not None and value != "":
                continue

            inferred = self._infer_from_context(name, context)
            if inferred is None:
                result.errors.append(_error(
                    name,
                    ValidationCode.REQUIRED_PARAMETER_MISSING,
                    f"Required parameter '{name}' is missing",
                    suggestion=PARAMETER_HINTS.get(template.intent, {}).get(name, f"Please specify {name}"),
                ))
            else:
                result.inferred_parameters[name] = inferred
                result.warnings.append(CommandValidationError(
                    field=name,
                    code=ValidationCode.PARAMETER_INFERRED,
                    message=f"Parameter '{name}' inferred from context: {inferred}",
                    severity=ValidationSeverity.INFO,
                ))

    @staticmethod
    def _infer_from_context(name: str, context: Optional[ParsingContext]) -> Optional[str]:
        if context is None:
            return None
        if name == "protocol":
            return protocol_registry.most_used_protocol(context.positions)
        if name == "token":
            balances = [(token, context.balance_of(token)) for token in context.balances]
            balances = [(token, amount) for token, amount in balances if amount is not None]
            if balances:
                return max(balances, key=lambda item: item[1])[0]
        return None

    # === STAGE 2: TYPES / CONSTRAINTS ===

    def _validate_types(
        self,
        parameters: CommandParameters,
        template: CommandTemplate,
        result: ParameterValidationResult,
    ) -> None:
        for rule in template.validation_rules:
            value = parameters.get_value(rule.field)
            if value is None:
                continue
            try:
                problem = self._check_rule(rule, value)
            except Exception:
                logger.warning("Rule check raised for %s", rule.field, exc_info=True)
                problem = _error(rule.field, ValidationCode.VALIDATION_ERROR, f"Validation error for '{rule.field}'")
            if problem is not None:
                result.errors.append(problem)

    def _check_rule(self, rule: ParameterValidationRule, value: Any) -> Optional[CommandValidationError]:
        if not self._check_type(rule.type, value):
            return _error(rule.field, ValidationCode.INVALID_TYPE, f"Parameter '{rule.field}' must be of type {rule.type}")

        if rule.validator is not None and not rule.validator(value):
            return _error(rule.field, ValidationCode.VALIDATION_FAILED, f"Parameter '{rule.field}' failed validation")

        if rule.constraints is not None:
            violation = _constraint_violation(rule.constraints, value)
            if violation:
                return _error(rule.field, ValidationCode.CONSTRAINT_VIOLATION, violation)
        return None

    def _check_type(self, type_name: str, value: Any) -> bool:
        if type_name == "string":
            return isinstance(value, str)
        if type_name == "number":
            return _to_float(value) is not None
        if type_name == "boolean":
            return isinstance(value, bool)
        if type_name == "token":
            return self.asset_resolver.validate_asset_symbol(str(value))
        if type_name == "protocol":
            return protocol_registry.is_valid_protocol(value)
        if type_name == "address":
            return is_valid_address(value)
        return True

    # === STAGE 3: BUSINESS RULES ===

    def _validate_business_logic(
        self,
        intent: DefiIntent,
        parameters: CommandParameters,
        context: Optional[ParsingContext],
        result: ParameterValidationResult,
    ) -> None:
        if intent == DefiIntent.LEND:
            self._check_lending(parameters, context, result)
        elif intent == DefiIntent.BORROW:
            self._check_borrowing(parameters, context, result)
        elif intent == DefiIntent.SWAP:
            self._check_swap(parameters, context, result)
        elif intent == DefiIntent.ADD_LIQUIDITY:
            self._check_liquidity(parameters, result)

    def _check_lending(self, parameters: CommandParameters, context: Optional[ParsingContext], result: ParameterValidationResult) -> None:
        amount = _to_float(parameters.primary.amount)
        token = parameters.primary.token
        balance = context.balance_of(token) if context else None
        if amount is None or balance is None:
            return

        if amount > balance:
            result.errors.append(_insufficient_balance(token, balance, parameters.primary.amount))
        elif amount > balance * self.config.high_balance_ratio:
            share = amount / balance * 100 if balance else 100.0
            result.warnings.append(_warning(
                "amount",
                ValidationCode.HIGH_PERCENTAGE_OF_BALANCE,
                f"You are lending {share:.1f}% of your {token} balance",
                suggestion="Consider keeping some tokens for gas fees and emergencies",
            ))

    def _check_borrowing(self, parameters: CommandParameters, context: Optional[ParsingContext], result: ParameterValidationResult) -> None:
        amount = _to_float(parameters.primary.amount)
        if amount is None or not parameters.primary.token or context is None:
            return

        collateral = sum(p.value for p in context.positions if p.type == "lending")
        max_borrow = collateral * self.config.borrow_ltv

        if amount > max_borrow:
            result.errors.append(_error(
                "amount",
                ValidationCode.INSUFFICIENT_COLLATERAL,
                f"Insufficient collateral. Max borrow: {max_borrow:.2f}, Requested: {parameters.primary.amount}",
                suggestion=f"Reduce amount to {max_borrow:.2f} or add more collateral",
            ))
        elif amount > max_borrow * self.config.high_utilization_ratio:
            result.warnings.append(_warning(
                "amount",
                ValidationCode.HIGH_UTILIZATION,
                "High borrowing utilization increases liquidation risk",
                suggestion="Consider borrowing less to maintain a healthy position",
            ))

    def _check_swap(self, parameters: CommandParameters, context: Optional[ParsingContext], result: ParameterValidationResult) -> None:
        primary = parameters.primary
        if primary.from_token and primary.to_token and primary.from_token.upper() == primary.to_token.upper():
            result.errors.append(_error(
                "to_token",
                ValidationCode.SAME_TOKEN_SWAP,
                "Cannot swap a token to itself",
                suggestion="Choose a different token to swap to",
            ))

        amount = _to_float(primary.amount)
        balance = context.balance_of(primary.from_token) if context else None
        if amount is not None and balance is not None and amount > balance:
            result.errors.append(_insufficient_balance(primary.from_token, balance, primary.amount))

        impact = parameters.derived.price_impact
        if impact is not None and impact > self.config.max_price_impact:
            result.warnings.append(_warning(
                "amount",
                ValidationCode.HIGH_PRICE_IMPACT,
                f"High price impact: {impact:.2f}%",
                suggestion="Consider splitting the trade or using a different route",
            ))

    def _check_liquidity(self, parameters: CommandParameters, result: ParameterValidationResult) -> None:
        token = parameters.primary.token
        if token and token.upper() not in self._liquid_tokens:
            result.warnings.append(_warning(
                "token",
                ValidationCode.LOW_LIQUIDITY_TOKEN,
                f"{token} may have low liquidity in pools",
                suggestion="Consider using more liquid tokens like USDC or ETH",
            ))

    # === STAGE 4: DISAMBIGUATION ===

    def _check_disambiguation(
        self,
        intent: DefiIntent,
        parameters: CommandParameters,
        context: Optional[ParsingContext],
        entities: Optional[Sequence[FinancialEntity]],
        original_input: str,
        result: ParameterValidationResult,
    ) -> None:
        if entities is None:
            entities = entities_from_parameters(parameters)

        ambiguities = self.disambiguation_engine.detect_ambiguities(
            intent,
            entities,
            original_input,
            context,
            risk_acknowledged=bool(parameters.optional.risk_acknowledged),
        )
        if parameters.primary.from_token or parameters.primary.to_token:
            # Direction already chosen
            ambiguities = [a for a in ambiguities if a != AmbiguityType.TOKEN_DIRECTION]
        if not ambiguities:
            return

        generated = self.disambiguation_engine.generate_disambiguation_options(DisambiguationContext(
            original_input=original_input,
            intent=intent,
            entities=tuple(entities),
            ambiguities=tuple(ambiguities),
            user_context=context,
        ))
        if not generated.success:
            logger.warning("Disambiguation options unavailable: %s", generated.error, extra={"intent": intent.value})
            return

        result.requires_disambiguation = True
        result.disambiguation_options = generated.value

    # === STAGE 5: SUGGESTIONS ===

    def _suggestions(self, intent: DefiIntent, parameters: CommandParameters, context: Optional[ParsingContext]) -> List[str]:
        suggestions: List[str] = []
        primary = parameters.primary

        if not primary.protocol:
            protocols = protocol_registry.available_protocols(intent)
            if protocols:
                suggestions.append(f"Try specifying a protocol: {', '.join(protocols)}")

        token = primary.token or primary.from_token
        amount = _to_float(primary.amount)
        balance = context.balance_of(token) if context else None
        if amount is not None and balance is not None and amount > balance * GAS_RESERVE_RATIO:
            suggestions.append(f"Consider leaving some {token} for gas fees")

        if intent == DefiIntent.BORROW and primary.leverage and primary.leverage > RISKY_BORROW_LEVERAGE:
            suggestions.append("Consider lower leverage to reduce liquidation risk")

        return suggestions


def _insufficient_balance(token: str, balance: float, requested: Any) -> CommandValidationError:
    return _error(
        "amount",
        ValidationCode.INSUFFICIENT_BALANCE,
        f"Insufficient {token} balance. Available: {balance:g}, Required: {requested}",
        suggestion=f"Use amount less than or equal to {balance:g}",
    )


def _constraint_violation(constraints: ParameterConstraints, value: Any) -> Optional[str]:
    number = _to_float(value)
    if constraints.min is not None and number is not None and number < constraints.min:
        return f"Value must be at least {constraints.min:g}"
    if constraints.max is not None and number is not None and number > constraints.max:
        return f"Value must be at most {constraints.max:g}"
    if constraints.pattern and not re.search(constraints.pattern, str(value)):
        return "Value does not match required pattern"
    if constraints.enum is not None and value not in constraints.enum:
        return f"Value must be one of: {', '.join(str(v) for v in constraints.enum)}"
    if constraints.custom is not None and not constraints.custom(value):
        return "Value failed custom validation"
    return None
