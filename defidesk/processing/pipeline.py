"""Wires settings into component configs and builds the processing pipeline.

This is the only place that reads ``Settings``; every component receives an
explicit, frozen config object.
"""
from typing import Optional

from defidesk.core.config import Settings, get_settings
from defidesk.core.logging import get_logger, setup_logging
from defidesk.processing.command_builder import BuilderConfig, CommandBuilder
from defidesk.processing.command_parser import CommandParser, CommandParserConfig
from defidesk.services.amount_parser import AmountParser, AmountParserConfig
from defidesk.services.asset_resolver import AssetResolver, AssetResolverConfig
from defidesk.services.disambiguation_engine import DisambiguationEngine
from defidesk.services.parameter_validator import ParameterValidator, ValidatorConfig
from defidesk.services.risk_profiler import RiskProfiler, RiskProfilerConfig
from defidesk.services.strategy_matcher import StrategyMatcher, StrategyMatcherConfig

logger = get_logger(__name__)


def amount_parser_config(settings: Settings) -> AmountParserConfig:
    return AmountParserConfig(
        min_amount=settings.amount_min_amount,
        max_amount=settings.amount_max_amount,
        default_decimals=settings.amount_default_decimals,
        allow_percentages=settings.amount_allow_percentages,
        allow_relative_amounts=settings.amount_allow_relative,
    )


def asset_resolver_config(settings: Settings) -> AssetResolverConfig:
    return AssetResolverConfig(
        min_fuzzy_score=settings.asset_min_fuzzy_score,
        max_suggestions=settings.asset_max_suggestions,
        enable_fuzzy_matching=settings.asset_enable_fuzzy,
        prefer_stablecoins=settings.asset_prefer_stablecoins,
        prefer_popular=settings.asset_prefer_popular,
    )


def risk_profiler_config(settings: Settings) -> RiskProfilerConfig:
    return RiskProfilerConfig(
        conservative_threshold=settings.risk_conservative_threshold,
        moderate_threshold=settings.risk_moderate_threshold,
        aggressive_threshold=settings.risk_aggressive_threshold,
        enable_dynamic_scoring=settings.risk_enable_dynamic_scoring,
        market_volatility_weight=settings.risk_market_volatility_weight,
    )


def strategy_matcher_config(settings: Settings) -> StrategyMatcherConfig:
    return StrategyMatcherConfig(
        min_match_score=settings.strategy_min_match_score,
        max_results=settings.strategy_max_results,
        enable_dynamic_adjustments=settings.strategy_enable_dynamic_adjustments,
        prefer_popular_strategies=settings.strategy_prefer_popular,
        risk_adjustment_factor=settings.strategy_risk_adjustment_factor,
    )


def validator_config(settings: Settings) -> ValidatorConfig:
    return ValidatorConfig(
        borrow_ltv=settings.validation_borrow_ltv,
        liquid_tokens=tuple(settings.liquid_tokens_list),
        high_balance_ratio=settings.validation_high_balance_ratio,
        high_utilization_ratio=settings.validation_high_utilization_ratio,
        max_price_impact=settings.validation_max_price_impact,
    )


def builder_config(settings: Settings) -> BuilderConfig:
    return BuilderConfig(
        default_slippage=settings.command_default_slippage,
        confirmation_amount=settings.command_confirmation_amount,
        confirmation_leverage=settings.command_confirmation_leverage,
    )


def parser_config(settings: Settings) -> CommandParserConfig:
    return CommandParserConfig(
        default_slippage=settings.command_default_slippage,
        deadline_seconds=settings.command_deadline_seconds,
    )


def create_command_parser(settings: Optional[Settings] = None) -> CommandParser:
    """Build a CommandParser with every component configured from settings."""
    settings = settings or get_settings()

    asset_resolver = AssetResolver(asset_resolver_config(settings))
    engine = DisambiguationEngine()
    parser = CommandParser(
        config=parser_config(settings),
        amount_parser=AmountParser(amount_parser_config(settings)),
        asset_resolver=asset_resolver,
        validator=ParameterValidator(validator_config(settings), asset_resolver, engine),
        disambiguation_engine=engine,
        builder=CommandBuilder(builder_config(settings)),
        risk_profiler=RiskProfiler(risk_profiler_config(settings)),
    )
    logger.debug("Command parser created", extra={"stage": "init"})
    return parser


def create_strategy_matcher(settings: Optional[Settings] = None) -> StrategyMatcher:
    settings = settings or get_settings()
    return StrategyMatcher(strategy_matcher_config(settings))


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Install JSON logging with secret redaction at ``LOG_LEVEL``. Call once at process start."""
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    logger.info("Logging configured", extra={"stage": "init", "event": "logging_configured"})
