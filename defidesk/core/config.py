"""Configuration management."""
import os
from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv(override=False)


class Settings(BaseSettings):
    """Pipeline settings.

    The processing components never read the environment themselves; these
    values are turned into per-component config objects by
    ``defidesk.processing.pipeline``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Amount parsing
    amount_min_amount: float = float(os.getenv("AMOUNT_MIN_AMOUNT", "0.000001"))
    amount_max_amount: float = float(os.getenv("AMOUNT_MAX_AMOUNT", "1000000000000"))
    amount_default_decimals: int = int(os.getenv("AMOUNT_DEFAULT_DECIMALS", "6"))
    amount_allow_percentages: bool = os.getenv("AMOUNT_ALLOW_PERCENTAGES", "true").lower() == "true"
    amount_allow_relative: bool = os.getenv("AMOUNT_ALLOW_RELATIVE", "true").lower() == "true"

    # Asset resolution
    asset_min_fuzzy_score: float = float(os.getenv("ASSET_MIN_FUZZY_SCORE", "0.6"))
    asset_max_suggestions: int = int(os.getenv("ASSET_MAX_SUGGESTIONS", "5"))
    asset_enable_fuzzy: bool = os.getenv("ASSET_ENABLE_FUZZY", "true").lower() == "true"
    asset_prefer_stablecoins: bool = os.getenv("ASSET_PREFER_STABLECOINS", "false").lower() == "true"
    asset_prefer_popular: bool = os.getenv("ASSET_PREFER_POPULAR", "true").lower() == "true"

    # Risk profiling
    risk_conservative_threshold: float = float(os.getenv("RISK_CONSERVATIVE_THRESHOLD", "0.3"))
    risk_moderate_threshold: float = float(os.getenv("RISK_MODERATE_THRESHOLD", "0.6"))
    risk_aggressive_threshold: float = float(os.getenv("RISK_AGGRESSIVE_THRESHOLD", "0.8"))
    risk_enable_dynamic_scoring: bool = os.getenv("RISK_ENABLE_DYNAMIC_SCORING", "true").lower() == "true"
    risk_market_volatility_weight: float = float(os.getenv("RISK_MARKET_VOLATILITY_WEIGHT", "0.2"))

    # Strategy matching
    strategy_min_match_score: float = float(os.getenv("STRATEGY_MIN_MATCH_SCORE", "0.5"))
    strategy_max_results: int = int(os.getenv("STRATEGY_MAX_RESULTS", "10"))
    strategy_enable_dynamic_adjustments: bool = os.getenv("STRATEGY_ENABLE_DYNAMIC_ADJUSTMENTS", "true").lower() == "true"
    strategy_prefer_popular: bool = os.getenv("STRATEGY_PREFER_POPULAR", "true").lower() == "true"
    strategy_risk_adjustment_factor: float = float(os.getenv("STRATEGY_RISK_ADJUSTMENT_FACTOR", "1.0"))

    # Parameter validation (LTV and liquid set stand in for an oracle feed)
    validation_borrow_ltv: float = float(os.getenv("VALIDATION_BORROW_LTV", "0.75"))
    validation_liquid_tokens: str = os.getenv("VALIDATION_LIQUID_TOKENS", "USDC,USDT,ETH,SEI,WSEI")
    validation_high_balance_ratio: float = float(os.getenv("VALIDATION_HIGH_BALANCE_RATIO", "0.9"))
    validation_high_utilization_ratio: float = float(os.getenv("VALIDATION_HIGH_UTILIZATION_RATIO", "0.8"))
    validation_max_price_impact: float = float(os.getenv("VALIDATION_MAX_PRICE_IMPACT", "5.0"))

    # Command building
    command_default_slippage: float = float(os.getenv("COMMAND_DEFAULT_SLIPPAGE", "0.5"))
    command_deadline_seconds: int = int(os.getenv("COMMAND_DEADLINE_SECONDS", "1800"))
    command_confirmation_amount: float = float(os.getenv("COMMAND_CONFIRMATION_AMOUNT", "10000"))
    command_confirmation_leverage: float = float(os.getenv("COMMAND_CONFIRMATION_LEVERAGE", "2"))

    @property
    def liquid_tokens_list(self) -> List[str]:
        """Parse liquid token whitelist into list of symbols."""
        return [s.strip().upper() for s in self.validation_liquid_tokens.split(",") if s.strip()]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton. Used for test isolation."""
    global _settings
    _settings = None
