"""Structured error codes for command processing failures.

Provides semantic error codes that can be used for:
- User-facing error messages with remediation
- Monitoring and alerting
- Error categorization and analysis

Field-level validation problems are not exceptions; they are returned as
``CommandValidationError`` records. The exception hierarchy here covers
failures of a whole operation (an amount that cannot be parsed, an asset that
cannot be resolved, a command that cannot be built).
"""
from enum import Enum
from typing import Any, Dict, Optional, Union


class ErrorCode(str, Enum):
    """Error codes for pipeline failures."""

    # Amount parsing
    INVALID_AMOUNT_INPUT = "INVALID_AMOUNT_INPUT"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    AMOUNT_TOO_SMALL = "AMOUNT_TOO_SMALL"
    AMOUNT_TOO_LARGE = "AMOUNT_TOO_LARGE"
    AMOUNT_PARSING_FAILED = "AMOUNT_PARSING_FAILED"
    PARSING_ERROR = "PARSING_ERROR"

    # Asset / protocol resolution
    INVALID_ASSET_INPUT = "INVALID_ASSET_INPUT"
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"
    ASSET_RESOLUTION_ERROR = "ASSET_RESOLUTION_ERROR"
    PROTOCOL_NOT_FOUND = "PROTOCOL_NOT_FOUND"

    # Risk analysis
    RISK_ASSESSMENT_FAILED = "RISK_ASSESSMENT_FAILED"
    RISK_TOLERANCE_UNCLEAR = "RISK_TOLERANCE_UNCLEAR"
    RISK_PROFILE_ERROR = "RISK_PROFILE_ERROR"

    # Strategy matching
    STRATEGY_MATCHING_FAILED = "STRATEGY_MATCHING_FAILED"
    STRATEGY_NOT_FOUND = "STRATEGY_NOT_FOUND"

    # Disambiguation
    NO_STRATEGIES = "NO_STRATEGIES"
    DISAMBIGUATION_ERROR = "DISAMBIGUATION_ERROR"
    INVALID_OPTION = "INVALID_OPTION"
    RESOLUTION_ERROR = "RESOLUTION_ERROR"

    # Command processing
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    PARAMETER_EXTRACTION_ERROR = "PARAMETER_EXTRACTION_ERROR"
    COMMAND_BUILD_ERROR = "COMMAND_BUILD_ERROR"
    EMPTY_BATCH = "EMPTY_BATCH"
    OPERATION_CANCELLED = "OPERATION_CANCELLED"

    # Generic
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class DefiPipelineError(Exception):
    """Exception with structured error code and message."""

    def __init__(
        self,
        error_code: Union[ErrorCode, str],
        message: str,
        remediation: str = None,
        details: dict = None
    ):
        """Initialize pipeline error.

        Args:
            error_code: Structured error code
            message: Human-readable error message
            remediation: Optional remediation steps (defaults to the catalog entry)
            details: Optional additional error details
        """
        self.error_code = ErrorCode(error_code)
        self.message = message
        self.remediation = remediation or ERROR_CODE_MESSAGES.get(self.error_code, {}).get("remediation")
        self.details = details or {}
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.error_code.value

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.error_code.value,
            "message": self.message,
            "remediation": self.remediation,
            "details": _serializable(self.details),
        }


class AmountParsingError(DefiPipelineError):
    """Amount text could not be turned into a number in range."""


class AssetResolutionError(DefiPipelineError):
    """Asset reference could not be matched against the catalog."""


class ProtocolResolutionError(DefiPipelineError):
    """Protocol name is not one the pipeline can route to."""


class RiskAnalysisError(DefiPipelineError):
    """Risk assessment or profile construction failed."""


class StrategyMatchingError(DefiPipelineError):
    """Strategy catalog lookup or scoring failed."""


class CommandProcessingError(DefiPipelineError):
    """Failure while turning intent + entities into a command."""


class ParameterValidationError(CommandProcessingError):
    """Parameter validation could not complete."""


class CommandBuildingError(CommandProcessingError):
    """Executable command assembly failed."""


def _serializable(details: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in details.items():
        if isinstance(value, BaseException):
            out[key] = f"{type(value).__name__}: {value}"
        else:
            out[key] = value
    return out


# User-facing messages and remediation steps for each error code
ERROR_CODE_MESSAGES = {
    ErrorCode.INVALID_AMOUNT_INPUT: {
        "message": "No amount was provided",
        "remediation": "Enter an amount such as 100, 1.5k or 50%",
    },
    ErrorCode.INVALID_AMOUNT: {
        "message": "Amount must be a positive number",
        "remediation": "Enter an amount greater than zero",
    },
    ErrorCode.AMOUNT_TOO_SMALL: {
        "message": "Amount is below the minimum",
        "remediation": "Increase the amount",
    },
    ErrorCode.AMOUNT_TOO_LARGE: {
        "message": "Amount is above the maximum",
        "remediation": "Reduce the amount",
    },
    ErrorCode.AMOUNT_PARSING_FAILED: {
        "message": "Could not understand the amount",
        "remediation": "Use an exact number like 100 or a unit like 1.5k",
    },
    ErrorCode.PARSING_ERROR: {
        "message": "Unexpected error while parsing",
        "remediation": "Rephrase the request and try again",
    },
    ErrorCode.INVALID_ASSET_INPUT: {
        "message": "No asset was provided",
        "remediation": "Name a token such as USDC, SEI or ETH",
    },
    ErrorCode.ASSET_NOT_FOUND: {
        "message": "Asset not recognized",
        "remediation": "Check the spelling of the asset symbol",
    },
    ErrorCode.ASSET_RESOLUTION_ERROR: {
        "message": "Unexpected error while resolving the asset",
        "remediation": "Try the token symbol instead of its name",
    },
    ErrorCode.PROTOCOL_NOT_FOUND: {
        "message": "Protocol not supported",
        "remediation": "Use DragonSwap, Symphony, Citrex, Silo or Takara",
    },
    ErrorCode.RISK_ASSESSMENT_FAILED: {
        "message": "Risk assessment failed",
        "remediation": "Retry with a smaller amount or a known protocol",
    },
    ErrorCode.RISK_TOLERANCE_UNCLEAR: {
        "message": "Could not determine risk tolerance",
        "remediation": "Describe your tolerance as low, medium or high",
    },
    ErrorCode.RISK_PROFILE_ERROR: {
        "message": "Risk profile could not be created",
        "remediation": "Answer the risk questionnaire again",
    },
    ErrorCode.STRATEGY_MATCHING_FAILED: {
        "message": "Strategy matching failed",
        "remediation": "Relax the strategy criteria",
    },
    ErrorCode.STRATEGY_NOT_FOUND: {
        "message": "Strategy not found",
        "remediation": "Pick a strategy from the catalog",
    },
    ErrorCode.NO_STRATEGIES: {
        "message": "No disambiguation strategy applies",
        "remediation": None,
    },
    ErrorCode.DISAMBIGUATION_ERROR: {
        "message": "Failed to generate clarification options",
        "remediation": "Rephrase the request with more detail",
    },
    ErrorCode.INVALID_OPTION: {
        "message": "Invalid disambiguation option selected",
        "remediation": "Choose one of the offered options",
    },
    ErrorCode.RESOLUTION_ERROR: {
        "message": "Failed to resolve disambiguation",
        "remediation": "Choose one of the offered options",
    },
    ErrorCode.TEMPLATE_NOT_FOUND: {
        "message": "This operation is not supported yet",
        "remediation": "Try lend, borrow, swap or add liquidity",
    },
    ErrorCode.PARAMETER_EXTRACTION_ERROR: {
        "message": "Failed to extract parameters",
        "remediation": "Rephrase the request with an amount and a token",
    },
    ErrorCode.COMMAND_BUILD_ERROR: {
        "message": "Failed to build command",
        "remediation": None,
    },
    ErrorCode.EMPTY_BATCH: {
        "message": "Batch contains no commands",
        "remediation": None,
    },
    ErrorCode.OPERATION_CANCELLED: {
        "message": "Operation cancelled",
        "remediation": None,
    },
    ErrorCode.VALIDATION_ERROR: {
        "message": "Unexpected validation error",
        "remediation": "Check the request parameters and try again",
    },
    ErrorCode.UNKNOWN_ERROR: {
        "message": "An unexpected error occurred",
        "remediation": None,
    },
}


def get_error_message(error_code: Union[ErrorCode, str]) -> dict:
    """Get user-facing message and remediation for error code.

    Args:
        error_code: Error code to look up

    Returns:
        Dict with 'message' and 'remediation' keys
    """
    try:
        code = ErrorCode(error_code)
    except ValueError:
        code = ErrorCode.UNKNOWN_ERROR
    return ERROR_CODE_MESSAGES.get(code, ERROR_CODE_MESSAGES[ErrorCode.UNKNOWN_ERROR])
