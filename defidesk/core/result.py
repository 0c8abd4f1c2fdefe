"""Success/failure result values returned by every public pipeline operation.

Public entry points never raise across their boundary. They return a
``Result`` holding either a value or a ``DefiPipelineError``; callers branch
on ``success`` (or call ``unwrap()`` where a failure is a programming error).
"""
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from defidesk.core.error_codes import DefiPipelineError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a pipeline operation."""
    success: bool
    value: Optional[T] = None
    error: Optional[DefiPipelineError] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: DefiPipelineError) -> "Result[T]":
        return cls(success=False, error=error)

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if not self.success:
            raise self.error
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        elif hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        elif isinstance(value, list):
            value = [v.to_dict() if hasattr(v, "to_dict") else v for v in value]
        return {
            "success": self.success,
            "value": value,
            "error": self.error.to_dict() if self.error else None,
        }
