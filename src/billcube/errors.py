"""
Cube errors - centralized failure taxonomy.

Two families of failures are raised here:
- Configuration errors: unknown dimension/measure ids, bad filter operators,
  broken grouping specs. Fatal to the current computation.
- Serialization errors: raised at the serialize/deserialize boundary, before
  any cube math runs, so a host application can report "this report cannot
  be reopened" without blaming the underlying data.

Data errors (non-numeric measure values) are not represented: the engine
excludes such values per item instead of raising.

Each error has:
- ERROR_CODE: Unique identifier for logging/monitoring
- message: Human-readable description naming the offending id/kind
- to_dict(): Structured output for API responses
"""

from enum import Enum
from typing import Any, Dict, Optional


class CubeErrorCode(str, Enum):
    """Canonical error codes for cube failures."""
    # Configuration errors
    UNKNOWN_DIMENSION = "UNKNOWN_DIMENSION"
    UNKNOWN_MEASURE = "UNKNOWN_MEASURE"
    INVALID_FILTER = "INVALID_FILTER"
    INVALID_GROUPING = "INVALID_GROUPING"

    # Computation errors
    DESCRIPTOR_FAILURE = "DESCRIPTOR_FAILURE"

    # Serialization errors
    NOT_SERIALIZABLE = "NOT_SERIALIZABLE"
    MALFORMED_CONFIG = "MALFORMED_CONFIG"
    UNSUPPORTED_FUNCTION_KIND = "UNSUPPORTED_FUNCTION_KIND"


class CubeError(Exception):
    """
    Base class for all cube errors.

    Errors are hard failures: the operation that raised them (recompute,
    open report, save report) is aborted and no partial result is returned.
    """

    ERROR_CODE: CubeErrorCode = None  # Override in subclasses

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Any = None, code: Optional[CubeErrorCode] = None):
        """
        Args:
            message: Human-readable error message
            field: Config field that caused the error (e.g. "filters[0]")
            value: The offending id, kind or value
            code: Overrides the class-level ERROR_CODE
        """
        self.message = message
        self.field = field
        self.value = value
        if code is not None:
            self.ERROR_CODE = code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "error_code": self.ERROR_CODE.value if self.ERROR_CODE else None,
            "message": self.message,
        }
        if self.field is not None:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = self.value
        return result


class CubeConfigurationError(CubeError, ValueError):
    """Structural mistake in a cube configuration."""
    ERROR_CODE = CubeErrorCode.INVALID_GROUPING


class CubeComputationError(CubeError):
    """A descriptor function raised while the cube was being computed."""
    ERROR_CODE = CubeErrorCode.DESCRIPTOR_FAILURE


class SerializationError(CubeError):
    """A cube configuration could not be serialized or deserialized."""
    ERROR_CODE = CubeErrorCode.MALFORMED_CONFIG


class UnsupportedFunctionKindError(SerializationError):
    """A format or aggregation kind is not known to the function registry."""
    ERROR_CODE = CubeErrorCode.UNSUPPORTED_FUNCTION_KIND
