"""
Shared error handling for the access enforcer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class EnforcementException(Exception):
    """Base exception for the enforcement engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ModelError(EnforcementException):
    """Malformed or inconsistent model definition."""

    def __init__(self, message: str = "Invalid model", details: Optional[Dict[str, Any]] = None):
        super().__init__("MODEL_ERROR", message, details)


class CompileError(EnforcementException):
    """Malformed matcher or effect expression."""

    def __init__(self, message: str = "Expression compile failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("COMPILE_ERROR", message, details)


class EvalError(EnforcementException):
    """A single rule evaluation failed at runtime."""

    def __init__(self, message: str = "Expression evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("EVAL_ERROR", message, details)


class EnforceError(EnforcementException):
    """Request could not be decided (bad arity, unusable matcher)."""

    def __init__(self, message: str = "Enforcement failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("ENFORCE_ERROR", message, details)


class AdapterError(EnforcementException):
    """Persistence adapter failure."""

    def __init__(self, adapter: str, message: str = "Adapter error", details: Optional[Dict[str, Any]] = None):
        super().__init__("ADAPTER_ERROR", f"{adapter}: {message}", details)
