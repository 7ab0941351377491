"""Shared error taxonomy.

Error categories:
- Validation: INVALID_INPUT (never retried)
- Business: DUPLICATE_MEMBER, MEMBER_NOT_FOUND, RETURNER_NOT_IN_SYSTEM
- Record store: NOT_FOUND, INVALID_REQUEST (terminal); RATE_LIMITED,
  SERVER_ERROR, TIMEOUT (retried, then surfaced with retryable=True)
- System: CACHE_ERROR, CONFIGURATION_ERROR, INTERNAL_ERROR
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # Validation
    INVALID_INPUT = "INVALID_INPUT"

    # Business logic
    DUPLICATE_MEMBER = "DUPLICATE_MEMBER"
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    RETURNER_NOT_IN_SYSTEM = "RETURNER_NOT_IN_SYSTEM"

    # Record store
    NOT_FOUND = "NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    TIMEOUT = "TIMEOUT"

    # System
    CACHE_ERROR = "CACHE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


RETRYABLE_CODES = frozenset(
    {ErrorCode.RATE_LIMITED, ErrorCode.SERVER_ERROR, ErrorCode.TIMEOUT}
)
CRITICAL_CODES = frozenset(
    {
        ErrorCode.DUPLICATE_MEMBER,
        ErrorCode.CONFIGURATION_ERROR,
        ErrorCode.INTERNAL_ERROR,
    }
)
WARNING_CODES = frozenset({ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT})


def default_severity(code: ErrorCode) -> Severity:
    if code in CRITICAL_CODES:
        return Severity.CRITICAL
    if code in WARNING_CODES:
        return Severity.WARNING
    return Severity.INFO


class AppError(Exception):
    """Base exception carrying an error code and retryability."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        retryable: bool | None = None,
        severity: Severity | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable
        self.severity = severity or default_severity(code)
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Structured, machine-readable form for callers."""
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    @classmethod
    def from_exception(cls, exc: BaseException) -> "AppError":
        if isinstance(exc, AppError):
            return exc
        return cls(ErrorCode.INTERNAL_ERROR, str(exc) or type(exc).__name__)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


def is_critical_error(exc: BaseException) -> bool:
    """Whether an error should be escalated for operational follow-up."""
    if isinstance(exc, AppError):
        return exc.severity == Severity.CRITICAL
    return False
