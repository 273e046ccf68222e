"""
Error taxonomy for the application workflow.

Every failure that leaves a resilience wrapper is expressed as a
WorkflowError carrying an ErrorContext: a category (what kind of failure),
a severity (how bad it is) and the circumstances in which it happened.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import pybreaker


class ErrorCategory(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    PARSING = "parsing"
    AUTHENTICATION = "authentication"
    DETECTION = "detection"
    RATE_LIMIT = "rate_limit"
    CAPTCHA = "captcha"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    FATAL = "fatal"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def escalate(self) -> "ErrorSeverity":
        """Returns the next severity level, saturating at FATAL."""
        return _SEVERITY_ORDER[min(self.rank + 1, len(_SEVERITY_ORDER) - 1)]

    @classmethod
    def max(cls, a: "ErrorSeverity", b: "ErrorSeverity") -> "ErrorSeverity":
        return a if a.rank >= b.rank else b


_SEVERITY_ORDER = [ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH, ErrorSeverity.FATAL]


class FailureCode(str, Enum):
    """Machine-readable reason attached to a failed workflow outcome."""

    STEP_ERROR = "step_error"
    MAX_STEPS_EXCEEDED = "max_steps_exceeded"
    SUBMISSION_FAILED = "submission_failed"
    CONTAINER_TIMEOUT = "container_timeout"
    CAPTCHA_TIMEOUT = "captcha_timeout"
    DETECTED = "detected"
    RETRIES_EXHAUSTED = "retries_exhausted"
    LOGIN_FAILED = "login_failed"
    UNEXPECTED = "unexpected"


@dataclass
class ErrorContext:
    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.LOW
    timestamp: float = field(default_factory=time.time)
    url: Optional[str] = None
    selector: Optional[str] = None
    target_id: Optional[str] = None
    session_id: Optional[str] = None
    retry_attempt: int = 0
    additional_data: Dict[str, Any] = field(default_factory=dict)

    def raise_severity(self, severity: ErrorSeverity) -> None:
        """Raises the severity to at least `severity`; never lowers it."""
        self.severity = ErrorSeverity.max(self.severity, severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "url": self.url,
            "selector": self.selector,
            "target_id": self.target_id,
            "session_id": self.session_id,
            "retry_attempt": self.retry_attempt,
            "additional_data": dict(self.additional_data),
        }


class WorkflowError(Exception):
    """Base exception for categorized workflow failures."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None,
        code: Optional[FailureCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.original_error = original_error
        self.code = code

    @property
    def category(self) -> ErrorCategory:
        return self.context.category

    @property
    def severity(self) -> ErrorSeverity:
        return self.context.severity

    @property
    def attempts(self) -> int:
        return self.context.retry_attempt

    def __str__(self) -> str:
        return self.message


class ConfigurationError(WorkflowError, ValueError):
    """Invalid configuration, raised at construction time."""

    def __init__(self, message: str, **data: Any):
        super().__init__(
            message,
            context=ErrorContext(
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.FATAL,
                additional_data=data,
            ),
        )


class CircuitOpenError(WorkflowError, pybreaker.CircuitBreakerError):
    """Raised instead of invoking an operation while its circuit is open."""

    def __init__(self, breaker_name: str, retry_after: float):
        super().__init__(
            f"Circuit '{breaker_name}' is open; retry in {retry_after:.1f}s",
            context=ErrorContext(
                category=ErrorCategory.UNKNOWN,
                severity=ErrorSeverity.HIGH,
                additional_data={"breaker": breaker_name, "retry_after": retry_after},
            ),
        )
        self.breaker_name = breaker_name
        self.retry_after = retry_after
