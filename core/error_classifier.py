"""
Assigns a category and a severity to raised failures.

Categories come from the exception type first, then from keyword sets
matched against the lower-cased message and exception class name, in a fixed
priority order. Severity starts from a per-category base level and is only
ever escalated.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.errors import ErrorCategory, ErrorContext, ErrorSeverity, WorkflowError

# Checked in this order; the first category with a matching keyword wins.
CATEGORY_KEYWORDS: List[Tuple[ErrorCategory, Tuple[str, ...]]] = [
    (
        ErrorCategory.NETWORK,
        (
            "network",
            "connection",
            "econnreset",
            "econnrefused",
            "enotfound",
            "socket hang up",
            "net::err",
            "dns",
        ),
    ),
    (
        ErrorCategory.TIMEOUT,
        ("timeout", "timed out", "waiting for selector", "navigation timeout", "exceeded"),
    ),
    (
        ErrorCategory.AUTHENTICATION,
        ("login", "authentication", "unauthorized", "session expired", "sign in", "credentials", "401"),
    ),
    (
        ErrorCategory.PARSING,
        ("selector", "element not found", "no node found", "cannot read property", "parse", "unexpected token", "detached"),
    ),
    (
        ErrorCategory.RATE_LIMIT,
        ("rate limit", "too many requests", "429", "slow down", "try again later"),
    ),
    (
        ErrorCategory.DETECTION,
        ("blocked", "suspicious", "automated", "bot detected", "unusual activity", "restricted"),
    ),
    (
        ErrorCategory.CAPTCHA,
        ("captcha", "recaptcha", "challenge", "verify you're human", "security check", "security verification"),
    ),
    (
        ErrorCategory.CONFIGURATION,
        ("config", "configuration", "invalid setting", "missing required", "environment variable"),
    ),
]

BASE_SEVERITY: Dict[ErrorCategory, ErrorSeverity] = {
    ErrorCategory.CONFIGURATION: ErrorSeverity.FATAL,
    ErrorCategory.DETECTION: ErrorSeverity.HIGH,
    ErrorCategory.CAPTCHA: ErrorSeverity.HIGH,
    ErrorCategory.AUTHENTICATION: ErrorSeverity.HIGH,
    ErrorCategory.RATE_LIMIT: ErrorSeverity.HIGH,
    ErrorCategory.NETWORK: ErrorSeverity.MEDIUM,
    ErrorCategory.TIMEOUT: ErrorSeverity.MEDIUM,
    ErrorCategory.PARSING: ErrorSeverity.LOW,
    ErrorCategory.UNKNOWN: ErrorSeverity.LOW,
}

FATAL_KEYWORDS = ("fatal", "critical", "unrecoverable")
HIGH_KEYWORDS = ("blocked", "banned", "suspended", "access denied")


class ErrorClassifier:
    """
    Classifies exceptions and computes escalated severities.

    `session_critical_min_retry` tunes the "mid-target-processing" heuristic:
    an error counts as session critical when it carries a session id and a
    target id, points at a location or selector on the external site and
    happened after at least that many retries.
    """

    def __init__(self, session_critical_min_retry: int = 2, external_host: str = "linkedin.com"):
        self.session_critical_min_retry = session_critical_min_retry
        self.external_host = external_host

    def classify(self, error: BaseException) -> ErrorCategory:
        if isinstance(error, WorkflowError):
            return error.category
        if isinstance(error, (PlaywrightTimeoutError, asyncio.TimeoutError, TimeoutError)):
            return ErrorCategory.TIMEOUT
        if isinstance(error, ConnectionError):
            return ErrorCategory.NETWORK

        haystack = f"{type(error).__name__} {error}".lower()
        for category, keywords in CATEGORY_KEYWORDS:
            if any(keyword in haystack for keyword in keywords):
                return category
        return ErrorCategory.UNKNOWN

    def is_session_critical(self, context: ErrorContext) -> bool:
        if not context.session_id or not context.target_id:
            return False
        if context.retry_attempt < self.session_critical_min_retry:
            return False
        on_external_site = bool(context.url and self.external_host in context.url)
        return on_external_site or bool(context.selector)

    def severity(
        self,
        error: BaseException,
        category: ErrorCategory,
        context: Optional[ErrorContext] = None,
    ) -> ErrorSeverity:
        context = context or ErrorContext(category=category)
        message = str(error).lower()

        severity = BASE_SEVERITY.get(category, ErrorSeverity.LOW)
        if context.retry_attempt > 2:
            severity = severity.escalate()
        if any(keyword in message for keyword in FATAL_KEYWORDS):
            severity = ErrorSeverity.max(severity.escalate(), ErrorSeverity.FATAL)
        elif any(keyword in message for keyword in HIGH_KEYWORDS):
            severity = ErrorSeverity.max(severity, ErrorSeverity.HIGH)
        if self.is_session_critical(context):
            severity = severity.escalate()

        return ErrorSeverity.max(severity, context.severity)

    def build_context(self, error: BaseException, **fields) -> ErrorContext:
        """Returns a fully classified ErrorContext for `error`."""
        if isinstance(error, WorkflowError):
            context = error.context
            for name, value in fields.items():
                if value is not None and getattr(context, name, None) in (None, 0, {}):
                    setattr(context, name, value)
        else:
            context = ErrorContext(**fields)
            context.category = self.classify(error)
        context.raise_severity(self.severity(error, context.category, context))
        return context
