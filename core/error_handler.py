"""
Category-aware retry and error enhancement.

The ErrorHandler combines the RetryExecutor, an optional CircuitBreaker and
the ErrorClassifier: an operation is retried only as often as the policy for
the category of its latest failure allows, and when it finally fails the
caller receives a single WorkflowError with category, severity and attempt
count filled in.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

from config import ResilienceConfig
from core.error_classifier import ErrorClassifier
from core.errors import (
    CircuitOpenError,
    ErrorCategory,
    ErrorSeverity,
    FailureCode,
    WorkflowError,
)
from core.logger import bind_context, get_structured_logger
from core.resilience import CircuitBreaker, RetryConfig, RetryExecutor

T = TypeVar("T")

# Maximum number of retries after the first attempt, per category.
RETRY_POLICIES: Dict[ErrorCategory, int] = {
    ErrorCategory.NETWORK: 3,
    ErrorCategory.TIMEOUT: 2,
    ErrorCategory.PARSING: 1,
    ErrorCategory.AUTHENTICATION: 1,
    ErrorCategory.UNKNOWN: 1,
    ErrorCategory.DETECTION: 0,
    ErrorCategory.RATE_LIMIT: 0,
    ErrorCategory.CAPTCHA: 0,
    ErrorCategory.CONFIGURATION: 0,
}


class ErrorHandler:
    def __init__(
        self,
        retry_executor: RetryExecutor,
        classifier: Optional[ErrorClassifier] = None,
        settings: Optional[ResilienceConfig] = None,
        session_id: Optional[str] = None,
    ):
        self.retry_executor = retry_executor
        self.classifier = classifier or ErrorClassifier()
        self.session_id = session_id
        base = RetryConfig.from_settings(settings) if settings else RetryConfig()
        self.retry_config = base.with_overrides(retry_condition=self.should_retry)
        self.logger = get_structured_logger(__name__)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """True if a failure on attempt number `attempt` may be retried."""
        if isinstance(error, CircuitOpenError):
            return False
        category = self.classifier.classify(error)
        return attempt <= RETRY_POLICIES.get(category, 0)

    def enhance_error(self, error: BaseException, **context_fields: Any) -> WorkflowError:
        """
        Wraps `error` into a classified WorkflowError.

        An existing WorkflowError is enriched in place and returned, so its
        severity can only go up.
        """
        context_fields.setdefault("session_id", self.session_id)
        context = self.classifier.build_context(error, **context_fields)
        if isinstance(error, WorkflowError):
            return error
        return WorkflowError(str(error) or type(error).__name__, context=context, original_error=error)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        breaker: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
        **context_fields: Any,
    ) -> T:
        """
        Runs `operation` under the category retry policy, optionally inside `breaker`.

        Raises:
            WorkflowError: once retries are exhausted or declined.
        """
        config = retry_config or self.retry_config
        op_logger = bind_context(self.logger, operation=operation_name)

        if breaker is not None:
            async def guarded() -> T:
                return await breaker.execute(operation)
        else:
            guarded = operation

        result = await self.retry_executor.with_retry(
            guarded,
            config,
            operation_name=operation_name,
            context={k: v for k, v in context_fields.items() if v is not None},
        )
        if result.success:
            if result.attempts > 1:
                op_logger.info("operation_recovered", retries=result.attempts - 1)
            return result.result

        enhanced = self.enhance_error(result.error, retry_attempt=result.attempts - 1, **context_fields)
        enhanced.context.additional_data.setdefault("attempts", result.attempts)
        enhanced.context.additional_data.setdefault("total_time", round(result.total_time, 3))
        if enhanced.code is None and result.attempts > 1:
            enhanced.code = FailureCode.RETRIES_EXHAUSTED

        op_logger.error(
            "operation_failed_after_retries",
            error=enhanced.message,
            category=enhanced.category.value,
            severity=enhanced.severity.value,
            attempts=result.attempts,
        )
        if enhanced is result.error:
            raise enhanced
        raise enhanced from result.error

    async def handle_graceful_degradation(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
        **context_fields: Any,
    ) -> T:
        """
        Runs `primary`; on a low or medium severity failure runs `fallback` instead.

        Higher severities are raised as the enhanced WorkflowError.
        """
        try:
            return await primary()
        except Exception as e:
            enhanced = self.enhance_error(e, **context_fields)
            if enhanced.severity in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM):
                self.logger.warning(
                    "primary_operation_failed_using_fallback",
                    error=enhanced.message,
                    category=enhanced.category.value,
                    severity=enhanced.severity.value,
                )
                return await fallback()
            if enhanced is e:
                raise
            raise enhanced from e

    def summarize(self, errors: Iterable[WorkflowError]) -> Dict[str, Any]:
        """Counts errors by category and severity and logs the result."""
        by_category: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        total = 0
        for error in errors:
            total += 1
            by_category[error.category.value] = by_category.get(error.category.value, 0) + 1
            by_severity[error.severity.value] = by_severity.get(error.severity.value, 0) + 1

        summary = {"total_errors": total, "by_category": by_category, "by_severity": by_severity}
        self.logger.info("error_statistics", **summary)
        return summary
