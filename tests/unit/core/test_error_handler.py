import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import ResilienceConfig
from core.error_handler import RETRY_POLICIES, ErrorHandler
from core.errors import (
    CircuitOpenError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    FailureCode,
    WorkflowError,
)
from core.resilience import CircuitBreaker, RetryExecutor


@pytest.fixture
def handler(no_sleep):
    executor = RetryExecutor(sleep=no_sleep, rng=random.Random(1))
    return ErrorHandler(executor, settings=ResilienceConfig(), session_id="run_1")


def detected_error():
    return WorkflowError(
        "LinkedIn rate limit detected",
        context=ErrorContext(category=ErrorCategory.RATE_LIMIT, severity=ErrorSeverity.HIGH),
        code=FailureCode.DETECTED,
    )


class TestShouldRetry:
    def test_policy_table(self):
        assert RETRY_POLICIES[ErrorCategory.NETWORK] == 3
        assert RETRY_POLICIES[ErrorCategory.TIMEOUT] == 2
        assert RETRY_POLICIES[ErrorCategory.PARSING] == 1
        for category in (
            ErrorCategory.DETECTION,
            ErrorCategory.RATE_LIMIT,
            ErrorCategory.CAPTCHA,
            ErrorCategory.CONFIGURATION,
        ):
            assert RETRY_POLICIES[category] == 0

    def test_network_retries_three_times(self, handler):
        error = ConnectionError("connection reset")
        assert [handler.should_retry(error, attempt) for attempt in (1, 2, 3, 4)] == [True, True, True, False]

    def test_detection_is_never_retried(self, handler):
        assert not handler.should_retry(detected_error(), 1)

    def test_open_circuit_is_never_retried(self, handler):
        assert not handler.should_retry(CircuitOpenError("linkedin_ui", 30.0), 1)


@pytest.mark.asyncio
class TestExecuteWithRetry:
    async def test_returns_result(self, handler):
        operation = AsyncMock(return_value=42)
        assert await handler.execute_with_retry(operation, "read") == 42
        operation.assert_awaited_once()

    async def test_network_failure_uses_all_retries(self, handler):
        operation = AsyncMock(side_effect=ConnectionError("connection reset"))

        with pytest.raises(WorkflowError) as exc_info:
            await handler.execute_with_retry(operation, "activate", target_id="7", url="https://www.linkedin.com/jobs/view/7")

        error = exc_info.value
        assert operation.await_count == 4
        assert error.category == ErrorCategory.NETWORK
        assert error.attempts == 3
        assert error.context.additional_data["attempts"] == 4
        assert error.context.target_id == "7"
        assert error.code == FailureCode.RETRIES_EXHAUSTED
        assert isinstance(error.original_error, ConnectionError)

    async def test_parsing_failure_retried_once(self, handler):
        operation = AsyncMock(side_effect=Exception("Element not found"))

        with pytest.raises(WorkflowError) as exc_info:
            await handler.execute_with_retry(operation, "read_form")

        assert operation.await_count == 2
        assert exc_info.value.category == ErrorCategory.PARSING

    async def test_detection_failure_not_retried_and_keeps_code(self, handler):
        operation = AsyncMock(side_effect=detected_error())

        with pytest.raises(WorkflowError) as exc_info:
            await handler.execute_with_retry(operation, "detection_check", target_id="7")

        assert operation.await_count == 1
        assert exc_info.value.code == FailureCode.DETECTED
        assert exc_info.value.category == ErrorCategory.RATE_LIMIT
        assert exc_info.value.context.target_id == "7"

    async def test_recovers_after_transient_failure(self, handler):
        operation = AsyncMock(side_effect=[ConnectionError("connection reset"), "ok"])
        assert await handler.execute_with_retry(operation, "activate") == "ok"
        assert operation.await_count == 2

    async def test_open_breaker_short_circuits(self, handler):
        breaker = CircuitBreaker("linkedin_ui", failure_threshold=1)
        breaker.force_open()
        operation = AsyncMock(return_value="never")

        with pytest.raises(CircuitOpenError):
            await handler.execute_with_retry(operation, "activate", breaker=breaker)

        operation.assert_not_called()

    async def test_runs_inside_breaker(self, handler):
        breaker = CircuitBreaker("linkedin_ui", failure_threshold=10)
        operation = AsyncMock(side_effect=ConnectionError("connection reset"))

        with pytest.raises(WorkflowError):
            await handler.execute_with_retry(operation, "activate", breaker=breaker)

        assert breaker.stats.failures == 4


@pytest.mark.asyncio
class TestGracefulDegradation:
    async def test_fallback_on_low_severity(self, handler):
        primary = AsyncMock(side_effect=Exception("Element not found"))
        fallback = AsyncMock(return_value="fallback")

        assert await handler.handle_graceful_degradation(primary, fallback) == "fallback"
        fallback.assert_awaited_once()

    async def test_high_severity_is_raised(self, handler):
        primary = AsyncMock(side_effect=Exception("Account suspended"))
        fallback = AsyncMock(return_value="fallback")

        with pytest.raises(WorkflowError) as exc_info:
            await handler.handle_graceful_degradation(primary, fallback)

        assert exc_info.value.severity == ErrorSeverity.HIGH
        fallback.assert_not_called()


class TestEnhanceAndSummarize:
    def test_enhance_wraps_plain_exception(self, handler):
        enhanced = handler.enhance_error(ValueError("Unexpected token in JSON"), target_id="9")

        assert isinstance(enhanced, WorkflowError)
        assert enhanced.category == ErrorCategory.PARSING
        assert enhanced.context.session_id == "run_1"
        assert enhanced.context.target_id == "9"

    def test_enhance_returns_existing_workflow_error(self, handler):
        error = detected_error()
        assert handler.enhance_error(error) is error

    def test_summarize(self, handler):
        handler.logger = MagicMock()
        errors = [
            detected_error(),
            handler.enhance_error(ConnectionError("connection reset")),
            handler.enhance_error(ConnectionError("connection refused")),
        ]

        summary = handler.summarize(errors)

        assert summary["total_errors"] == 3
        assert summary["by_category"] == {"rate_limit": 1, "network": 2}
        assert summary["by_severity"]["high"] == 1
        handler.logger.info.assert_called_once()
