"""
Top-level orchestration of one Easy Apply application.

`WorkflowController.execute` drives a target from the job page through the
multi-step modal and maps every way that can end to an ApplicationResult.
The controller is the only component that writes target status, and it
writes it exactly once per execution (never for targets that are already
done). Failures are returned, not raised.
"""

import asyncio
import random
import time
from typing import Awaitable, Callable, Optional

from config import DelayConfig, TimeoutConfig, WorkflowConfig
from core.delays import random_delay
from core.error_handler import ErrorHandler
from core.errors import ErrorCategory, ErrorContext, ErrorSeverity, FailureCode, WorkflowError
from core.logger import bind_context, get_structured_logger
from core.metrics import MetricsCollector
from core.models import ApplicationResult, JobTarget, Outcome, StepResult, TargetRepository
from core.resilience import CircuitBreaker
from core.selector_resolver import SelectorResolver
from core.selectors import SELECTOR_GROUPS, selectors
from core.session import Session
from workflow.captcha import CaptchaHandler
from workflow.detection import DetectionMonitor
from workflow.step_processor import StepProcessor
from workflow.validator import ApplicationValidator

ENTRY_POINT_UNAVAILABLE_REASON = "Entry point unavailable"


class WorkflowController:
    def __init__(
        self,
        repository: TargetRepository,
        step_processor: StepProcessor,
        validator: ApplicationValidator,
        resolver: SelectorResolver,
        error_handler: ErrorHandler,
        breaker: CircuitBreaker,
        workflow_settings: WorkflowConfig,
        timeouts: TimeoutConfig,
        delays: DelayConfig,
        captcha_handler: Optional[CaptchaHandler] = None,
        detection_monitor: Optional[DetectionMonitor] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.repository = repository
        self.step_processor = step_processor
        self.validator = validator
        self.resolver = resolver
        self.error_handler = error_handler
        self.breaker = breaker
        self.max_steps = workflow_settings.max_steps
        self.timeouts = timeouts
        self.delays = delays
        self.captcha_handler = captcha_handler
        self.detection_monitor = detection_monitor
        self.metrics_collector = metrics_collector
        self.sleep = sleep
        self.rng = rng
        self.logger = get_structured_logger(__name__)

    async def execute(self, session: Session, target: JobTarget) -> ApplicationResult:
        """
        Applies to `target` in `session`.

        Never raises for workflow failures; cancellation still propagates.
        """
        target_logger = bind_context(self.logger, target_id=target.id, company=target.company)
        start = time.monotonic()
        target_logger.info("application_started", title=target.title)

        if self._has_completed(target, target_logger):
            target_logger.info("application_already_done")
            result = ApplicationResult(Outcome.ALREADY_DONE, target.id, reason="Already completed")
        else:
            try:
                result = await self._run(session, target, target_logger)
            except WorkflowError as e:
                result = self._failed(target, e, target_logger)
            except Exception as e:
                enhanced = self.error_handler.enhance_error(
                    e, target_id=target.id, url=self._location(session)
                )
                enhanced.code = enhanced.code or FailureCode.UNEXPECTED
                result = self._failed(target, enhanced, target_logger)

        if self.metrics_collector:
            self.metrics_collector.record_workflow_outcome(
                target.id,
                result.outcome.value,
                (time.monotonic() - start) * 1000,
                reason=result.reason,
                steps=result.steps_completed,
            )
        return result

    async def _run(self, session: Session, target: JobTarget, target_logger) -> ApplicationResult:
        if self.captcha_handler is not None:
            await self.captcha_handler.handle(session, target.id)

        if self.detection_monitor is not None:
            await self._guarded(
                lambda: self.detection_monitor.raise_if_detected(session, target.id),
                "detection_check",
                session,
                target,
            )

        validation = await self._guarded(
            lambda: self.validator.validate_prerequisites(session),
            "validate_prerequisites",
            session,
            target,
        )
        if not validation.is_valid:
            return self._skipped(target, validation.reason or "Validation failed", target_logger)

        entry = await self.resolver.resolve(session, SELECTOR_GROUPS["easy_apply_buttons"])
        if entry is None:
            return self._skipped(target, ENTRY_POINT_UNAVAILABLE_REASON, target_logger)

        await self._guarded(lambda: session.activate(entry), "activate_entry_point", session, target)
        await random_delay(self.delays.button_click, self.sleep, self.rng)

        await self._wait_for_container(session, target)
        modal = await self.validator.validate_modal(session)
        if not modal.is_valid:
            raise WorkflowError(
                "Application modal appeared but is not visible",
                context=self._context(session, target, ErrorCategory.PARSING, ErrorSeverity.MEDIUM),
                code=FailureCode.CONTAINER_TIMEOUT,
            )
        await random_delay(self.delays.page_load, self.sleep, self.rng)

        steps_completed = 0
        for step_number in range(1, self.max_steps + 1):
            outcome = await self._guarded(
                lambda step=step_number: self.step_processor.process_step(session, target, step),
                "process_step",
                session,
                target,
            )

            if outcome.result == StepResult.CONTINUE:
                steps_completed = step_number
                continue

            if outcome.result == StepResult.SUBMIT:
                return await self._finalize(session, target, steps_completed, target_logger)

            message = f"Application step {step_number} failed: {outcome.reason or 'unknown reason'}"
            if outcome.unfilled_fields:
                message += f" (unanswered fields: {', '.join(outcome.unfilled_fields)})"
            raise WorkflowError(
                message,
                context=self._context(
                    session,
                    target,
                    ErrorCategory.PARSING,
                    ErrorSeverity.MEDIUM,
                    step=step_number,
                    fields_filled=outcome.fields_filled_count,
                    unfilled_fields=outcome.unfilled_fields,
                ),
                code=FailureCode.STEP_ERROR,
            )

        target_logger.warning("application_max_steps_exceeded", max_steps=self.max_steps)
        raise WorkflowError(
            f"Reached the maximum of {self.max_steps} steps without finding a submit control",
            context=self._context(session, target, ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM, max_steps=self.max_steps),
            code=FailureCode.MAX_STEPS_EXCEEDED,
        )

    async def _guarded(self, operation, operation_name: str, session: Session, target: JobTarget):
        return await self.error_handler.execute_with_retry(
            operation,
            operation_name,
            breaker=self.breaker,
            target_id=target.id,
            url=self._location(session),
        )

    async def _wait_for_container(self, session: Session, target: JobTarget) -> None:
        timeout_ms = self.timeouts.modal_ms

        async def wait() -> None:
            await asyncio.wait_for(session.wait_for(selectors["application_modal"], timeout_ms), timeout_ms / 1000)

        try:
            await self.breaker.execute(wait)
        except WorkflowError:
            raise
        except Exception as e:
            raise WorkflowError(
                f"Application modal did not appear within {timeout_ms}ms",
                context=self._context(
                    session,
                    target,
                    ErrorCategory.TIMEOUT,
                    ErrorSeverity.MEDIUM,
                    selector=selectors["application_modal"],
                ),
                original_error=e,
                code=FailureCode.CONTAINER_TIMEOUT,
            ) from e

    async def _finalize(self, session: Session, target: JobTarget, steps_completed: int, target_logger) -> ApplicationResult:
        submit = await self.resolver.resolve(session, SELECTOR_GROUPS["submit_buttons"])
        if submit is None:
            raise self._submission_error(session, target, "Submit button not found")
        if not await session.is_enabled(submit):
            raise self._submission_error(session, target, "Submit button is disabled")

        # A submission is never retried: a repeated click could apply twice.
        try:
            await self.breaker.execute(session.activate, submit)
        except WorkflowError:
            raise
        except Exception as e:
            raise self._submission_error(session, target, f"Could not activate submit button: {e}") from e
        await random_delay(self.delays.submission, self.sleep, self.rng)

        confirmation = await self.validator.validate_success(session, timeout_ms=self.timeouts.submission_ms)
        if not confirmation.is_valid:
            raise self._submission_error(session, target, confirmation.reason or "Success confirmation not found")

        self._write(target, target_logger, lambda: self.repository.mark_applied(target.id))
        target_logger.info("application_submitted", steps=steps_completed + 1)
        await self._dismiss_modal(session, target, target_logger)
        return ApplicationResult(Outcome.APPLIED, target.id, steps_completed=steps_completed + 1)

    async def _dismiss_modal(self, session: Session, target: JobTarget, target_logger) -> None:
        async def close_button() -> None:
            close = await self.resolver.resolve(session, SELECTOR_GROUPS["close_buttons"])
            if close is None:
                raise LookupError("Modal close button not found")
            await session.activate(close)

        async def escape_key() -> None:
            await session.press_key("Escape")

        try:
            await self.error_handler.handle_graceful_degradation(
                close_button, escape_key, target_id=target.id, url=self._location(session)
            )
            await random_delay(self.delays.modal_close, self.sleep, self.rng)
        except Exception as e:
            target_logger.debug("application_modal_dismiss_failed", error=str(e))

    def _submission_error(self, session: Session, target: JobTarget, reason: str) -> WorkflowError:
        return WorkflowError(
            f"Submission failed: {reason}",
            context=self._context(session, target, ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM),
            code=FailureCode.SUBMISSION_FAILED,
        )

    def _context(
        self,
        session: Session,
        target: JobTarget,
        category: ErrorCategory,
        severity: ErrorSeverity,
        selector: Optional[str] = None,
        **data,
    ) -> ErrorContext:
        return ErrorContext(
            category=category,
            severity=severity,
            url=self._location(session),
            selector=selector,
            target_id=target.id,
            session_id=self.error_handler.session_id,
            additional_data=data,
        )

    def _has_completed(self, target: JobTarget, target_logger) -> bool:
        try:
            return self.repository.has_completed(target.id)
        except Exception as e:
            target_logger.error("repository_read_failed", error=str(e))
            return False

    def _write(self, target: JobTarget, target_logger, write: Callable[[], None]) -> None:
        try:
            write()
        except Exception as e:
            target_logger.error("repository_write_failed", error=str(e), error_type=type(e).__name__)

    def _skipped(self, target: JobTarget, reason: str, target_logger) -> ApplicationResult:
        target_logger.info("application_skipped", reason=reason)
        self._write(target, target_logger, lambda: self.repository.mark_skipped(target.id, reason))
        return ApplicationResult(Outcome.SKIPPED, target.id, reason=reason)

    def _failed(self, target: JobTarget, error: WorkflowError, target_logger) -> ApplicationResult:
        target_logger.error(
            "application_failed",
            error=error.message,
            code=error.code.value if error.code else None,
            category=error.category.value,
            severity=error.severity.value,
        )
        self._write(target, target_logger, lambda: self.repository.mark_error(target.id, error.message))
        return ApplicationResult(Outcome.FAILED, target.id, reason=error.message, error=error)

    @staticmethod
    def _location(session: Session) -> Optional[str]:
        try:
            return session.current_location()
        except Exception:
            return None
