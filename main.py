import asyncio
import os
import signal
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from playwright.async_api import async_playwright

from config import AppConfig, load_config
from core.database import (
    SqliteTargetRepository,
    count_todays_applications,
    get_application_stats,
    get_targets_by_status,
    save_found_targets,
    setup_database,
)
from core.delays import random_delay
from core.error_handler import ErrorHandler
from core.errors import WorkflowError
from core.logger import bind_context, get_structured_logger, setup_logging
from core.metrics import MetricsCollector
from core.models import ApplicationResult, JobTarget, Outcome, TargetStatus
from core.resilience import CircuitBreakerRegistry, CircuitState, RetryExecutor
from core.selector_resolver import SelectorResolver
from core.session import PageSession, Session
from workflow.captcha import CaptchaHandler
from workflow.controller import WorkflowController
from workflow.detection import DetectionMonitor
from workflow.form_filler import FormFiller
from workflow.form_values import FormValueResolver
from workflow.login import LoginHandler
from workflow.step_processor import StepProcessor
from workflow.validator import ApplicationValidator

SITE_BREAKER_NAME = "linkedin_ui"

logger = get_structured_logger(__name__)


def load_targets_file(path: Path) -> List[JobTarget]:
    """
    Reads targets from a YAML file holding a list of mappings with
    `id`, `title`, `company`, `url` and an optional `location`.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if not isinstance(data, list):
        raise ValueError(f"Targets file {path} must contain a list")

    targets = []
    for entry in data:
        targets.append(
            JobTarget(
                id=str(entry["id"]),
                title=entry["title"],
                company=entry["company"],
                url=entry["url"],
                location=entry.get("location"),
            )
        )
    return targets


def build_controller(
    app_config: AppConfig,
    conn: sqlite3.Connection,
    metrics_collector: MetricsCollector,
    session_id: Optional[str] = None,
) -> WorkflowController:
    """Wires the workflow collaborators for one run."""
    resolver = SelectorResolver()
    error_handler = ErrorHandler(
        RetryExecutor(metrics_collector),
        settings=app_config.resilience,
        session_id=session_id,
    )
    registry = CircuitBreakerRegistry(app_config.circuit_breaker, metrics_collector)
    form_filler = FormFiller(FormValueResolver(app_config.answers), app_config.delays)

    return WorkflowController(
        repository=SqliteTargetRepository(conn),
        step_processor=StepProcessor(form_filler, resolver, app_config.delays),
        validator=ApplicationValidator(resolver),
        resolver=resolver,
        error_handler=error_handler,
        breaker=registry.get_breaker(SITE_BREAKER_NAME),
        workflow_settings=app_config.workflow,
        timeouts=app_config.timeouts,
        delays=app_config.delays,
        captcha_handler=CaptchaHandler(app_config.captcha),
        detection_monitor=DetectionMonitor(),
        metrics_collector=metrics_collector,
    )


def build_login_handler(app_config: AppConfig) -> LoginHandler:
    return LoginHandler(
        app_config.login,
        SelectorResolver(),
        app_config.timeouts,
        app_config.delays,
        captcha_handler=CaptchaHandler(app_config.captcha),
    )


async def run_applications(
    controller: WorkflowController,
    session: Session,
    navigate,
    targets: List[JobTarget],
    app_config: AppConfig,
    stop_event: Optional[asyncio.Event] = None,
    sleep=asyncio.sleep,
) -> Dict[str, int]:
    """
    Drives `targets` through the controller one at a time.

    `navigate(url)` opens a target's page. Stops after
    `job_limits.max_applications_per_run` submitted applications, once
    `stop_event` is set, or when the site circuit breaker is open; these are
    only checked between targets, and targets not reached keep their status.
    """
    counts = {outcome.value: 0 for outcome in Outcome}
    errors = []
    limit = app_config.job_limits.max_applications_per_run
    breaker = controller.breaker

    for index, target in enumerate(targets):
        if stop_event is not None and stop_event.is_set():
            logger.warning("run_stopped", processed=index, remaining=len(targets) - index)
            break
        if counts[Outcome.APPLIED.value] >= limit:
            logger.info("run_application_limit_reached", limit=limit)
            break
        if breaker.state == CircuitState.OPEN:
            logger.warning(
                "run_stopped_circuit_open",
                breaker=breaker.name,
                retry_after=round(breaker.retry_after(), 1),
                remaining=len(targets) - index,
            )
            break

        target_logger = bind_context(logger, target_id=target.id)
        try:
            await navigate(target.url)
        except Exception as e:
            target_logger.error("target_navigation_failed", url=target.url, error=str(e))

        result: ApplicationResult = await controller.execute(session, target)
        counts[result.outcome.value] += 1
        if result.error is not None:
            errors.append(result.error)
        target_logger.info(
            "target_processed",
            outcome=result.outcome.value,
            reason=result.reason,
            steps=result.steps_completed,
        )

        if (
            index < len(targets) - 1
            and result.outcome != Outcome.ALREADY_DONE
            and breaker.state != CircuitState.OPEN
        ):
            await random_delay(app_config.delays.between_applications, sleep)

    if errors:
        controller.error_handler.summarize(errors)
    return counts


def _install_stop_handler(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    except NotImplementedError:
        logger.debug("signal_handlers_unavailable")


# --- Main Orchestrator ---
async def main():
    """Main orchestrator function for the Easy Apply workflow."""
    app_config = load_config()
    setup_logging(app_config.logging)

    session_id = f"run_{int(time.time())}"
    metrics_collector = MetricsCollector()
    stop_event = asyncio.Event()
    _install_stop_handler(stop_event)

    db_conn = None
    try:
        db_conn = setup_database(app_config.session.db_file)

        if app_config.session.targets_file:
            inserted = save_found_targets(load_targets_file(app_config.session.targets_file), db_conn)
            logger.info("targets_seeded", inserted=inserted, file=str(app_config.session.targets_file))

        logger.info("applications_today", count=count_todays_applications(db_conn))
        targets = get_targets_by_status(TargetStatus.FOUND, db_conn)
        if not targets:
            logger.info("no_targets_to_process")
            return

        controller = build_controller(app_config, db_conn, metrics_collector, session_id=session_id)
        os.makedirs(app_config.session.user_data_dir, exist_ok=True)

        async with async_playwright() as p:
            logger.info("browser_launching", user_data_dir=str(app_config.session.user_data_dir))
            context = await p.chromium.launch_persistent_context(
                str(app_config.session.user_data_dir),
                headless=app_config.session.browser_headless,
                ignore_https_errors=True,
                args=["--disable-setuid-sandbox", "--no-sandbox"],
            )
            try:
                page = context.pages[0] if context.pages else await context.new_page()
                session = PageSession(page, typing_delay_ms=app_config.session.typing_delay_ms)

                try:
                    await build_login_handler(app_config).login(session)
                except WorkflowError as e:
                    logger.error("run_aborted_login_failed", error=e.message, category=e.category.value)
                    return

                async def navigate(url: str) -> None:
                    await session.goto(url, app_config.timeouts.navigation_ms)

                counts = await run_applications(controller, session, navigate, targets, app_config, stop_event)
                logger.info("run_complete", **counts)
            finally:
                await context.close()

        logger.info("application_stats", **get_application_stats(db_conn))
    finally:
        metrics_collector.export_metrics_to_json(str(app_config.logging.metrics_file_path))
        if db_conn:
            db_conn.close()
            logger.info("database_connection_closed")


if __name__ == "__main__":
    asyncio.run(main())
