"""
End-to-end run of the workflow against an in-memory three-step application
modal, with the real collaborators and a SQLite repository.
"""

import random
from unittest.mock import MagicMock

import pytest

from config import AnswersConfig, CaptchaConfig, CircuitBreakerConfig, ResilienceConfig
from core import database
from core.error_handler import ErrorHandler
from core.metrics import MetricsCollector
from core.models import JobTarget, Outcome, TargetStatus
from core.resilience import CircuitBreakerRegistry, RetryExecutor
from core.selector_resolver import SelectorResolver
from core.selectors import selectors
from fakes import FakeElement, FakeSession
from workflow.captcha import CaptchaHandler
from workflow.controller import WorkflowController
from workflow.detection import DetectionMonitor
from workflow.form_filler import NUMBER_INPUT, TEXT_INPUT, FormFiller
from workflow.form_values import FormValueResolver
from workflow.step_processor import StepProcessor
from workflow.validator import ApplicationValidator


def labelled(label, field_selector, field):
    return FakeElement(
        f"element:{label}",
        children={
            selectors["field_label"]: [FakeElement("label", text=label)],
            field_selector: [field],
        },
    )


class ApplicationModal:
    """Three steps: a summary, screening questions, then review and submit."""

    def __init__(self, session: FakeSession):
        self.session = session
        self.summary = FakeElement("summary")
        self.years = FakeElement("years")
        self.notice = FakeElement("notice")
        self.submissions = 0
        self.steps = [
            [labelled("Describe yourself", TEXT_INPUT, self.summary)],
            [
                labelled("How many years of experience do you have?", NUMBER_INPUT, self.years),
                labelled("What is your notice period?", TEXT_INPUT, self.notice),
            ],
            [],
        ]
        session.show(selectors["easy_apply_button"], FakeElement("easy_apply", on_activate=lambda s: self.open()))

    def open(self):
        self.session.show(selectors["application_modal"])
        self.show_step(0)

    def show_step(self, index):
        section = FakeElement("section", children={selectors["form_element"]: self.steps[index]})
        self.session.elements[selectors["form_section"]] = [section]
        self.session.hide(selectors["next_button"])
        self.session.hide(selectors["submit_button"])
        if index < len(self.steps) - 1:
            self.session.show(
                selectors["next_button"],
                FakeElement(f"next:{index}", on_activate=lambda s: self.show_step(index + 1)),
            )
        else:
            self.session.show(selectors["submit_button"], FakeElement("submit", on_activate=lambda s: self.submit()))

    def submit(self):
        self.submissions += 1
        self.session.hide(selectors["application_modal"])
        self.session.show(selectors["success_modal"])
        self.session.show(selectors["close_button"])


@pytest.fixture
def conn():
    connection = database.setup_database(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def target(conn):
    job = JobTarget(id="3901", title="Python Engineer", company="Acme", url="https://www.linkedin.com/jobs/view/3901")
    database.save_found_targets([job], conn)
    return job


@pytest.fixture
def controller(conn, fast_delays, timeouts, workflow_settings, fake_clock):
    metrics = MetricsCollector()
    resolver = SelectorResolver(sleep=fake_clock.sleep, clock=fake_clock)
    repository = MagicMock(wraps=database.SqliteTargetRepository(conn))
    form_filler = FormFiller(
        FormValueResolver(AnswersConfig(experience="6 years of experience with Python", common_answers={})),
        fast_delays,
        sleep=fake_clock.sleep,
    )
    return WorkflowController(
        repository=repository,
        step_processor=StepProcessor(form_filler, resolver, fast_delays, sleep=fake_clock.sleep),
        validator=ApplicationValidator(resolver),
        resolver=resolver,
        error_handler=ErrorHandler(
            RetryExecutor(metrics, sleep=fake_clock.sleep, rng=random.Random(0)),
            settings=ResilienceConfig(),
            session_id="run_test",
        ),
        breaker=CircuitBreakerRegistry(CircuitBreakerConfig(), metrics, clock=fake_clock).get_breaker("linkedin_ui"),
        workflow_settings=workflow_settings,
        timeouts=timeouts,
        delays=fast_delays,
        captcha_handler=CaptchaHandler(CaptchaConfig(), sleep=fake_clock.sleep, clock=fake_clock),
        detection_monitor=DetectionMonitor(),
        metrics_collector=metrics,
        sleep=fake_clock.sleep,
        rng=random.Random(0),
    )


@pytest.mark.asyncio
async def test_three_step_application_is_submitted_once(controller, conn, target):
    session = FakeSession(url=target.url)
    modal = ApplicationModal(session)

    result = await controller.execute(session, target)

    assert result.outcome == Outcome.APPLIED, result.reason
    assert result.steps_completed == 3
    assert modal.submissions == 1
    assert modal.summary.value == "6 years of experience with Python"
    assert modal.years.value == "6"
    assert modal.notice.value == "2 weeks"
    assert database.get_target_status(target.id, conn) == TargetStatus.APPLIED
    assert controller.repository.mark_applied.call_count == 1
    assert controller.repository.mark_error.call_count == 0
    assert controller.repository.mark_skipped.call_count == 0
    assert controller.metrics_collector.outcomes == {"applied": 1}


@pytest.mark.asyncio
async def test_second_run_is_already_done(controller, conn, target):
    session = FakeSession(url=target.url)
    modal = ApplicationModal(session)
    await controller.execute(session, target)

    result = await controller.execute(FakeSession(url=target.url), target)

    assert result.outcome == Outcome.ALREADY_DONE
    assert modal.submissions == 1
    assert controller.repository.mark_applied.call_count == 1


@pytest.mark.asyncio
async def test_unanswerable_question_fails_the_step(controller, conn, target):
    session = FakeSession(url=target.url)
    modal = ApplicationModal(session)
    modal.steps[1].append(labelled("Favourite colour", TEXT_INPUT, FakeElement("colour")))

    original_show_step = modal.show_step

    def show_step_with_error(index):
        original_show_step(index)
        if index == 1:
            session.show(selectors["error_message"])

    modal.show_step = show_step_with_error

    result = await controller.execute(session, target)

    assert result.outcome == Outcome.FAILED
    assert result.failure_code.value == "step_error"
    assert "favourite colour" in result.reason
    assert modal.submissions == 0
    assert database.get_target_status(target.id, conn) == TargetStatus.ERROR
