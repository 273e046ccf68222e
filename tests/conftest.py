from unittest.mock import AsyncMock

import pytest

from config import CaptchaConfig, DelayConfig, DelayRange, TimeoutConfig, WorkflowConfig
from fakes import FakeClock, FakeSession


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Awaitable sleep replacement that records its calls."""
    return AsyncMock()


@pytest.fixture
def fast_delays():
    tiny = DelayRange(min_ms=1, max_ms=2)
    return DelayConfig(
        button_click=tiny,
        form_field=tiny,
        field_fill=tiny,
        page_load=tiny,
        submission=tiny,
        modal_close=tiny,
        between_applications=tiny,
    )


@pytest.fixture
def timeouts():
    return TimeoutConfig(modal_ms=500, submission_ms=400, selector_ms=500, navigation_ms=1000)


@pytest.fixture
def workflow_settings():
    return WorkflowConfig(max_steps=5)


@pytest.fixture
def captcha_settings():
    return CaptchaConfig(timeout_seconds=10, poll_interval_seconds=2)
