import random
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from config import (
    AnswersConfig,
    AppConfig,
    CaptchaConfig,
    DelayRange,
    LoggingConfig,
    ResilienceConfig,
    TimeoutConfig,
    WorkflowConfig,
    load_config,
)
from core.delays import pick_delay_ms, random_delay


class TestConfigValidation:
    def test_defaults(self):
        config = AppConfig()
        assert config.workflow.max_steps == 5
        assert config.resilience.max_attempts == 4
        assert config.circuit_breaker.failure_threshold == 3
        assert config.timeouts.modal_ms == 10000
        assert config.delays.between_applications.min_ms == 30000
        assert config.answers.salary_expectation.currency == "USD"

    def test_invalid_delay_range(self):
        with pytest.raises(ValidationError):
            DelayRange(min_ms=500, max_ms=500)
        with pytest.raises(ValidationError):
            DelayRange(min_ms=-1, max_ms=10)

    def test_invalid_resilience(self):
        with pytest.raises(ValidationError):
            ResilienceConfig(base_delay=5.0, max_delay=1.0)
        with pytest.raises(ValidationError):
            ResilienceConfig(jitter_ratio=1.5)

    def test_invalid_workflow_and_timeouts(self):
        with pytest.raises(ValidationError):
            WorkflowConfig(max_steps=0)
        with pytest.raises(ValidationError):
            TimeoutConfig(modal_ms=0)
        with pytest.raises(ValidationError):
            CaptchaConfig(timeout_seconds=1, poll_interval_seconds=2)

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            LoggingConfig(log_format="xml")

    def test_load_config_overrides(self):
        config = load_config(workflow=WorkflowConfig(max_steps=8))
        assert config.workflow.max_steps == 8

    def test_env_nested_delimiter(self, monkeypatch):
        monkeypatch.setenv("WORKFLOW__MAX_STEPS", "7")
        assert load_config().workflow.max_steps == 7

    def test_answers_file_is_merged(self, tmp_path):
        answers_file = tmp_path / "answers.yaml"
        answers_file.write_text(
            "What is your notice period?: 1 month\nAre you willing to relocate?: 'No'\n",
            encoding="utf-8",
        )

        answers = AnswersConfig(
            answers_file=answers_file,
            common_answers={"Are you willing to relocate?": "Yes"},
        )

        assert answers.common_answers["What is your notice period?"] == "1 month"
        assert answers.common_answers["Are you willing to relocate?"] == "Yes"

    def test_answers_file_must_be_mapping(self, tmp_path):
        answers_file = tmp_path / "answers.yaml"
        answers_file.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ValidationError):
            AnswersConfig(answers_file=answers_file)


class TestDelays:
    def test_pick_delay_is_within_range(self):
        rng = random.Random(3)
        delay_range = DelayRange(min_ms=100, max_ms=200)
        picks = [pick_delay_ms(delay_range, rng) for _ in range(50)]
        assert all(100 <= pick <= 200 for pick in picks)

    @pytest.mark.asyncio
    async def test_random_delay_sleeps_in_seconds(self):
        sleep = AsyncMock()

        delay_ms = await random_delay(DelayRange(min_ms=1000, max_ms=2000), sleep, random.Random(5))

        assert 1000 <= delay_ms <= 2000
        sleep.assert_awaited_once_with(delay_ms / 1000)
