from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class LoggingConfig(BaseSettings):
    """Configuration for logging."""

    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_format: str = "json"  # json, console
    log_file_path: Optional[Path] = Path("./logs/application.log")
    metrics_file_path: Path = Path("./logs/metrics.json")

    @field_validator("log_format")
    @classmethod
    def format_must_be_known(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v


class LoginConfig(BaseSettings):
    """LinkedIn credentials, used only when the persistent session is not logged in."""

    email: Optional[str] = Field(None, validation_alias="LINKEDIN_EMAIL")
    password: Optional[str] = Field(None, validation_alias="LINKEDIN_PASSWORD")

    model_config = SettingsConfigDict(populate_by_name=True)

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.password)


class SessionConfig(BaseSettings):
    """Configuration for the browser session and local storage."""

    user_data_dir: Path = Path("./linkedin_session")
    db_file: str = "jobs.db"
    targets_file: Optional[Path] = None
    browser_headless: bool = False
    typing_delay_ms: int = 50


class ResilienceConfig(BaseSettings):
    """Configuration for retries with exponential backoff."""

    max_attempts: int = 4
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.25

    @model_validator(mode="after")
    def check_delays(self) -> "ResilienceConfig":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        if self.backoff_multiplier <= 0:
            raise ValueError("backoff_multiplier must be positive")
        if not (0.0 <= self.jitter_ratio < 1.0):
            raise ValueError("jitter_ratio must be in [0, 1)")
        return self


class CircuitBreakerConfig(BaseSettings):
    """Circuit breaker thresholds, tuned for a single rate-sensitive site."""

    failure_threshold: int = 3
    recovery_timeout: float = 300.0  # seconds
    monitoring_period: float = 600.0  # seconds
    success_threshold: int = 2

    @model_validator(mode="after")
    def check_thresholds(self) -> "CircuitBreakerConfig":
        if self.failure_threshold < 1 or self.success_threshold < 1:
            raise ValueError("failure_threshold and success_threshold must be at least 1")
        if self.recovery_timeout < 0 or self.monitoring_period <= 0:
            raise ValueError("recovery_timeout must be >= 0 and monitoring_period > 0")
        return self


class DelayRange(BaseModel):
    """A randomized human-pacing delay, in milliseconds."""

    min_ms: int
    max_ms: int

    @model_validator(mode="after")
    def check_range(self) -> "DelayRange":
        if self.min_ms < 0:
            raise ValueError("min_ms must be non-negative")
        if self.min_ms >= self.max_ms:
            raise ValueError(f"Invalid delay range: min_ms ({self.min_ms}) must be less than max_ms ({self.max_ms})")
        return self


class DelayConfig(BaseSettings):
    """Delay ranges approximating human pacing between UI actions."""

    button_click: DelayRange = DelayRange(min_ms=1000, max_ms=2000)
    form_field: DelayRange = DelayRange(min_ms=1500, max_ms=3000)
    field_fill: DelayRange = DelayRange(min_ms=300, max_ms=800)
    page_load: DelayRange = DelayRange(min_ms=1000, max_ms=2000)
    submission: DelayRange = DelayRange(min_ms=2000, max_ms=4000)
    modal_close: DelayRange = DelayRange(min_ms=500, max_ms=1000)
    between_applications: DelayRange = DelayRange(min_ms=30000, max_ms=60000)


class TimeoutConfig(BaseSettings):
    """Per-phase timeouts, in milliseconds."""

    modal_ms: int = 10000
    submission_ms: int = 4000
    selector_ms: int = 5000
    navigation_ms: int = 30000

    @model_validator(mode="after")
    def check_positive(self) -> "TimeoutConfig":
        for name in ("modal_ms", "submission_ms", "selector_ms", "navigation_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return self


class WorkflowConfig(BaseSettings):
    """Bounds of the multi-step application workflow."""

    max_steps: int = 5

    @field_validator("max_steps")
    @classmethod
    def max_steps_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_steps must be at least 1")
        return v


class CaptchaConfig(BaseSettings):
    """Manual-intervention pause settings."""

    timeout_seconds: float = 300.0
    poll_interval_seconds: float = 2.0

    @model_validator(mode="after")
    def check_poll(self) -> "CaptchaConfig":
        if self.poll_interval_seconds <= 0 or self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds and poll_interval_seconds must be positive")
        if self.poll_interval_seconds > self.timeout_seconds:
            raise ValueError("poll_interval_seconds must not exceed timeout_seconds")
        return self


class SalaryExpectation(BaseModel):
    min: int = 100000
    max: int = 130000
    currency: str = "USD"

    @model_validator(mode="after")
    def check_bounds(self) -> "SalaryExpectation":
        if self.min < 0 or self.max < self.min:
            raise ValueError("salary expectation requires 0 <= min <= max")
        return self


def _load_answers_file(path: Path) -> Dict[str, str]:
    """Loads a question -> answer mapping from a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Answers file {path} must contain a mapping")
    return {str(k): str(v) for k, v in data.items()}


class AnswersConfig(BaseSettings):
    """Configured answers used to fill application forms."""

    experience: str = "5 years of experience in software development"
    salary_expectation: SalaryExpectation = SalaryExpectation()
    work_authorization: Optional[str] = None
    common_answers: Dict[str, str] = {}
    answers_file: Optional[Path] = None

    @model_validator(mode="after")
    def merge_answers_file(self) -> "AnswersConfig":
        if self.answers_file is not None:
            merged = _load_answers_file(self.answers_file)
            merged.update(self.common_answers)
            self.common_answers = merged
        return self


class JobLimitsConfig(BaseSettings):
    """Settings for limiting how many targets are processed in one run."""

    max_applications_per_run: int = 10


class AppConfig(BaseSettings):
    """Root configuration class for the application."""

    logging: LoggingConfig = LoggingConfig()
    login: LoginConfig = LoginConfig()
    session: SessionConfig = SessionConfig()
    resilience: ResilienceConfig = ResilienceConfig()
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    delays: DelayConfig = DelayConfig()
    timeouts: TimeoutConfig = TimeoutConfig()
    workflow: WorkflowConfig = WorkflowConfig()
    captcha: CaptchaConfig = CaptchaConfig()
    answers: AnswersConfig = AnswersConfig()
    job_limits: JobLimitsConfig = JobLimitsConfig()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def load_config(**overrides: Any) -> AppConfig:
    """
    Builds a validated configuration from the environment and `.env`.

    Keyword overrides take precedence over environment values; any invalid
    value raises pydantic's ValidationError here rather than at first use.
    """
    return AppConfig(**overrides)
