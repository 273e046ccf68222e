from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol

from core.errors import FailureCode, WorkflowError


@dataclass(frozen=True)
class JobTarget:
    """Identity of one job posting driven through the application workflow."""

    id: str
    title: str
    company: str
    url: str
    location: Optional[str] = None


class TargetStatus(str, Enum):
    FOUND = "found"
    APPLIED = "applied"
    SKIPPED = "skipped"
    ERROR = "error"


class StepResult(str, Enum):
    CONTINUE = "continue"
    SUBMIT = "submit"
    ERROR = "error"


@dataclass
class StepOutcome:
    result: StepResult
    current_step: int
    fields_filled_count: int = 0
    unfilled_fields: List[str] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass
class ValidationResult:
    is_valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def skip(cls, reason: str) -> "ValidationResult":
        return cls(is_valid=False, reason=reason)


class Outcome(str, Enum):
    APPLIED = "applied"
    ALREADY_DONE = "already_done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ApplicationResult:
    outcome: Outcome
    target_id: str
    reason: Optional[str] = None
    error: Optional[WorkflowError] = None
    steps_completed: int = 0

    @property
    def success(self) -> bool:
        return self.outcome == Outcome.APPLIED

    @property
    def failure_code(self) -> Optional[FailureCode]:
        return self.error.code if self.error is not None else None


class TargetRepository(Protocol):
    """Persisted lifecycle status of targets; the workflow controller is its only writer."""

    def mark_applied(self, target_id: str) -> None: ...

    def mark_skipped(self, target_id: str, reason: str) -> None: ...

    def mark_error(self, target_id: str, message: str) -> None: ...

    def has_completed(self, target_id: str) -> bool: ...
