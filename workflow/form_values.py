"""
Maps free-text form field labels to configured answers.
"""

import re
from typing import Dict, Optional, Tuple

from config import AnswersConfig

# Pattern classes, matched as substrings of the lower-cased label.
YEARS_EXPERIENCE_PATTERNS: Tuple[str, ...] = (
    "years of experience",
    "years experience",
    "how many years",
    "experience in years",
    "total experience",
)
SALARY_PATTERNS: Tuple[str, ...] = (
    "salary",
    "compensation",
    "expected salary",
    "salary expectation",
    "desired salary",
    "pay",
)
EXPERIENCE_PATTERNS: Tuple[str, ...] = (
    "experience",
    "background",
    "summary",
    "about",
    "describe yourself",
    "tell us about",
)
WORK_AUTHORIZATION_PATTERNS: Tuple[str, ...] = (
    "authorized to work",
    "work authorization",
    "legally authorized",
    "eligible to work",
    "work permit",
)
SPONSORSHIP_PATTERNS: Tuple[str, ...] = (
    "sponsorship",
    "visa sponsorship",
    "require sponsorship",
    "need sponsorship",
    "h1b",
)
RELOCATION_PATTERNS: Tuple[str, ...] = (
    "relocate",
    "relocation",
    "willing to move",
    "move to",
    "relocating",
)
NOTICE_PERIOD_PATTERNS: Tuple[str, ...] = (
    "notice period",
    "availability",
    "start date",
    "when can you start",
    "notice",
)

# (patterns, common-answers key consulted first, fallback answer)
CATEGORY_DEFAULTS = (
    (SPONSORSHIP_PATTERNS, "Do you require sponsorship?", "No"),
    (RELOCATION_PATTERNS, "Are you willing to relocate?", "Yes"),
    (NOTICE_PERIOD_PATTERNS, "What is your notice period?", "2 weeks"),
)

DEFAULT_YEARS_OF_EXPERIENCE = 3
_YEARS_RE = re.compile(r"(\d+)\s*years?", re.IGNORECASE)


def matches_pattern(label: str, patterns: Tuple[str, ...]) -> bool:
    return any(pattern in label for pattern in patterns)


class FormValueResolver:
    """
    Resolves the answer for a form field from its label.

    The checks run in a fixed order and the first match wins. Years of
    experience is tested before generic experience, since every "years of
    experience" label also contains "experience".
    """

    def __init__(self, answers: AnswersConfig):
        self.answers = answers

    @property
    def common_answers(self) -> Dict[str, str]:
        return self.answers.common_answers

    def years_of_experience(self) -> int:
        match = _YEARS_RE.search(self.answers.experience)
        return int(match.group(1)) if match else DEFAULT_YEARS_OF_EXPERIENCE

    def value_for(self, label: str) -> Optional[str]:
        """
        Returns the answer for `label`, or None when the field should be left unfilled.
        """
        label = label.lower().strip()
        if not label:
            return None

        if matches_pattern(label, YEARS_EXPERIENCE_PATTERNS):
            return str(self.years_of_experience())

        if matches_pattern(label, SALARY_PATTERNS):
            salary = self.answers.salary_expectation
            return f"{salary.min}-{salary.max} {salary.currency}"

        if matches_pattern(label, EXPERIENCE_PATTERNS):
            return self.answers.experience

        for question, answer in self.common_answers.items():
            question = question.lower().strip()
            if question and (question in label or label in question):
                return answer

        if matches_pattern(label, WORK_AUTHORIZATION_PATTERNS):
            return (
                self.answers.work_authorization
                or self.common_answers.get("Are you authorized to work in the US?")
                or "Yes"
            )

        for patterns, answer_key, default in CATEGORY_DEFAULTS:
            if matches_pattern(label, patterns):
                return self.common_answers.get(answer_key) or default

        return None

    def numeric_value_for(self, label: str) -> Optional[int]:
        """Answer for number inputs: minimum salary, or the years of experience."""
        label = label.lower().strip()
        if matches_pattern(label, SALARY_PATTERNS):
            return self.answers.salary_expectation.min
        if matches_pattern(label, YEARS_EXPERIENCE_PATTERNS):
            return self.years_of_experience()
        return None
