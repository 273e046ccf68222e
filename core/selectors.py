from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Tuple

from core.errors import ConfigurationError


@dataclass(frozen=True)
class SelectorSet:
    """Ordered, non-empty fallback chain of selectors, highest priority first."""

    name: str
    candidates: Tuple[str, ...]

    def __post_init__(self):
        if not self.candidates:
            raise ConfigurationError(f"Selector set '{self.name}' has no candidates", selector_set=self.name)

    @classmethod
    def of(cls, name: str, candidates: Iterable[str]) -> "SelectorSet":
        return cls(name, tuple(candidates))

    def __iter__(self) -> Iterator[str]:
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)


selectors = {
    # Entry point on the job details page
    "easy_apply_button": ".jobs-apply-button--top-card",
    "easy_apply_button_fallback_1": ".jobs-apply-button",
    "easy_apply_button_fallback_2": '[data-control-name="jobdetails_topcard_inapply"]',

    # Application modal
    "application_modal": ".jobs-easy-apply-modal",
    "application_modal_content": ".jobs-easy-apply-content",
    "form_section": ".jobs-easy-apply-form-section__grouping",
    "form_element": ".jobs-easy-apply-form-element",
    "field_label": ".jobs-easy-apply-form-element__label",
    "option": "option",
    "listbox_option": '[role="option"]',

    # Modal navigation
    "next_button": 'button[aria-label="Continue to next step"]',
    "next_button_fallback": "button[data-easy-apply-next-button]",
    "submit_button": 'button[aria-label="Submit application"]',
    "submit_button_fallback": "button[data-easy-apply-submit-button]",
    "review_button": 'button[aria-label="Review your application"]',
    "close_button": 'button[aria-label="Dismiss"]',
    "close_button_fallback": ".jobs-easy-apply-modal__close-button",

    # Outcome indicators
    "success_modal": ".jobs-easy-apply-success-modal",
    "success_modal_by_test_id": '[data-test-modal-id="easy-apply-success-modal"]',
    "success_feedback": ".artdeco-inline-feedback--success",
    "error_message": ".jobs-easy-apply-form-element__error-message",
    "warning_feedback": ".artdeco-inline-feedback--warning",
    "error_form_element": ".jobs-easy-apply-form-element--error",
    "already_applied": ".jobs-details-top-card__apply-error",
    "already_applied_state": '[data-test-job-details-apply-state="APPLIED"]',

    # Security checks
    "captcha_container": ".captcha-container",
    "challenge_container": ".challenge-container",
    "captcha_by_test_id": '[data-test="captcha"]',
    "recaptcha_container": ".recaptcha-container",
    "captcha_id": "#captcha",
    "recaptcha_iframe": 'iframe[src*="recaptcha"]',
    "captcha_internal": "#captcha-internal",
    "challenge_page": ".challenge-page",
    "security_challenge_page": ".security-challenge-page",
    "security_challenge_by_test_id": '[data-test="security-challenge"]',

    # Detection
    "rate_limit_message": ".rate-limit-message",
    "too_many_requests": ".too-many-requests",
    "rate_limit_by_test_id": '[data-test="rate-limit"]',
    "bot_detection": ".bot-detection",
    "automated_behavior": ".automated-behavior",
    "bot_challenge_by_test_id": '[data-test="bot-challenge"]',
    "account_suspended": ".account-suspended",
    "account_restricted": ".account-restricted",
    "suspension_by_test_id": '[data-test="suspension"]',

    # Navigation
    "primary_navigation": 'nav[aria-label="Primary Navigation"]',
    "global_nav": ".global-nav",
    "global_nav_me": ".global-nav__me",

    # Login
    "email_input": "input#username",
    "password_input": "input#password",
    "login_submit": "button.btn__primary--large",
    "login_submit_fallback": 'button[type="submit"]',
    "login_error_alert": ".alert--error",
    "login_error_message": ".login-form__error-message",
    "login_input_error": ".form__input--error",
    "skip_button": 'button[aria-label="Skip"]',
}


def _group(name: str, *keys: str) -> SelectorSet:
    return SelectorSet.of(name, (selectors[key] for key in keys))


SELECTOR_GROUPS: Dict[str, SelectorSet] = {
    group.name: group
    for group in (
        _group("easy_apply_buttons", "easy_apply_button", "easy_apply_button_fallback_1", "easy_apply_button_fallback_2"),
        _group("application_modal", "application_modal", "application_modal_content", "form_section"),
        _group("next_buttons", "next_button", "next_button_fallback"),
        _group("submit_buttons", "submit_button", "submit_button_fallback", "review_button"),
        _group("close_buttons", "close_button", "close_button_fallback"),
        _group("success_indicators", "success_modal", "success_modal_by_test_id", "success_feedback"),
        _group("error_indicators", "error_message", "warning_feedback", "error_form_element"),
        _group("already_applied_indicators", "already_applied", "already_applied_state"),
        _group(
            "captcha_indicators",
            "captcha_container",
            "challenge_container",
            "captcha_by_test_id",
            "recaptcha_container",
            "captcha_id",
            "recaptcha_iframe",
            "captcha_internal",
        ),
        _group("challenge_pages", "challenge_page", "security_challenge_page", "security_challenge_by_test_id"),
        _group("rate_limit_indicators", "rate_limit_message", "too_many_requests", "rate_limit_by_test_id"),
        _group("bot_detection_indicators", "bot_detection", "automated_behavior", "bot_challenge_by_test_id"),
        _group("suspension_indicators", "account_suspended", "account_restricted", "suspension_by_test_id"),
        _group("navigation_indicators", "primary_navigation", "global_nav", "global_nav_me"),
        _group("email_inputs", "email_input"),
        _group("password_inputs", "password_input"),
        _group("login_submit_buttons", "login_submit", "login_submit_fallback"),
        _group("login_error_indicators", "login_error_alert", "login_error_message", "login_input_error"),
        _group("skip_buttons", "skip_button"),
    )
}
