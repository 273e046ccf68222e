"""
Detects pages on which the site signals that automation should stop:
rate limiting, automated-behaviour flags, account suspension and error pages.
"""

from typing import Iterable, Optional, Tuple

from core.errors import ErrorCategory, ErrorContext, ErrorSeverity, FailureCode, WorkflowError
from core.logger import get_structured_logger
from core.selectors import SELECTOR_GROUPS
from core.session import Session

RATE_LIMIT_TEXTS = (
    "too many requests",
    "rate limit exceeded",
    "please try again later",
    "you've reached the limit",
    "slow down",
)
BOT_DETECTION_TEXTS = (
    "automated behavior detected",
    "suspicious activity",
    "unusual activity",
    "temporarily restricted",
)
SUSPENSION_TEXTS = (
    "account has been suspended",
    "account restricted",
    "violation of terms",
    "temporarily suspended",
)
ERROR_PAGE_URLS = ("linkedin.com/error",)
ERROR_PAGE_TITLES = ("page not found", "something went wrong", "access denied")

# (kind, selector group, texts, category, severity)
_CHECKS: Tuple[Tuple[str, str, Tuple[str, ...], ErrorCategory, ErrorSeverity], ...] = (
    ("rate limit", "rate_limit_indicators", RATE_LIMIT_TEXTS, ErrorCategory.RATE_LIMIT, ErrorSeverity.HIGH),
    ("automated behaviour", "bot_detection_indicators", BOT_DETECTION_TEXTS, ErrorCategory.DETECTION, ErrorSeverity.HIGH),
    ("account suspension", "suspension_indicators", SUSPENSION_TEXTS, ErrorCategory.AUTHENTICATION, ErrorSeverity.FATAL),
)


class DetectionMonitor:
    def __init__(self):
        self.logger = get_structured_logger(__name__)

    async def _first_present(self, session: Session, candidates: Iterable[str]) -> Optional[str]:
        for selector in candidates:
            try:
                if await session.find(selector) is not None:
                    return selector
            except Exception as e:
                self.logger.debug("detection_selector_query_failed", selector=selector, error=str(e))
        return None

    async def check(self, session: Session, target_id: Optional[str] = None) -> Optional[WorkflowError]:
        """Returns an error describing the first detected problem, or None."""
        location = session.current_location()
        try:
            body_text = (await session.text_content()).lower()
        except Exception as e:
            self.logger.debug("detection_body_text_unavailable", error=str(e))
            body_text = ""

        for kind, group, texts, category, severity in _CHECKS:
            selector = await self._first_present(session, SELECTOR_GROUPS[group])
            matched_text = next((text for text in texts if text in body_text), None)
            if selector is None and matched_text is None:
                continue

            method = "selector" if selector else "text"
            self.logger.error("site_detection_triggered", kind=kind, method=method, selector=selector, text=matched_text)
            return WorkflowError(
                f"LinkedIn {kind} detected" + (f': "{matched_text}"' if matched_text and not selector else ""),
                context=ErrorContext(
                    category=category,
                    severity=severity,
                    url=location,
                    selector=selector,
                    target_id=target_id,
                    additional_data={"detection_method": method},
                ),
                code=FailureCode.DETECTED,
            )

        if any(indicator in location for indicator in ERROR_PAGE_URLS):
            return self._error_page(f"LinkedIn error page detected: {location}", location, target_id)

        try:
            title = (await session.title()).lower()
        except Exception as e:
            self.logger.debug("detection_title_unavailable", error=str(e))
            title = ""
        if any(indicator in title for indicator in ERROR_PAGE_TITLES):
            return self._error_page(f"LinkedIn error detected in page title: {title}", location, target_id)

        return None

    def _error_page(self, message: str, location: str, target_id: Optional[str]) -> WorkflowError:
        self.logger.warning("site_error_page", url=location)
        return WorkflowError(
            message,
            context=ErrorContext(
                category=ErrorCategory.UNKNOWN,
                severity=ErrorSeverity.MEDIUM,
                url=location,
                target_id=target_id,
            ),
        )

    async def raise_if_detected(self, session: Session, target_id: Optional[str] = None) -> None:
        error = await self.check(session, target_id)
        if error is not None:
            raise error
