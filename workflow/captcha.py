"""
Manual-intervention pause for security challenges.

Challenges are never solved automatically. When one is on screen the
workflow waits, polling at a fixed interval, until a human has completed it
or the configured ceiling is reached.
"""

import asyncio
import time
from typing import Awaitable, Callable, Iterable, Optional

from config import CaptchaConfig
from core.errors import ErrorCategory, ErrorContext, ErrorSeverity, FailureCode, WorkflowError
from core.logger import get_structured_logger
from core.selectors import SELECTOR_GROUPS
from core.session import Session

CHALLENGE_TEXTS = (
    "security verification",
    "help us protect the linkedin community",
    "please complete this security check",
    "verify you're human",
    "are you a robot?",
)
CHALLENGE_URL_PATTERNS = ("/challenge", "/security", "/captcha", "/verification")
PROGRESS_LOG_INTERVAL_SECONDS = 30.0


class CaptchaHandler:
    def __init__(
        self,
        settings: CaptchaConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        expected_host: str = "linkedin.com",
    ):
        self.settings = settings
        self.sleep = sleep
        self.clock = clock
        self.expected_host = expected_host
        self.logger = get_structured_logger(__name__)

    async def _any_present(self, session: Session, candidates: Iterable[str]) -> bool:
        for selector in candidates:
            try:
                if await session.find(selector) is not None:
                    return True
            except Exception as e:
                self.logger.debug("captcha_selector_query_failed", selector=selector, error=str(e))
        return False

    async def detect(self, session: Session) -> bool:
        """True if a security challenge is currently shown."""
        if await self._any_present(session, SELECTOR_GROUPS["captcha_indicators"]):
            self.logger.warning("captcha_detected", method="selector")
            return True
        if await self._any_present(session, SELECTOR_GROUPS["challenge_pages"]):
            self.logger.warning("captcha_detected", method="challenge_page")
            return True

        try:
            body_text = (await session.text_content()).lower()
        except Exception as e:
            self.logger.debug("captcha_body_text_unavailable", error=str(e))
            body_text = ""
        if any(text in body_text for text in CHALLENGE_TEXTS):
            self.logger.warning("captcha_detected", method="text")
            return True

        location = session.current_location()
        if any(pattern in location for pattern in CHALLENGE_URL_PATTERNS):
            self.logger.warning("captcha_detected", method="url", url=location)
            return True

        return False

    async def is_valid_page(self, session: Session) -> bool:
        """The page after a challenge is a regular page of the expected site."""
        if self.expected_host not in session.current_location():
            return False
        return await self._any_present(
            session,
            list(SELECTOR_GROUPS["navigation_indicators"]) + list(SELECTOR_GROUPS["easy_apply_buttons"]),
        )

    async def wait_for_resolution(self, session: Session) -> bool:
        """Polls until the challenge is gone and a valid page shows, or the ceiling is hit."""
        start = self.clock()
        deadline = start + self.settings.timeout_seconds
        next_progress_log = start + PROGRESS_LOG_INTERVAL_SECONDS

        self.logger.warning("captcha_waiting_for_manual_resolution", timeout_seconds=self.settings.timeout_seconds)
        while self.clock() < deadline:
            if not await self.detect(session) and await self.is_valid_page(session):
                return True

            await self.sleep(self.settings.poll_interval_seconds)
            now = self.clock()
            if now >= next_progress_log:
                self.logger.info("captcha_still_waiting", remaining_seconds=int(max(deadline - now, 0)))
                next_progress_log = now + PROGRESS_LOG_INTERVAL_SECONDS
        return False

    async def handle(self, session: Session, target_id: Optional[str] = None) -> bool:
        """
        Pauses while a challenge is shown.

        Returns:
            True if a challenge was shown and has been resolved, False if none was shown.

        Raises:
            WorkflowError: if the challenge is still unresolved at the ceiling.
        """
        if not await self.detect(session):
            return False

        if await self.wait_for_resolution(session):
            self.logger.info("captcha_resolved")
            return True

        raise WorkflowError(
            f"Security check was not completed within {self.settings.timeout_seconds:.0f}s",
            context=ErrorContext(
                category=ErrorCategory.CAPTCHA,
                severity=ErrorSeverity.HIGH,
                url=session.current_location(),
                target_id=target_id,
            ),
            code=FailureCode.CAPTCHA_TIMEOUT,
        )
