"""
Session check and credential login, run once before any target is processed.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional

from config import DelayConfig, LoginConfig, TimeoutConfig
from core.delays import random_delay
from core.errors import ErrorCategory, ErrorContext, ErrorSeverity, FailureCode, WorkflowError
from core.logger import get_structured_logger
from core.selector_resolver import SelectorResolver
from core.selectors import SELECTOR_GROUPS
from core.session import Session
from workflow.captcha import CaptchaHandler

FEED_URL = "https://www.linkedin.com/feed/"
LOGIN_URL = "https://www.linkedin.com/login"


class LoginHandler:
    def __init__(
        self,
        login_settings: LoginConfig,
        resolver: SelectorResolver,
        timeouts: TimeoutConfig,
        delays: DelayConfig,
        captcha_handler: Optional[CaptchaHandler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.login_settings = login_settings
        self.resolver = resolver
        self.timeouts = timeouts
        self.delays = delays
        self.captcha_handler = captcha_handler
        self.sleep = sleep
        self.rng = rng
        self.logger = get_structured_logger(__name__)

    async def is_logged_in(self, session: Session) -> bool:
        return await self.resolver.has_any(session, SELECTOR_GROUPS["navigation_indicators"])

    async def login(self, session: Session) -> bool:
        """Log into LinkedIn if no active session exists.

        Args:
            session: Session of the persistent browser context.

        Returns:
            True if credentials were submitted, False if an existing session was reused.

        Raises:
            WorkflowError: with code LOGIN_FAILED if no authenticated session
                could be established, or CAPTCHA_TIMEOUT if a security check
                after sign-in was not completed in time.
        """
        self.logger.info("login_session_check")
        await session.goto(FEED_URL, self.timeouts.navigation_ms)
        await self.resolver.wait_for_any(
            session,
            list(SELECTOR_GROUPS["navigation_indicators"]) + list(SELECTOR_GROUPS["email_inputs"]),
            self.timeouts.selector_ms,
        )

        if "linkedin.com/feed" in session.current_location() and await self.is_logged_in(session):
            self.logger.info("login_session_active")
            return False

        if not self.login_settings.has_credentials:
            raise self._failure(session, "No active LinkedIn session and no credentials configured")

        self.logger.info("login_started")
        await session.goto(LOGIN_URL, self.timeouts.navigation_ms)

        email_input = await self.resolver.wait_for_any(session, SELECTOR_GROUPS["email_inputs"], self.timeouts.selector_ms)
        password_input = await self.resolver.resolve(session, SELECTOR_GROUPS["password_inputs"])
        if email_input is None or password_input is None:
            raise self._failure(session, "Login form not found")

        await session.set_text(email_input, self.login_settings.email)
        await random_delay(self.delays.field_fill, self.sleep, self.rng)
        await session.set_text(password_input, self.login_settings.password)
        await random_delay(self.delays.field_fill, self.sleep, self.rng)

        submit = await self.resolver.resolve(session, SELECTOR_GROUPS["login_submit_buttons"])
        if submit is None:
            raise self._failure(session, "Login submit button not found")
        await session.activate(submit)
        await random_delay(self.delays.page_load, self.sleep, self.rng)

        await self.resolver.wait_for_any(
            session,
            list(SELECTOR_GROUPS["navigation_indicators"])
            + list(SELECTOR_GROUPS["captcha_indicators"])
            + list(SELECTOR_GROUPS["login_error_indicators"]),
            self.timeouts.navigation_ms,
        )

        if self.captcha_handler is not None and await self.captcha_handler.handle(session):
            await session.goto(FEED_URL, self.timeouts.navigation_ms)

        if not await self.is_logged_in(session):
            if await self.resolver.has_any(session, SELECTOR_GROUPS["login_error_indicators"]):
                raise self._failure(session, "LinkedIn rejected the configured credentials")
            raise self._failure(session, "Login did not reach an authenticated page")

        self.logger.info("login_succeeded")
        await self._skip_prompts(session)
        return True

    async def _skip_prompts(self, session: Session) -> None:
        skip = await self.resolver.resolve(session, SELECTOR_GROUPS["skip_buttons"])
        if skip is None:
            return
        try:
            await session.activate(skip)
        except Exception as e:
            self.logger.debug("login_skip_prompt_failed", error=str(e))

    def _failure(self, session: Session, message: str) -> WorkflowError:
        self.logger.error("login_failed", reason=message)
        return WorkflowError(
            message,
            context=ErrorContext(
                category=ErrorCategory.AUTHENTICATION,
                severity=ErrorSeverity.FATAL,
                url=session.current_location(),
            ),
            code=FailureCode.LOGIN_FAILED,
        )
