import pytest

from config import LoginConfig
from core.errors import ErrorCategory, FailureCode, WorkflowError
from core.selector_resolver import SelectorResolver
from core.selectors import selectors
from fakes import FakeElement
from workflow.captcha import CaptchaHandler
from workflow.login import FEED_URL, LOGIN_URL, LoginHandler

CREDENTIALS = LoginConfig(email="jane@example.com", password="s3cret")


class LinkedInPages:
    """Feed and login pages; `outcome` decides what submitting the form does."""

    def __init__(self, session, logged_in=False, outcome="success"):
        self.session = session
        self.logged_in = logged_in
        self.outcome = outcome
        self.email = FakeElement("email")
        self.password = FakeElement("password")
        self.skip = FakeElement("skip")
        session.on_goto = self.visit

    def visit(self, session, url):
        session.elements.clear()
        if url == FEED_URL and self.logged_in:
            session.show(selectors["global_nav"])
        elif url in (FEED_URL, LOGIN_URL):
            session.url = LOGIN_URL
            self.show_form()

    def show_form(self):
        self.session.show(selectors["email_input"], self.email)
        self.session.show(selectors["password_input"], self.password)
        self.session.show(selectors["login_submit"], FakeElement("sign_in", on_activate=self.submit))

    def submit(self, session):
        session.elements.clear()
        if self.outcome == "success":
            self.logged_in = True
            session.url = FEED_URL
            session.show(selectors["global_nav"])
            session.show(selectors["skip_button"], self.skip)
        elif self.outcome == "rejected":
            self.show_form()
            session.show(selectors["login_error_alert"])
        elif self.outcome == "captcha":
            session.url = "https://www.linkedin.com/checkpoint/challenge/123"
            session.show(selectors["captcha_internal"])

    def solve_captcha(self):
        self.logged_in = True
        self.session.elements.clear()
        self.session.url = FEED_URL
        self.session.show(selectors["global_nav"])


@pytest.fixture
def make_handler(fake_clock, timeouts, fast_delays, no_sleep, captcha_settings):
    def build(login_settings=CREDENTIALS, captcha_sleep=None):
        return LoginHandler(
            login_settings,
            SelectorResolver(sleep=fake_clock.sleep, clock=fake_clock),
            timeouts,
            fast_delays,
            captcha_handler=CaptchaHandler(captcha_settings, sleep=captcha_sleep or fake_clock.sleep, clock=fake_clock),
            sleep=no_sleep,
        )

    return build


@pytest.mark.asyncio
class TestLogin:
    async def test_active_session_is_reused(self, make_handler, fake_session):
        pages = LinkedInPages(fake_session, logged_in=True)

        assert await make_handler().login(fake_session) is False
        assert fake_session.visits == [FEED_URL]
        assert pages.email.value is None

    async def test_credentials_are_submitted(self, make_handler, fake_session):
        pages = LinkedInPages(fake_session)

        assert await make_handler().login(fake_session) is True
        assert fake_session.visits == [FEED_URL, LOGIN_URL]
        assert pages.email.value == "jane@example.com"
        assert pages.password.value == "s3cret"
        assert pages.skip.activations == 1

    async def test_missing_credentials(self, make_handler, fake_session):
        LinkedInPages(fake_session)

        with pytest.raises(WorkflowError) as exc_info:
            await make_handler(LoginConfig(email=None, password=None)).login(fake_session)

        error = exc_info.value
        assert error.code == FailureCode.LOGIN_FAILED
        assert error.category == ErrorCategory.AUTHENTICATION
        assert fake_session.visits == [FEED_URL]

    async def test_rejected_credentials(self, make_handler, fake_session):
        LinkedInPages(fake_session, outcome="rejected")

        with pytest.raises(WorkflowError) as exc_info:
            await make_handler().login(fake_session)

        assert exc_info.value.code == FailureCode.LOGIN_FAILED
        assert "rejected" in exc_info.value.message

    async def test_security_check_pauses_until_solved(self, make_handler, fake_session, fake_clock):
        pages = LinkedInPages(fake_session, outcome="captcha")

        async def captcha_sleep(seconds):
            await fake_clock.sleep(seconds)
            pages.solve_captcha()

        assert await make_handler(captcha_sleep=captcha_sleep).login(fake_session) is True
        assert fake_session.visits == [FEED_URL, LOGIN_URL, FEED_URL]

    async def test_missing_login_form(self, make_handler, fake_session):
        with pytest.raises(WorkflowError) as exc_info:
            await make_handler().login(fake_session)

        assert exc_info.value.message == "Login form not found"
