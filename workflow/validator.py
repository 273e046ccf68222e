from typing import Optional

from core.logger import get_structured_logger
from core.models import ValidationResult
from core.selector_resolver import SelectorResolver
from core.selectors import SELECTOR_GROUPS
from core.session import Session

ALREADY_APPLIED_REASON = "Already applied on LinkedIn"
EASY_APPLY_UNAVAILABLE_REASON = "Easy Apply not available"


class ApplicationValidator:
    """Read-only checks of the job page and the application modal."""

    def __init__(self, resolver: SelectorResolver):
        self.resolver = resolver
        self.logger = get_structured_logger(__name__)

    async def validate_prerequisites(self, session: Session) -> ValidationResult:
        if await self.resolver.has_any(session, SELECTOR_GROUPS["already_applied_indicators"]):
            return ValidationResult.skip(ALREADY_APPLIED_REASON)

        if not await self.resolver.has_any(session, SELECTOR_GROUPS["easy_apply_buttons"]):
            return ValidationResult.skip(EASY_APPLY_UNAVAILABLE_REASON)

        return ValidationResult.ok()

    async def validate_modal(self, session: Session) -> ValidationResult:
        if not await self.resolver.has_any(session, SELECTOR_GROUPS["application_modal"]):
            return ValidationResult.skip("Application modal not found")
        return ValidationResult.ok()

    async def validate_success(self, session: Session, timeout_ms: Optional[int] = None) -> ValidationResult:
        """Checks for a success indicator, polling up to `timeout_ms` when given."""
        if timeout_ms:
            found = await self.resolver.wait_for_any(session, SELECTOR_GROUPS["success_indicators"], timeout_ms)
        else:
            found = await self.resolver.resolve(session, SELECTOR_GROUPS["success_indicators"])
        if found is None:
            return ValidationResult.skip("Success confirmation not found")
        self.logger.debug("application_success_confirmed")
        return ValidationResult.ok()
