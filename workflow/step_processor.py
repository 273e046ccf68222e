import asyncio
import random
from typing import Awaitable, Callable, Optional

from config import DelayConfig
from core.delays import random_delay
from core.logger import bind_context, get_structured_logger
from core.models import JobTarget, StepOutcome, StepResult
from core.selector_resolver import SelectorResolver
from core.selectors import SELECTOR_GROUPS
from core.session import Session
from workflow.form_filler import FormFiller


class StepProcessor:
    """
    Executes one step of the application modal.

    Holds no state between invocations: the outcome of a step depends only on
    what the session shows. The processor never retries a step and never
    writes target status.
    """

    def __init__(
        self,
        form_filler: FormFiller,
        resolver: SelectorResolver,
        delays: DelayConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.form_filler = form_filler
        self.resolver = resolver
        self.delays = delays
        self.sleep = sleep
        self.rng = rng
        self.logger = get_structured_logger(__name__)

    async def process_step(self, session: Session, target: JobTarget, step_number: int) -> StepOutcome:
        step_logger = bind_context(self.logger, target_id=target.id, step=step_number)
        step_logger.debug("application_step_started")

        if await self.resolver.resolve(session, SELECTOR_GROUPS["submit_buttons"]) is not None:
            step_logger.info("application_final_step_reached")
            return StepOutcome(StepResult.SUBMIT, current_step=step_number)

        filled = await self.form_filler.fill_application_form(session)
        await random_delay(self.delays.page_load, self.sleep, self.rng)

        if await self.resolver.resolve(session, SELECTOR_GROUPS["error_indicators"]) is not None:
            unfilled = await self.form_filler.get_unfilled_fields(session)
            step_logger.warning(
                "application_step_validation_errors",
                fields_filled=filled,
                unfilled_fields=unfilled,
            )
            return StepOutcome(
                StepResult.ERROR,
                current_step=step_number,
                fields_filled_count=filled,
                unfilled_fields=unfilled,
                reason="Form validation errors on step",
            )

        next_button = await self.resolver.resolve(session, SELECTOR_GROUPS["next_buttons"])
        if next_button is None:
            step_logger.warning("application_step_next_unavailable", fields_filled=filled)
            return StepOutcome(
                StepResult.ERROR,
                current_step=step_number,
                fields_filled_count=filled,
                reason="Next button not available",
            )

        try:
            await session.activate(next_button)
        except Exception as e:
            step_logger.warning("application_step_next_click_failed", error=str(e))
            return StepOutcome(
                StepResult.ERROR,
                current_step=step_number,
                fields_filled_count=filled,
                reason=f"Could not activate next button: {e}",
            )

        await random_delay(self.delays.form_field, self.sleep, self.rng)
        step_logger.debug("application_step_advanced", fields_filled=filled)
        return StepOutcome(StepResult.CONTINUE, current_step=step_number, fields_filled_count=filled)
