import asyncio
import random
from typing import Awaitable, Callable, List, Optional

from config import DelayConfig
from core.delays import random_delay
from core.logger import get_structured_logger
from core.selectors import selectors
from core.session import ElementRef, Session
from workflow.form_values import FormValueResolver

TEXT_INPUT = 'input[type="text"], input[type="email"], input[type="tel"]'
NUMBER_INPUT = 'input[type="number"]'
TEXTAREA = "textarea"
SELECT = "select"
COMBOBOX = '[role="combobox"]'
RADIO_INPUT = 'input[type="radio"]'
CHECKBOX_INPUT = 'input[type="checkbox"]'
ANY_INPUT = "input, textarea, select"

logger = get_structured_logger(__name__)


class FormFiller:
    """
    Fills the fields of the current application step.

    Each field is handled independently: a field that cannot be read or
    written is logged and skipped, and never aborts the rest of the step.
    """

    def __init__(
        self,
        value_resolver: FormValueResolver,
        delays: DelayConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.value_resolver = value_resolver
        self.delays = delays
        self.sleep = sleep
        self.rng = rng

    async def fill_application_form(self, session: Session) -> int:
        """Fills every recognised field on the page; returns how many were filled."""
        filled = 0
        for element in await self._form_elements(session):
            if await self._fill_form_element(session, element):
                filled += 1
                await random_delay(self.delays.field_fill, self.sleep, self.rng)

        logger.info("form_fields_filled", count=filled)
        return filled

    async def get_unfilled_fields(self, session: Session) -> List[str]:
        """
        Labels of fields that have no configured answer.

        Best effort: requiredness is not inspected, so optional fields without
        an answer are reported too.
        """
        unfilled = []
        for element in await self._form_elements(session):
            try:
                label = await self._field_label(session, element)
            except Exception as e:
                logger.debug("field_label_read_failed", error=str(e))
                continue
            if label and self.value_resolver.value_for(label) is None:
                unfilled.append(label)
        return unfilled

    async def _form_elements(self, session: Session) -> List[ElementRef]:
        sections = await session.find_all(selectors["form_section"])
        if not sections:
            return await session.find_all(selectors["form_element"])

        elements = []
        for section in sections:
            elements.extend(await session.find_all(selectors["form_element"], within=section))
        return elements

    async def _field_label(self, session: Session, element: ElementRef) -> Optional[str]:
        label_element = await session.find(selectors["field_label"], within=element)
        if label_element is not None:
            text = (await session.text_content(label_element)).strip()
            if text:
                return text.lower()

        field = await session.find(ANY_INPUT, within=element)
        if field is not None:
            for attribute in ("aria-label", "placeholder"):
                value = await session.get_attribute(field, attribute)
                if value and value.strip():
                    return value.strip().lower()
        return None

    async def _fill_form_element(self, session: Session, element: ElementRef) -> bool:
        try:
            label = await self._field_label(session, element)
            if not label:
                return False

            field = await session.find(TEXT_INPUT, within=element)
            if field is not None:
                return await self._fill_text(session, field, label)

            field = await session.find(NUMBER_INPUT, within=element)
            if field is not None:
                return await self._fill_number(session, field, label)

            field = await session.find(TEXTAREA, within=element)
            if field is not None:
                return await self._fill_text(session, field, label)

            field = await session.find(SELECT, within=element)
            if field is not None:
                return await self._fill_select(session, field, label)

            field = await session.find(COMBOBOX, within=element)
            if field is not None:
                return await self._fill_combobox(session, field, label)

            if await session.find(RADIO_INPUT, within=element) is not None:
                return await self._fill_radio(session, element, label)

            field = await session.find(CHECKBOX_INPUT, within=element)
            if field is not None:
                return await self._fill_checkbox(session, field, label)

            return False
        except Exception as e:
            logger.warning("form_field_fill_failed", error=str(e), error_type=type(e).__name__)
            return False

    async def _fill_text(self, session: Session, field: ElementRef, label: str) -> bool:
        value = self.value_resolver.value_for(label)
        if not value:
            return False
        await session.set_text(field, value)
        logger.debug("text_field_filled", label=label, value=value[:50])
        return True

    async def _fill_number(self, session: Session, field: ElementRef, label: str) -> bool:
        value = self.value_resolver.numeric_value_for(label)
        if value is None:
            return False
        await session.set_text(field, str(value))
        logger.debug("number_field_filled", label=label, value=value)
        return True

    async def _fill_select(self, session: Session, field: ElementRef, label: str) -> bool:
        value = self.value_resolver.value_for(label)
        if not value:
            return False
        wanted = value.lower()

        for option in await session.find_all(selectors["option"], within=field):
            option_text = (await session.text_content(option)).strip().lower()
            option_value = (await session.get_attribute(option, "value")) or ""
            if wanted in option_text or wanted in option_value.strip().lower():
                await session.select_option(field, option_value)
                logger.debug("select_option_chosen", label=label, option=option_text)
                return True
        return False

    async def _fill_combobox(self, session: Session, field: ElementRef, label: str) -> bool:
        value = self.value_resolver.value_for(label)
        if not value:
            return False
        wanted = value.lower()

        await session.activate(field)
        await random_delay(self.delays.modal_close, self.sleep, self.rng)

        for option in await session.find_all(selectors["listbox_option"]):
            option_text = (await session.text_content(option)).strip().lower()
            if wanted in option_text:
                await session.activate(option)
                logger.debug("combobox_option_chosen", label=label, option=option_text)
                return True

        await session.press_key("Escape")
        return False

    async def _radio_label(self, session: Session, radio: ElementRef) -> str:
        label = await session.get_attribute(radio, "aria-label")
        if not label:
            radio_id = await session.get_attribute(radio, "id")
            if radio_id:
                label_element = await session.find(f'label[for="{radio_id}"]')
                if label_element is not None:
                    label = await session.text_content(label_element)
        if not label:
            label = await session.get_attribute(radio, "value")
        return (label or "").strip().lower()

    async def _fill_radio(self, session: Session, container: ElementRef, label: str) -> bool:
        value = self.value_resolver.value_for(label)
        if not value:
            return False
        wanted = value.lower()

        for radio in await session.find_all(RADIO_INPUT, within=container):
            radio_label = await self._radio_label(session, radio)
            if radio_label and wanted in radio_label:
                await session.activate(radio)
                logger.debug("radio_option_chosen", label=label, option=radio_label)
                return True
        return False

    async def _fill_checkbox(self, session: Session, field: ElementRef, label: str) -> bool:
        value = self.value_resolver.value_for(label)
        if not value:
            return False

        should_check = value.strip().lower() in ("yes", "true")
        if await session.is_checked(field) != should_check:
            await session.activate(field)
            logger.debug("checkbox_toggled", label=label, checked=should_check)
        return True
