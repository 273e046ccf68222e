"""
The narrow browser surface the workflow core depends on.

Workflow code only talks to a `Session`; `PageSession` implements it on top
of a Playwright page. Element references are opaque to callers.
"""

import random
from typing import Any, List, Optional, Protocol

from playwright.async_api import ElementHandle, Page

ElementRef = Any


class Session(Protocol):
    async def goto(self, url: str, timeout_ms: int) -> None: ...

    async def find(self, selector: str, within: Optional[ElementRef] = None) -> Optional[ElementRef]: ...

    async def find_all(self, selector: str, within: Optional[ElementRef] = None) -> List[ElementRef]: ...

    async def is_visible(self, element: ElementRef) -> bool: ...

    async def is_enabled(self, element: ElementRef) -> bool: ...

    async def wait_for(self, selector: str, timeout_ms: int) -> ElementRef: ...

    async def activate(self, element: ElementRef) -> None: ...

    async def set_text(self, element: ElementRef, value: str) -> None: ...

    async def select_option(self, element: ElementRef, value: str) -> None: ...

    async def is_checked(self, element: ElementRef) -> bool: ...

    async def text_content(self, element: Optional[ElementRef] = None) -> str: ...

    async def get_attribute(self, element: ElementRef, name: str) -> Optional[str]: ...

    async def press_key(self, key: str) -> None: ...

    def current_location(self) -> str: ...

    async def title(self) -> str: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...


class PageSession:
    """Session backed by a Playwright Page."""

    def __init__(self, page: Page, typing_delay_ms: int = 50, rng: Optional[random.Random] = None):
        self.page = page
        self.typing_delay_ms = typing_delay_ms
        self.rng = rng or random.Random()

    async def goto(self, url: str, timeout_ms: int) -> None:
        await self.page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")

    async def find(self, selector: str, within: Optional[ElementHandle] = None) -> Optional[ElementHandle]:
        root = within or self.page
        return await root.query_selector(selector)

    async def find_all(self, selector: str, within: Optional[ElementHandle] = None) -> List[ElementHandle]:
        root = within or self.page
        return await root.query_selector_all(selector)

    async def is_visible(self, element: ElementHandle) -> bool:
        return await element.is_visible()

    async def is_enabled(self, element: ElementHandle) -> bool:
        return await element.is_enabled()

    async def wait_for(self, selector: str, timeout_ms: int) -> ElementHandle:
        """
        Waits until `selector` is attached.

        Raises:
            playwright.async_api.TimeoutError: if it does not appear in time.
        """
        return await self.page.wait_for_selector(selector, timeout=timeout_ms, state="attached")

    async def activate(self, element: ElementHandle) -> None:
        await element.scroll_into_view_if_needed()
        await element.click()

    async def set_text(self, element: ElementHandle, value: str) -> None:
        await element.fill("")
        # Per-keystroke delay varies by +/-50% around the configured value.
        delay = self.typing_delay_ms * self.rng.uniform(0.5, 1.5)
        await element.type(value, delay=delay)

    async def select_option(self, element: ElementHandle, value: str) -> None:
        await element.select_option(value=value)

    async def is_checked(self, element: ElementHandle) -> bool:
        return await element.is_checked()

    async def text_content(self, element: Optional[ElementHandle] = None) -> str:
        if element is None:
            return await self.page.inner_text("body")
        return (await element.text_content()) or ""

    async def get_attribute(self, element: ElementHandle, name: str) -> Optional[str]:
        return await element.get_attribute(name)

    async def press_key(self, key: str) -> None:
        await self.page.keyboard.press(key)

    def current_location(self) -> str:
        return self.page.url

    async def title(self) -> str:
        return await self.page.title()

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self.page.evaluate(expression, arg)
