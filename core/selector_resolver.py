"""
Ordered selector fallback resolution.

A single pass over the candidates: the first candidate that matches a
visible element wins and later candidates are never queried. Retries and
waits belong to the callers.
"""

import asyncio
import re
import time
from typing import Awaitable, Callable, Iterable, Optional

from core.logger import get_structured_logger
from core.session import ElementRef, Session

_VALID_START = re.compile(r"^[.#\[\]a-zA-Z0-9_:\-*]")


def is_valid_selector(selector: object) -> bool:
    """Cheap syntactic sanity check; rejects obviously malformed selector strings."""
    if not isinstance(selector, str) or not selector.strip():
        return False
    trimmed = selector.strip()
    return (
        bool(_VALID_START.match(trimmed))
        and ".." not in trimmed
        and "##" not in trimmed
        and not trimmed.endswith(",")
    )


class SelectorResolver:
    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sleep = sleep
        self.clock = clock
        self.logger = get_structured_logger(__name__)

    async def resolve(
        self,
        session: Session,
        candidates: Iterable[str],
        within: Optional[ElementRef] = None,
    ) -> Optional[ElementRef]:
        """
        Returns the element of the first candidate that is currently visible, or None.

        Per-candidate failures (malformed selector, detached element, a page in
        the middle of navigating) are logged and skipped.
        """
        candidates = list(candidates)
        if not candidates:
            self.logger.warning("selector_resolve_empty_candidates")
            return None

        for selector in candidates:
            if not is_valid_selector(selector):
                self.logger.debug("selector_invalid_skipped", selector=selector)
                continue
            try:
                element = await session.find(selector, within=within)
                if element is None:
                    continue
                if await session.is_visible(element):
                    self.logger.debug("selector_resolved", selector=selector)
                    return element
            except Exception as e:
                self.logger.debug("selector_query_failed", selector=selector, error=str(e))
                continue

        self.logger.debug("selector_unresolved", candidates=candidates)
        return None

    async def has_any(self, session: Session, candidates: Iterable[str]) -> bool:
        return await self.resolve(session, candidates) is not None

    async def wait_for_any(
        self,
        session: Session,
        candidates: Iterable[str],
        timeout_ms: int,
        poll_interval_ms: int = 200,
    ) -> Optional[ElementRef]:
        """Polls `resolve` until a candidate is visible or `timeout_ms` elapses."""
        candidates = list(candidates)
        deadline = self.clock() + timeout_ms / 1000
        while True:
            element = await self.resolve(session, candidates)
            if element is not None:
                return element
            if self.clock() >= deadline:
                return None
            await self.sleep(poll_interval_ms / 1000)
