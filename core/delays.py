import asyncio
import random
from typing import Awaitable, Callable, Optional

from config import DelayRange

Sleep = Callable[[float], Awaitable[None]]


def pick_delay_ms(delay_range: DelayRange, rng: Optional[random.Random] = None) -> int:
    rng = rng or random
    return rng.randint(delay_range.min_ms, delay_range.max_ms)


async def random_delay(
    delay_range: DelayRange,
    sleep: Sleep = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> int:
    """Waits a random human-paced interval from `delay_range`; returns the chosen milliseconds."""
    delay_ms = pick_delay_ms(delay_range, rng)
    await sleep(delay_ms / 1000)
    return delay_ms
