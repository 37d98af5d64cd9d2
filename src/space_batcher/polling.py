"""Bounded polling with a fixed interval and attempt budget."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class PollStatus(Enum):
    """State of a polled condition."""

    READY = "ready"  # condition met
    STILL_PENDING = "pending"  # checked, not met yet
    GAVE_UP = "gave_up"  # attempt budget exhausted while still pending


@dataclass
class PollResult(Generic[T]):
    """Outcome of ``poll_until``."""

    status: PollStatus
    attempts: int
    value: T | None = None  # last value returned by the check

    @property
    def ready(self) -> bool:
        return self.status is PollStatus.READY


async def poll_until(
    check: Callable[[], Awaitable[tuple[PollStatus, T]]],
    *,
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PollResult[T]:
    """
    Call ``check`` until it reports READY or the attempt budget runs out.

    Waits ``interval`` seconds before every check. ``check`` returns a
    status (READY or STILL_PENDING) and the value it observed; exceptions
    raised by ``check`` propagate.

    Returns:
        READY with the attempt count and final value, or GAVE_UP after
        ``max_attempts`` pending checks
    """
    value: T | None = None
    for attempt in range(1, max_attempts + 1):
        await sleep(interval)
        status, value = await check()
        if status is PollStatus.READY:
            return PollResult(PollStatus.READY, attempt, value)
    return PollResult(PollStatus.GAVE_UP, max_attempts, value)
