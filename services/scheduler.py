from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar


T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_outcomes(*aws: Awaitable[Any]) -> list[Outcome[Any]]:
    """Run every awaitable to completion and report a value or error for each.

    A failing member never cancels its siblings.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    outcomes: list[Outcome[Any]] = []
    for result in results:
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            outcomes.append(Outcome(error=result))
        else:
            outcomes.append(Outcome(value=result))
    return outcomes


async def sleep_for(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    accept: Callable[[T], bool],
    attempts: int,
    interval: float,
) -> tuple[T | None, int]:
    """Poll ``fetch`` every ``interval`` seconds, up to ``attempts`` times.

    Returns the first accepted value and the attempt number, or ``(None, attempts)``.
    """
    for attempt in range(1, attempts + 1):
        await sleep_for(interval)
        value = await fetch()
        if accept(value):
            return value, attempt
    return None, attempts
