"""
Bounded fan-out helpers.

Every read or delete fan-out against the record store goes through
``gather_bounded`` so the number of in-flight store calls stays capped no
matter how many collections or records are involved.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar, Union

T = TypeVar("T")

Outcome = Union[T, Exception]


async def gather_bounded(
    calls: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
    shared: Optional[asyncio.Semaphore] = None
) -> List[Outcome]:
    """Run zero-argument coroutine factories with at most ``limit`` in flight.

    Results come back in the order of ``calls``. A call that raises yields its
    exception in place of a result; it never cancels its siblings.

    Args:
        calls: Coroutine factories to run
        limit: Maximum concurrent calls from this batch
        shared: Optional semaphore also acquired per call, bounding the total
            across several batches running at once

    Returns:
        One result or exception per call
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")

    local = asyncio.Semaphore(limit)

    async def _run(call: Callable[[], Awaitable[T]]) -> Outcome:
        async with local:
            try:
                if shared is None:
                    return await call()
                async with shared:
                    return await call()
            except Exception as e:
                return e

    return await asyncio.gather(*(_run(call) for call in calls))
