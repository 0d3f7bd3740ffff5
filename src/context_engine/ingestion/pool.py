"""Bounded, pull-based async worker pool."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_bounded(
    items: Sequence[T],
    worker: Callable[[int, T], Awaitable[R]],
    *,
    limit: int,
) -> list[R]:
    """Run ``worker(index, item)`` for every item, at most *limit* at a time.

    ``min(limit, len(items))`` tasks pull the next index from a shared
    cursor until the list is exhausted, so peak in-flight calls never
    exceed *limit* however long *items* is.  Results keep input order.
    The first exception cancels the remaining workers and propagates.
    """
    if not items:
        return []

    results: list[R | None] = [None] * len(items)
    cursor = 0

    async def run() -> None:
        nonlocal cursor
        while cursor < len(items):
            i = cursor
            cursor += 1
            results[i] = await worker(i, items[i])

    width = max(1, min(limit, len(items)))
    tasks = [asyncio.create_task(run()) for _ in range(width)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return results  # type: ignore[return-value]
