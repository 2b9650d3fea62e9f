import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_with_concurrency(
    items: Iterable[T],
    limit: int,
    worker: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Run worker over items with at most ``limit`` calls in flight.

    A fixed pool of ``limit`` runners pulls items from one shared iterator, so
    dispatch follows input order and a new item starts only when a running one
    finishes. Results are returned in input order. Workers are not retried: the
    first uncaught exception cancels the remaining runners and is re-raised.
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be at least 1, got {limit}")

    items = list(items)
    results: list = [None] * len(items)
    pending = iter(enumerate(items))

    async def runner():
        for index, item in pending:
            results[index] = await worker(item)

    tasks = [asyncio.ensure_future(runner()) for _ in range(min(limit, len(items)))]
    if not tasks:
        return results
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return results
