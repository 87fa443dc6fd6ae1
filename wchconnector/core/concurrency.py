"""Explicit async combinators used by the bulk and taxonomy operations.

``parallel_map`` runs a coroutine function over items with a concurrency cap
and returns one settled :class:`Outcome` per item, in input order.
``sequential_fold`` threads an accumulator through a coroutine step, one item
at a time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
A = TypeVar("A")


@dataclass(frozen=True)
class Outcome(Generic[T, R]):
    """Settled result of one item: either a value or an error."""

    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def parallel_map(
    fn: Callable[[T], Awaitable[R]],
    items: Sequence[T],
    limit: int,
) -> List[Outcome[T, R]]:
    """Apply ``fn`` to every item with at most ``limit`` calls in flight.

    Parameters
    ----------
    fn: Callable
        Coroutine function applied to each item.
    items: Sequence
        Items to process. Order of completion is not guaranteed, the order
        of the returned outcomes is.
    limit: int
        Maximum number of concurrent calls.

    Returns
    -------
    list of Outcome
        ``outcomes[i]`` belongs to ``items[i]``. A failing item never stops
        the others.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    if not items:
        return []

    semaphore = asyncio.Semaphore(limit)

    async def run(item: T) -> Outcome[T, R]:
        async with semaphore:
            try:
                return Outcome(item, value=await fn(item))
            except Exception as exc:
                logger.debug("Item %r failed: %s", item, exc)
                return Outcome(item, error=exc)

    return list(await asyncio.gather(*(run(item) for item in items)))


async def sequential_fold(
    step: Callable[[A, T], Awaitable[A]],
    items: Iterable[T],
    initial: A,
) -> A:
    """Fold ``items`` into an accumulator, awaiting each step before the next."""
    acc = initial
    for item in items:
        acc = await step(acc, item)
    return acc
