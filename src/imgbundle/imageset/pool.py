"""Bounded worker pool for independent, I/O-bound units of work."""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """Result or error of one unit, tagged with its input position."""

    index: int
    item: T
    result: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_bounded(
    items: Sequence[T],
    unit: Callable[[T], Awaitable[Any]],
    concurrency: int,
) -> List[Outcome[T]]:
    """Run unit over items with at most `concurrency` units in flight.

    A fixed set of workers pulls items from a shared queue and sends every
    outcome to a single collector. A failing unit does not stop the others.
    Outcomes are returned in input order, whatever the completion order.

    If the caller is cancelled, units already running finish, nothing more
    is dispatched, and the cancellation propagates.
    """
    if concurrency < 1:
        raise ValueError(f"Concurrency must be at least 1, got {concurrency}")

    pending = deque(enumerate(items))
    total = len(pending)
    completed: asyncio.Queue = asyncio.Queue()

    async def worker() -> None:
        while pending:
            index, item = pending.popleft()
            try:
                result = await unit(item)
            except Exception as e:
                await completed.put(Outcome(index, item, error=e))
            else:
                await completed.put(Outcome(index, item, result=result))

    workers = [asyncio.create_task(worker()) for _ in range(min(concurrency, total))]

    outcomes: List[Optional[Outcome[T]]] = [None] * total
    try:
        for _ in range(total):
            outcome = await completed.get()
            outcomes[outcome.index] = outcome
    except asyncio.CancelledError:
        pending.clear()
        await asyncio.gather(*workers, return_exceptions=True)
        raise

    await asyncio.gather(*workers)
    return outcomes  # type: ignore[return-value]
