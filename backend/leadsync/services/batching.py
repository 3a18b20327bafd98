from typing import Awaitable, Callable, Iterator, List, Sequence, TypeVar
import asyncio
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def fan_out(items: Sequence[T], batch_size: int, worker: Callable[[T], Awaitable[R]], label: str = "") -> List[R]:
    """Run ``worker`` over ``items`` in batches.

    All members of a batch run concurrently and the whole batch is awaited
    before the next one starts. Results keep input order.
    """
    results: List[R] = []
    total_batches = (len(items) + batch_size - 1) // batch_size
    for number, batch in enumerate(chunked(items, batch_size), start=1):
        logger.info(f"Processing {label} batch {number}/{total_batches} ({len(batch)} calls)")
        results.extend(await asyncio.gather(*(worker(item) for item in batch)))
    return results
