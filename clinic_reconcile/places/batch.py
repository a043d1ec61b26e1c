"""
Fixed-size concurrent batches with a pause between them.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

K = TypeVar("K")


async def batch_fetch(
    keys: Sequence[K],
    fetch_fn: Callable[[K], Awaitable[Any]],
    concurrency: int = 5,
    batch_delay: float = 0.2,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> List[Union[Any, BaseException]]:
    """
    Run ``fetch_fn`` over ``keys`` in batches of ``concurrency``.

    A failing request does not affect its batch-mates: its slot in the
    result holds the exception instead of a value.

    Args:
        keys: Request keys, in order
        fetch_fn: Coroutine function called once per key
        concurrency: Requests in flight per batch
        batch_delay: Seconds to wait between batches
        sleep: Sleep coroutine (injectable for tests)

    Returns:
        One result or exception per key, aligned with ``keys``
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    results: List[Union[Any, BaseException]] = []
    total_batches = (len(keys) + concurrency - 1) // concurrency

    for batch_number, start in enumerate(range(0, len(keys), concurrency), 1):
        batch = keys[start:start + concurrency]
        outcomes = await asyncio.gather(*(fetch_fn(key) for key in batch), return_exceptions=True)
        results.extend(outcomes)

        failures = sum(1 for outcome in outcomes if isinstance(outcome, BaseException))
        logger.debug(f"Batch {batch_number}/{total_batches}: {len(batch) - failures} ok, {failures} failed")

        if batch_number < total_batches and batch_delay > 0:
            await sleep(batch_delay)

    return results
