"""Async utilities for bridging blocking HTTP, git and file I/O to the event loop."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a worker thread without blocking the event loop.

    Every remote call and every git/file operation of the bridge goes through
    here, and callers await the result before issuing the next call, so the
    bridge never has more than one request in flight per component.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        units = await run_sync(client.fetch_units, query)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def gather_isolated(
    aws: Sequence[Awaitable[T]],
    labels: Sequence[str] | None = None,
) -> list[T | None]:
    """Run awaitables concurrently; a failure is logged and never cancels siblings.

    Args:
        aws: Awaitables to run.
        labels: Optional human-readable label per awaitable, used in the
            error log. Defaults to the positional index.

    Returns:
        Results in input order, with ``None`` in place of each failure.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    out: list[T | None] = []
    for idx, result in enumerate(results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            label = labels[idx] if labels else str(idx)
            logger.error("Task %s failed: %s", label, result)
            out.append(None)
        else:
            out.append(result)
    return out
