"""Deadline - race an operation against a timer.

The loser's result is discarded: once the deadline fires, a late answer
from the worker thread is never observed by the caller.
"""

import asyncio
import inspect
from typing import Any, Callable


class DeadlineExceeded(TimeoutError):
    """Raised when an operation does not finish before its deadline."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} exceeded its {timeout}s deadline")
        self.operation = operation
        self.timeout = timeout


async def run_with_deadline(func: Callable[..., Any], *args, timeout: float, operation: str = "operation") -> Any:
    """Run func(*args) and return its result, or raise DeadlineExceeded.

    Coroutine functions are awaited directly; blocking callables run in a
    worker thread so the event loop stays responsive.
    """
    if inspect.iscoroutinefunction(func):
        awaitable = func(*args)
    else:
        awaitable = asyncio.to_thread(func, *args)

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise DeadlineExceeded(operation, timeout) from None
