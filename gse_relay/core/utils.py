"""Core utility functions shared across modules."""

from __future__ import annotations

import asyncio
from typing import Any, Callable


async def maybe_await(callback: Callable[..., Any], *args: Any) -> Any:
    """Invoke ``callback`` and await the result if it is a coroutine.

    Callbacks throughout the relay may be plain functions or coroutine
    functions; this keeps call sites uniform.
    """
    result = callback(*args)
    if asyncio.iscoroutine(result):
        return await result
    return result
