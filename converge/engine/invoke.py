"""Call helpers shared by the engine."""

import inspect
from typing import Any, Callable


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call ``fn`` and await the result if it is awaitable.

    Actions, probes and cleanups may be plain functions or coroutine
    functions; the engine treats both the same way.
    """
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
