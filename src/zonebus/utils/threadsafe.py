"""Bridges for transport-owned threads calling into the agent's event loop."""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


def run_from_thread(
    loop: asyncio.AbstractEventLoop, coro: Coroutine[Any, Any, T]
) -> T:
    """Run a coroutine on ``loop`` and block the calling thread until it finishes.

    The calling thread stays blocked for as long as the coroutine does, so
    a coroutine waiting on a full queue throttles the caller.

    Args:
        loop: The agent's running event loop
        coro: Coroutine to execute on that loop

    Returns:
        The coroutine's result

    Raises:
        RuntimeError: If called from the loop's own thread (it would deadlock)
    """
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None

    if running is loop:
        coro.close()
        raise RuntimeError(
            "Thread-safe entry points must not be called from the event loop thread; "
            "await the coroutine variant instead"
        )

    return asyncio.run_coroutine_threadsafe(coro, loop).result()
