"""
Async wrappers for the blocking Docker SDK.

The docker SDK is synchronous. Every call made from the event loop goes
through async_docker_call so a slow daemon suspends the reconciliation pass
instead of blocking the loop.

Usage:
    container = await async_docker_call(client.containers.get, "web")
    await async_docker_call(container.stop, timeout=10)

The per-call deadline is controlled by the keyword-only `call_timeout`
argument (it is NOT passed through to the wrapped function, so SDK methods
that take their own `timeout` keyword keep working).
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Used when the caller does not pass call_timeout explicitly
DEFAULT_CALL_TIMEOUT = 60.0


async def async_docker_call(
    func: Callable[..., Any],
    *args,
    call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT,
    **kwargs
) -> Any:
    """
    Run a blocking Docker SDK call in the default thread pool.

    Args:
        func: SDK callable (bound method or function)
        *args: Positional arguments for func
        call_timeout: Seconds before asyncio.TimeoutError is raised (None = no limit)
        **kwargs: Keyword arguments for func

    Returns:
        Whatever func returns

    Raises:
        asyncio.TimeoutError: If the call exceeds call_timeout
        Exception: Anything func raises is re-raised unchanged
    """
    loop = asyncio.get_running_loop()
    call = functools.partial(func, *args, **kwargs)
    future = loop.run_in_executor(None, call)

    if call_timeout is None:
        return await future

    try:
        return await asyncio.wait_for(future, timeout=call_timeout)
    except asyncio.TimeoutError:
        name = getattr(func, '__qualname__', repr(func))
        logger.warning(f"Docker call {name} exceeded {call_timeout}s")
        raise
