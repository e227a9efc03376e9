from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

import anyio

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking call (SQLAlchemy session, redis) in a worker thread so the event loop stays free."""
    return await anyio.to_thread.run_sync(functools.partial(func, *args, **kwargs))
