"""Background-task helpers for the network loops.

Provides:
- ``supervised_task`` - create_task wrapper that logs unexpected failures
- ``with_deadline``   - await with a timeout, mapping expiry to ``None``
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, TypeVar

from loguru import logger

T = TypeVar("T")


def supervised_task(
    coro: Awaitable[Any],
    *,
    name: str = "",
    component: str = "Task",
) -> asyncio.Task:
    """Run a component's background loop as a task and log how it ends.

    *component* is the log prefix of the owning component (``Multicast``,
    ``Ranger``).  The loops turn their own failures into terminal events,
    so an exception reaching here is a bug and is logged as an error rather
    than surfacing as "Task exception was never retrieved".
    """
    task = asyncio.create_task(coro, name=name or None)

    def _on_done(t: asyncio.Task) -> None:
        if t.cancelled():
            logger.debug("[Desp/{}] loop {!r} cancelled", component, t.get_name())
            return
        exc = t.exception()
        if exc is not None:
            logger.error(
                "[Desp/{}] loop {!r} died: {!r}",
                component, t.get_name(), exc,
            )
        else:
            logger.debug("[Desp/{}] loop {!r} finished", component, t.get_name())

    task.add_done_callback(_on_done)
    return task


async def with_deadline(aw: Awaitable[T], timeout: float) -> T | None:
    """Await *aw* for at most *timeout* seconds.

    Returns ``None`` when the deadline expires; every other exception
    propagates.
    """
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError:
        return None
