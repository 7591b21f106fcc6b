"""Bounded execution of blocking calls to external systems."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from milesbridge.domain.errors import ExternalCallError

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)


async def bounded_call[T](
    func: Callable[..., T], *args: object, timeout: float, what: str
) -> T:
    """Run ``func`` in a worker thread and give up after ``timeout`` seconds.

    A timeout is reported as a retryable :class:`ExternalCallError`. The worker
    thread itself cannot be cancelled; its eventual result is discarded.
    """

    try:
        async with asyncio.timeout(timeout):
            return await asyncio.to_thread(func, *args)
    except TimeoutError as exc:
        log.warning("%s timed out after %.1fs", what, timeout)
        raise ExternalCallError(f"{what} timed out after {timeout:.1f}s", retryable=True) from exc
