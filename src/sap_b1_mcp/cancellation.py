# SAP B1 Query MCP Server
# File: cancellation.py
# Version: v1

"""Cooperative cancellation checks used at every suspension point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Optional, TypeVar

from .errors import QueryCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


def raise_if_cancelled(cancel_event: Optional[asyncio.Event], where: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info("Query cancelled %s", where)
        raise QueryCancelled(f"Request cancelled by user ({where})")


async def run_cancellable(
    awaitable: Awaitable[T],
    cancel_event: Optional[asyncio.Event],
    where: str,
) -> T:
    """Await ``awaitable`` unless cancel_event fires first.

    The HTTP timeout still bounds the call itself; this only makes sure a
    slow call does not delay a cancellation.
    """
    raise_if_cancelled(cancel_event, f"before {where}")
    if cancel_event is None:
        return await awaitable

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if not work.done():
        work.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await work
        raise_if_cancelled(cancel_event, f"during {where}")

    if cancel_event.is_set():
        if not work.cancelled():
            work.exception()  # consume; the cancellation wins
        raise_if_cancelled(cancel_event, f"after {where}")

    return work.result()
