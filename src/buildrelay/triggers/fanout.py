"""Isolated concurrent fan-out.

Runs every branch to completion, then reports failures together. One
branch failing never cancels its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from typing import Any

from buildrelay.errors import TriggerError

logger = logging.getLogger("buildrelay.triggers.fanout")


async def gather_isolated(labels: Sequence[str], branches: Sequence[Awaitable[Any]]) -> list[Any]:
    """Await all ``branches`` and return their results in order.

    Raises:
        TriggerError: After every branch has finished, if any of them
            raised. ``results`` holds each branch's value or exception.
    """
    if not branches:
        return []

    results = await asyncio.gather(*branches, return_exceptions=True)

    errors: list[BaseException] = []
    for label, result in zip(labels, results):
        if isinstance(result, BaseException):
            logger.warning("Branch %s failed: %r", label, result)
            errors.append(result)

    if errors:
        raise TriggerError(list(results), errors)
    return list(results)
