"""Helpers for calling engagement updates from user-facing request handlers."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


async def run_engagement_hook(coro: Awaitable[T], label: str) -> T | None:
    """Await an engagement update without letting it fail the triggering action.

    A reflection save must succeed even when the streak or badge update that
    follows it does not. Failures are logged and ``None`` is returned.
    """
    try:
        return await coro
    except Exception as exc:  # noqa: BLE001
        logger.warning("engagement_hook_failed", hook=label, error=str(exc), exc_info=exc)
        return None
