"""Best-effort execution for secondary side effects."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Any, TypeVar

from src.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


async def best_effort(awaitable: Awaitable[T], event: str, **context: Any) -> T | None:
    """Await a secondary effect; log and swallow any failure.

    Used for writes that must never fail the primary operation (audit log
    inserts, mirror writes to the non-authoritative backend). Returns the
    awaited result, or ``None`` when it failed.
    """
    try:
        return await awaitable
    except Exception as exc:  # noqa: BLE001
        log.warning(
            "best_effort_failed",
            effect=event,
            error=str(exc),
            error_type=type(exc).__name__,
            **context,
        )
        return None
