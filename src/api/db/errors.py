"""Translate driver failures into ``RelationalQueryError``."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from src.core.exceptions import RelationalQueryError


@asynccontextmanager
async def translate_errors(operation: str, **context: Any) -> AsyncIterator[None]:
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        raise RelationalQueryError(f"{operation} failed: {exc}", context) from exc
