"""Plan limit lookups by plan name."""

from __future__ import annotations

import json

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.api.db.errors import translate_errors


class PlanRepository:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def find_limits(self, plan_name: str) -> dict[str, int] | None:
        """Declared limit table of ``plan_name``; ``None`` when absent or empty."""
        async with translate_errors("find_plan_limits", plan=plan_name):
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text("SELECT limits FROM plans WHERE lower(name) = lower(:name)"),
                    {"name": plan_name},
                )
                row = result.mappings().first()

        if row is None:
            return None
        limits = row["limits"]
        if isinstance(limits, str):
            limits = json.loads(limits)
        return dict(limits) if limits else None

    async def upsert(self, name: str, price: float, limits: dict[str, int]) -> None:
        """Insert a plan row, or replace the price and limits of an existing one."""
        async with translate_errors("upsert_plan", plan=name):
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        """
                        INSERT INTO plans (name, price, limits)
                        VALUES (:name, :price, CAST(:limits AS JSONB))
                        ON CONFLICT (name) DO UPDATE
                            SET price = EXCLUDED.price, limits = EXCLUDED.limits
                        """
                    ),
                    {"name": name, "price": price, "limits": json.dumps(limits)},
                )
