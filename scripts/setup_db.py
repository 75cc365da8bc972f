#!/usr/bin/env python3
"""Initialize the admin database schema and seed the default plan table."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_settings
from src.api.db.plans import PlanRepository
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine, init_schema
from src.saas.tenant import PLAN_LIMITS, PLAN_PRICES

log = get_logger(__name__)


async def main() -> None:
    settings = get_settings()
    setup_logging(json_output=settings.log_json, level=settings.log_level)
    log.info("starting_schema_initialization")

    try:
        await init_schema()
        plans = PlanRepository(await get_engine())
        for plan, limits in PLAN_LIMITS.items():
            await plans.upsert(plan.value, PLAN_PRICES[plan], limits)
        log.info("schema_initialization_complete", plans=len(PLAN_LIMITS))
    except Exception as exc:
        log.error("schema_initialization_failed", error=str(exc))
        raise
    finally:
        await close_engine()


if __name__ == "__main__":
    asyncio.run(main())
