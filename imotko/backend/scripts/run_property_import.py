# scripts/run_property_import.py
from __future__ import annotations

import asyncio
import logging
import sys

from property_import.db import AsyncSessionLocal, engine
from property_import.models import Base, TriggerSource
from property_import.service_layer.use_cases.import_properties import ImportOrchestrator

log = logging.getLogger("run_property_import")


def _quiet_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


async def main(triggered_by: str) -> int:
    _quiet_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    orchestrator = ImportOrchestrator(AsyncSessionLocal)
    try:
        summary = await orchestrator.run(triggered_by)
    except Exception as e:
        log.error("Import failed: %s", e)
        return 1
    finally:
        await orchestrator.aclose()

    if summary.cancelled:
        return 1
    log.info(
        "Done: %d created, %d duplicates, %d failed",
        summary.stats.created, summary.stats.duplicates, summary.stats.failed,
    )
    return 0


if __name__ == "__main__":
    who = sys.argv[1] if len(sys.argv) > 1 else TriggerSource.manual.value
    sys.exit(asyncio.run(main(who)))
