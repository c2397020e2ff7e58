# scripts/init_db.py
from __future__ import annotations

import argparse
import asyncio

from property_import.adapters.repos.locations import LocationRepository
from property_import.db import async_session, engine
from property_import.models import Base


async def main(locations: list[str]) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("OK: created all tables (idempotent).")

    if not locations:
        return

    async with async_session() as session:
        repo = LocationRepository(session)
        for name in locations:
            await repo.ensure(name)
        await session.commit()
    print(f"OK: ensured {len(locations)} property locations.")


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Create tables and optionally seed property locations")
    ap.add_argument("--locations", default="", help="Comma-separated location names, e.g. 'Центар,Карпош,Аеродром'")
    args = ap.parse_args()

    names = [n.strip() for n in args.locations.split(",") if n.strip()]
    asyncio.run(main(names))
