# property_import/adapters/repos/locations.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import PropertyLocation


class LocationRepository:
    """
    The location table is small (municipalities/districts), so matching is done
    in Python: SQLite's lower() is ASCII-only and names are mostly Cyrillic.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self) -> list[PropertyLocation]:
        q = select(PropertyLocation).order_by(PropertyLocation.name)
        return list((await self.session.execute(q)).scalars().all())

    async def ensure(self, name: str, parent_id: int | None = None) -> PropertyLocation:
        """Idempotent insert by name (used by the seeding script)."""
        q = select(PropertyLocation).where(PropertyLocation.name == name)
        loc = (await self.session.execute(q)).scalars().first()
        if loc is None:
            loc = PropertyLocation(name=name, parent_id=parent_id)
            self.session.add(loc)
            await self.session.flush()
        return loc
