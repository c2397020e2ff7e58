# property_import/adapters/repos/properties.py
from __future__ import annotations

import json

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.types import CandidateRecord
from ...models import Orientation, Property, ReviewStatus


class PropertyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_external_id(self, external_id: str) -> Property | None:
        q = select(Property).where(Property.external_id == external_id).limit(1)
        return (await self.session.execute(q)).scalars().first()

    async def add(self, record: CandidateRecord) -> Property:
        """
        Insert only. Imports never mutate an existing row; the unique constraint on
        external_id surfaces as IntegrityError at flush time.
        """
        prop = Property(
            external_id=record.external_id,
            agency_reference=record.agency_reference,
            name_json=json.dumps(record.name, ensure_ascii=False),
            description_json=json.dumps(record.description, ensure_ascii=False),
            latitude=float(record.latitude),
            longitude=float(record.longitude),
            address=record.address,
            price=int(record.price),
            size=int(record.size),
            type=record.type,
            listing_type=record.listing_type,
            orientation=Orientation(record.orientation) if record.orientation else None,
            status=ReviewStatus(record.status),
            featured=record.featured,
            photos_json=json.dumps(record.photos, ensure_ascii=False),
            attributes_json=json.dumps(record.attributes, ensure_ascii=False),
            agency_id=record.agency_id,
            property_location_id=record.property_location_id,
            created_by=record.created_by,
        )
        self.session.add(prop)
        await self.session.flush()
        return prop

    async def count(self) -> int:
        return int((await self.session.execute(select(func.count()).select_from(Property))).scalar_one())
