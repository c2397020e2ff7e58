# property_import/service_layer/identity.py
from __future__ import annotations

import logging

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.repos.properties import PropertyRepository
from ..domain.identity import compute_external_id
from ..domain.types import PersistedProperty, SourceRecord
from ..errors import StoreUnavailableError
from .normalizer import TextNormalizer

log = logging.getLogger(__name__)


class ExternalIdentity:
    """
    Dedup key + lookup. The lookup is an optimization: the unique constraint on
    properties.external_id is what actually prevents double inserts.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], normalizer: TextNormalizer | None = None):
        self.session_maker = session_maker
        self.normalizer = normalizer

    @staticmethod
    def compute_id(record: SourceRecord) -> str:
        return compute_external_id(record.title, record.address, record.location)

    async def check_duplicate(self, external_id: str) -> PersistedProperty | None:
        try:
            async with self.session_maker() as session:
                prop = await PropertyRepository(session).find_by_external_id(external_id)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(f"Duplicate lookup failed for {external_id}: {e}") from e

        if prop is None:
            return None
        return PersistedProperty(
            id=prop.id,
            external_id=prop.external_id,
            address=prop.address,
            price=prop.price,
            type=prop.type,
            listing_type=prop.listing_type,
            created_at=prop.created_at,
        )

    async def extract_reference_code(self, record: SourceRecord) -> str | None:
        if self.normalizer is None:
            return None
        return await self.normalizer.extract_reference_code(record.title, record.description)
