# property_import/service_layer/mapper.py
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.repos.properties import PropertyRepository
from ..config import Settings, settings
from ..domain.types import CandidateRecord, GeocodeResult, NormalizedListing, PersistedProperty, PhotoAsset
from ..errors import StoreUnavailableError
from ..models import ReviewStatus

log = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "name",
    "latitude",
    "longitude",
    "address",
    "price",
    "size",
    "description",
    "type",
    "listing_type",
)


class PropertyMapper:
    """
    NormalizedListing (+ geocode, photos, identity) -> CandidateRecord -> Property row.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        system_user_id: str | None = None,
        agency_id: str | None = None,
    ):
        self.session_maker = session_maker
        self.system_user_id = system_user_id
        self.agency_id = agency_id

    @classmethod
    def from_settings(cls, session_maker: async_sessionmaker[AsyncSession], s: Settings = settings) -> "PropertyMapper":
        return cls(session_maker, system_user_id=s.IMPORT_SYSTEM_USER_ID, agency_id=s.IMPORT_DEFAULT_AGENCY_ID)

    def to_record(
        self,
        normalized: NormalizedListing,
        geo: GeocodeResult,
        photos: list[PhotoAsset],
        *,
        external_id: str,
        address: str | None,
        agency_reference: str | None = None,
    ) -> CandidateRecord:
        return CandidateRecord(
            external_id=external_id,
            name=normalized.name.as_dict() if normalized.name.mk else None,
            # an empty description is still a description ({"mk": ""})
            description=normalized.description.as_dict(),
            latitude=geo.latitude,
            longitude=geo.longitude,
            address=(address or "").strip() or None,
            price=normalized.price,
            size=normalized.size,
            type=normalized.property_type,
            listing_type=normalized.listing_type,
            photos=[p.as_json() for p in photos],
            attributes=dict(normalized.attributes),
            agency_reference=agency_reference,
            property_location_id=geo.location_id,
            agency_id=self.agency_id,
            created_by=self.system_user_id or "system",
            status=ReviewStatus.pending.value,
            featured=False,
        )

    @staticmethod
    def validate(record: CandidateRecord) -> list[str]:
        """Missing required fields, in a stable order. Empty list == valid."""
        missing: list[str] = []
        for name in REQUIRED_FIELDS:
            value = getattr(record, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    async def persist(self, record: CandidateRecord) -> PersistedProperty | None:
        """
        One transaction per listing. Returns None when another writer already
        inserted the same external_id (treated as a duplicate, not an error).
        """
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    prop = await PropertyRepository(session).add(record)
                    persisted = PersistedProperty(
                        id=prop.id,
                        external_id=prop.external_id,
                        address=prop.address,
                        price=prop.price,
                        type=prop.type,
                        listing_type=prop.listing_type,
                        created_at=prop.created_at,
                    )
        except IntegrityError as e:
            if record.external_id and "external_id" in str(e.orig):
                log.info("external_id %s already persisted by another writer; skipping", record.external_id)
                return None
            log.error(
                "Failed to persist property external_id=%s address=%r price=%s: %s",
                record.external_id, record.address, record.price, e,
            )
            raise
        except (OperationalError, InterfaceError) as e:
            log.error(
                "Store unavailable while persisting external_id=%s address=%r: %s",
                record.external_id, record.address, e,
            )
            raise StoreUnavailableError(str(e)) from e

        log.info("Created property id=%s external_id=%s", persisted.id, persisted.external_id)
        return persisted
