# property_import/domain/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..models import ListingType, PropertyType

AttributeValue = bool | int | float


@dataclass(frozen=True)
class SourceRecord:
    """One feed entry, as delivered. Lives for one run."""
    title: str
    location: str
    price: str | int | float | None
    address: str | None = None
    description: str | None = None
    area: str | int | float | None = None
    listing_type: str | None = None
    features: tuple[str, ...] = ()
    images: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class BilingualText:
    mk: str
    en: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {"mk": self.mk, "en": self.en}


@dataclass(frozen=True)
class NormalizedListing:
    price: int | None
    size: int | None
    listing_type: ListingType
    property_type: PropertyType
    type_confidence: float
    name: BilingualText
    description: BilingualText
    attributes: dict[str, AttributeValue]


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    location_id: int | None = None
    fallback: bool = False


@dataclass(frozen=True)
class PhotoVariant:
    size_tag: str
    storage_key: str
    public_url: str


@dataclass(frozen=True)
class PhotoAsset:
    id: str
    variants: tuple[PhotoVariant, ...]

    def as_json(self) -> dict[str, Any]:
        """Shape stored on the property row (and read by the web app)."""
        return {
            "id": self.id,
            "name": None,
            "sizes": {v.size_tag: v.public_url for v in self.variants},
            "s3Urls": [v.storage_key for v in self.variants],
        }


@dataclass(frozen=True)
class ImageFailure:
    url: str
    stage: str  # download|transcode|upload
    reason: str


@dataclass
class ImageBatchResult:
    photos: list[PhotoAsset] = field(default_factory=list)
    failures: list[ImageFailure] = field(default_factory=list)


@dataclass
class CandidateRecord:
    """Destination-shaped record, before persistence."""
    external_id: str | None
    name: dict[str, str | None] | None
    description: dict[str, str | None] | None
    latitude: float | None
    longitude: float | None
    address: str | None
    price: int | None
    size: int | None
    type: PropertyType | None
    listing_type: ListingType | None
    photos: list[dict[str, Any]] = field(default_factory=list)
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    agency_reference: str | None = None
    property_location_id: int | None = None
    agency_id: str | None = None
    created_by: str = "system"
    status: str = "pending"
    orientation: str | None = None
    featured: bool = False


@dataclass(frozen=True)
class PersistedProperty:
    id: int
    external_id: str | None
    address: str
    price: int
    type: PropertyType
    listing_type: ListingType
    created_at: datetime
