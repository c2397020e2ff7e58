# property_import/models.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# -----------------------------
# Core enums
# -----------------------------
class PropertyType(str, enum.Enum):
    flat = "flat"
    house = "house"
    land = "land"
    holiday_home = "holiday_home"
    garage = "garage"
    commercial = "commercial"


class ListingType(str, enum.Enum):
    for_sale = "for_sale"
    for_rent = "for_rent"


class ReviewStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    rejected = "rejected"


class Orientation(str, enum.Enum):
    north = "north"
    south = "south"
    east = "east"
    west = "west"
    northeast = "northeast"
    southeast = "southeast"
    northwest = "northwest"
    southwest = "southwest"


class RunStatus(str, enum.Enum):
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class TriggerSource(str, enum.Enum):
    cron = "cron"
    manual = "manual"
    api = "api"


# -----------------------------
# Models
# -----------------------------
class PropertyLocation(Base):
    """
    Location hierarchy node (municipality, district, city...).
    Imported listings point at the best matching node, if any.
    """
    __tablename__ = "property_locations"
    __table_args__ = (UniqueConstraint("name", name="uq_property_location_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), index=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("property_locations.id"), nullable=True)


class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (UniqueConstraint("external_id", name="uq_property_external_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # dedup key for imported listings (NULL for hand-entered ones)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    agency_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # {"mk": "...", "en": "..."}
    name_json: Mapped[str] = mapped_column(Text)
    description_json: Mapped[str] = mapped_column(Text)

    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    address: Mapped[str] = mapped_column(String(255))

    price: Mapped[int] = mapped_column(Integer)
    size: Mapped[int] = mapped_column(Integer)

    type: Mapped[PropertyType] = mapped_column(Enum(PropertyType), index=True)
    listing_type: Mapped[ListingType] = mapped_column(Enum(ListingType), index=True)
    orientation: Mapped[Orientation | None] = mapped_column(Enum(Orientation), nullable=True)

    status: Mapped[ReviewStatus] = mapped_column(Enum(ReviewStatus), default=ReviewStatus.pending, index=True)
    featured: Mapped[bool] = mapped_column(Boolean, default=False)

    # [{"id": "...", "name": null, "sizes": {"small": url, ...}, "s3Urls": [key, ...]}]
    photos_json: Mapped[str] = mapped_column(Text, default="[]")
    attributes_json: Mapped[str] = mapped_column(Text, default="{}")

    agency_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    property_location_id: Mapped[int | None] = mapped_column(ForeignKey("property_locations.id"), nullable=True)

    created_by: Mapped[str] = mapped_column(String(64), default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ImportJobExecution(Base):
    """
    One row per import run (cron, manual or api triggered).
    The admin router reads history from here.
    """
    __tablename__ = "import_job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), default="property_import", index=True)
    triggered_by: Mapped[str] = mapped_column(String(40), index=True)

    status: Mapped[RunStatus] = mapped_column(Enum(RunStatus), default=RunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    total: Mapped[int] = mapped_column(Integer, default=0)
    processed: Mapped[int] = mapped_column(Integer, default=0)
    created: Mapped[int] = mapped_column(Integer, default=0)
    duplicates: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)

    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)

    # store error message of the run (fatal) or a short failure note
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    errors_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)
