# property_import/domain/source.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .types import SourceRecord


@dataclass(frozen=True)
class InvalidSourceEntry:
    index: int
    title: str
    errors: list[str]


def _is_text(x: Any) -> bool:
    return isinstance(x, str) and bool(x.strip())


def _check(item: dict[str, Any]) -> list[str]:
    errors: list[str] = []

    if not _is_text(item.get("title")):
        errors.append("Missing or invalid 'title' field")
    if not _is_text(item.get("location")):
        errors.append("Missing or invalid 'location' field")

    price = item.get("price")
    if price is None or isinstance(price, bool) or not isinstance(price, (str, int, float)) or price == "":
        errors.append("Missing or invalid 'price' field")

    images = item.get("images")
    if images is not None and not isinstance(images, list):
        errors.append("Invalid 'images' field (expected array)")

    for key in ("description", "address", "listingType"):
        if item.get(key) is not None and not isinstance(item.get(key), str):
            errors.append(f"Invalid '{key}' field (expected string)")

    area = item.get("area", item.get("size"))
    if area is not None and (isinstance(area, bool) or not isinstance(area, (str, int, float))):
        errors.append("Invalid 'area' field (expected string or number)")

    features = item.get("features")
    if features is not None and not isinstance(features, list):
        errors.append("Invalid 'features' field (expected array)")

    return errors


def to_source_record(item: dict[str, Any]) -> SourceRecord:
    images = tuple(u.strip() for u in (item.get("images") or []) if isinstance(u, str) and u.strip())
    features = tuple(str(f) for f in (item.get("features") or []) if f is not None)
    return SourceRecord(
        title=item["title"].strip(),
        location=item["location"].strip(),
        price=item.get("price"),
        address=(item.get("address") or None),
        description=item.get("description") or None,
        area=item.get("area", item.get("size")),
        listing_type=item.get("listingType") or None,
        features=features,
        images=images,
        raw=dict(item),
    )


def validate_source_records(items: list[Any]) -> tuple[list[SourceRecord], list[InvalidSourceEntry]]:
    """
    Split raw feed entries into usable SourceRecords and rejected entries (with reasons).
    """
    valid: list[SourceRecord] = []
    invalid: list[InvalidSourceEntry] = []

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            invalid.append(InvalidSourceEntry(index=index, title="Unknown", errors=["Entry is not an object"]))
            continue

        errors = _check(item)
        if errors:
            title = item.get("title") if isinstance(item.get("title"), str) else "Unknown"
            invalid.append(InvalidSourceEntry(index=index, title=title or "Unknown", errors=errors))
            continue

        valid.append(to_source_record(item))

    return valid, invalid
