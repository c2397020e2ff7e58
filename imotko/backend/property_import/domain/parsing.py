# property_import/domain/parsing.py
"""
Parsers for plain-text completion responses.

The completion service answers in loose line/JSON conventions ("latitude: 41.99",
'{"mk": "...", "en": "..."}', "null"). Every function here either returns a typed
value or raises ModelParseError carrying the raw text, so callers never act on
half-parsed output.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable

from ..errors import ModelParseError
from ..models import ListingType, PropertyType
from .types import AttributeValue, BilingualText

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_REFERENCE_RE = re.compile(r"[\w\-/.]{1,40}")

NULL_SENTINELS = {"null", "none", "n/a", ""}


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


def _clean(text: str | None) -> str:
    s = (text or "").strip()
    s = _FENCE_RE.sub("", s).strip()
    return s.strip("\"'` ").strip()


def _labelled_value(lines: list[str], label: str) -> str | None:
    for line in lines:
        idx = line.lower().find(label)
        if idx >= 0:
            _, sep, rest = line[idx + len(label):].partition(":")
            return rest if sep else None
    return None


def parse_coordinates(text: str, bbox: BoundingBox) -> tuple[float, float]:
    """
    Expects lines like:
        latitude: 41.9973
        longitude: 21.4280
    Values must be finite and inside bbox.
    """
    lines = (text or "").strip().splitlines()
    lat_raw = _labelled_value(lines, "latitude")
    lon_raw = _labelled_value(lines, "longitude")
    if lat_raw is None or lon_raw is None:
        raise ModelParseError("Could not find latitude/longitude lines", raw=text)

    lat_m = _NUMBER_RE.search(lat_raw)
    lon_m = _NUMBER_RE.search(lon_raw)
    if not lat_m or not lon_m:
        raise ModelParseError("Coordinates are not numeric", raw=text)

    lat = float(lat_m.group(0))
    lon = float(lon_m.group(0))
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ModelParseError("Coordinates are not finite", raw=text)
    if not bbox.contains(lat, lon):
        raise ModelParseError(f"Coordinates out of region: {lat}, {lon}", raw=text)
    return lat, lon


def parse_numeric(text: str) -> int | None:
    """
    "550" -> 550, "1,200" -> 1200, "62.5" -> 62, "null" -> None.
    """
    s = _clean(text)
    if s.lower() in NULL_SENTINELS:
        return None
    compact = s.replace(",", "").replace(" ", "")
    m = _NUMBER_RE.match(compact)
    if not m:
        raise ModelParseError(f"Not a number: {s!r}", raw=text)
    return int(float(m.group(0)))


def parse_listing_type(text: str) -> ListingType:
    s = _clean(text).lower().rstrip(".")
    try:
        return ListingType(s)
    except ValueError:
        raise ModelParseError(f"Invalid listing type returned: {s!r}", raw=text) from None


def parse_property_type(text: str) -> tuple[PropertyType, float]:
    """
    Expects:
        type: flat
        confidence: 0.95
    Missing/garbled confidence defaults to 0.5.
    """
    type_raw: str | None = None
    confidence = 0.5
    for line in (text or "").strip().splitlines():
        s = line.strip().lower()
        if s.startswith("type:") and type_raw is None:
            type_raw = s.split(":", 1)[1].strip().strip("\"'.")
        elif s.startswith("confidence:"):
            m = _NUMBER_RE.search(s.split(":", 1)[1])
            if m:
                confidence = min(1.0, max(0.0, float(m.group(0))))

    if not type_raw:
        raise ModelParseError("Could not parse property type", raw=text)
    try:
        return PropertyType(type_raw), confidence
    except ValueError:
        raise ModelParseError(f"Invalid property type returned: {type_raw!r}", raw=text) from None


def _json_object(text: str) -> dict[str, Any]:
    m = _JSON_OBJECT_RE.search(_FENCE_RE.sub("", (text or "").strip()))
    if not m:
        raise ModelParseError("No JSON object in response", raw=text)
    try:
        data = json.loads(m.group(0))
    except json.JSONDecodeError as e:
        raise ModelParseError(f"Invalid JSON: {e}", raw=text) from e
    if not isinstance(data, dict):
        raise ModelParseError("JSON is not an object", raw=text)
    return data


def parse_bilingual_text(text: str, *, original: str) -> BilingualText:
    """
    '{"mk": "...", "en": "..."}' -> BilingualText. A missing mk falls back to `original`.
    """
    data = _json_object(text)
    mk = data.get("mk")
    en = data.get("en")
    if not mk and not en:
        raise ModelParseError("Both mk and en are missing", raw=text)
    return BilingualText(
        mk=str(mk) if mk else original,
        en=str(en) if en else None,
    )


def parse_attributes(text: str) -> dict[str, AttributeValue]:
    """Flat object of booleans/numbers; anything else is dropped."""
    data = _json_object(text)
    out: dict[str, AttributeValue] = {}
    for k, v in data.items():
        if isinstance(v, bool):
            out[str(k)] = v
        elif isinstance(v, (int, float)) and math.isfinite(v):
            out[str(k)] = v
    return out


def parse_reference_code(text: str) -> str | None:
    """
    "3518" -> "3518", "null" -> None.
    Prose answers raise, so "no code" stays distinguishable from garbage.
    """
    s = _clean(text)
    if s.lower() in NULL_SENTINELS:
        return None
    if not _REFERENCE_RE.fullmatch(s):
        raise ModelParseError(f"Not a reference code: {s!r}", raw=text)
    return s


def parse_location_match(text: str, candidates: Iterable[str]) -> str | None:
    """
    "NONE" -> None; otherwise must name one of `candidates` (case-insensitive).
    """
    s = _clean(text)
    if s.upper() == "NONE":
        return None
    wanted = s.lower()
    for name in candidates:
        if name.lower() == wanted:
            return name
    raise ModelParseError(f"Returned location is not a known name: {s!r}", raw=text)
