# property_import/service_layer/geocoding.py
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.completion import RateLimitedCompletion
from ..adapters.repos.locations import LocationRepository
from ..domain.parsing import BoundingBox, parse_coordinates, parse_location_match
from ..domain.types import GeocodeResult
from ..errors import ModelCallError, ModelParseError, StoreUnavailableError

log = logging.getLogger(__name__)

# North Macedonia, generously padded
REGION_BBOX = BoundingBox(min_lat=40.0, max_lat=43.0, min_lon=20.0, max_lon=24.0)

# Skopje center: the administrative capital
FALLBACK_COORDINATES = (41.9973, 21.428)

GEOCODE_PROMPT = """You are a geocoding assistant specialized in North Macedonia locations.
Given the following address, provide the approximate latitude and longitude.

Address: "{address}"

Context:
- The location is in North Macedonia
- Common cities: Скопје (Skopje), Битола (Bitola), Прилеп (Prilep), Куманово (Kumanovo), Охрид (Ohrid), Велес (Veles), Штип (Shtip), Тетово (Tetovo)
- Skopje center is approximately 41.9973 N, 21.4280 E
- If you recognize the neighborhood, be precise; if not, use the city center

Return your response in this EXACT format (numbers only, no extra text):
latitude: 41.9973
longitude: 21.4280"""

LOCATION_MATCH_PROMPT = """You are mapping a location name to one of the known locations below.

Given location: "{term}"

Known locations:
{names}

Consider exact matches first, then transliterations, alternative spellings and
district/municipality relationships.

If one is a good match, return ONLY that location name exactly as it appears above.
If none is a good match, return the word NONE."""


def geocode_cache_key(location: str | None, address: str | None) -> str:
    return f"{(location or '').strip()}|{(address or '').strip()}".lower()


class GeocodeResolver:
    """
    Free-text address -> coordinates (model-assisted, memoized per process),
    and location text -> PropertyLocation id.

    The cache is pure memoization: a failed lookup caches the fallback so the same
    key never costs a second call.
    """

    def __init__(
        self,
        completion: RateLimitedCompletion,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        bbox: BoundingBox = REGION_BBOX,
        fallback: tuple[float, float] = FALLBACK_COORDINATES,
    ):
        self.completion = completion
        self.session_maker = session_maker
        self.bbox = bbox
        self.fallback = GeocodeResult(latitude=fallback[0], longitude=fallback[1], fallback=True)
        self._cache: dict[str, GeocodeResult] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}

    # -------------------------
    # Coordinates
    # -------------------------

    async def resolve(self, location: str | None, address: str | None) -> GeocodeResult:
        key = geocode_cache_key(location, address)

        cached = self._cache.get(key)
        if cached is not None:
            log.debug("Using cached coordinates for %r", key)
            return cached

        # one in-flight lookup per key
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            result = await self._lookup(location, address)
            self._cache[key] = result
            return result

    async def _lookup(self, location: str | None, address: str | None) -> GeocodeResult:
        loc = (location or "").strip()
        addr = (address or "").strip()
        full_address = f"{addr}, {loc}" if addr else loc

        try:
            text = await self.completion.call_once(
                GEOCODE_PROMPT.format(address=full_address),
                context="geocode",
                temperature=0.2,
                max_tokens=100,
            )
            lat, lon = parse_coordinates(text, self.bbox)
            return GeocodeResult(latitude=lat, longitude=lon)
        except (ModelCallError, ModelParseError) as e:
            log.warning("Geocoding failed for %r (%s); using fallback coordinates", full_address, e)
            return self.fallback

    def clear_cache(self) -> None:
        self._cache.clear()
        self._key_locks.clear()

    def cache_stats(self) -> dict[str, int]:
        return {
            "entries": len(self._cache),
            "fallbacks": sum(1 for v in self._cache.values() if v.fallback),
        }

    # -------------------------
    # Location hierarchy
    # -------------------------

    async def map_to_location_node(self, location_text: str | None) -> int | None:
        """
        exact (case-insensitive) -> substring -> model best-match -> None.
        Only the first comma-separated part ("Центар, Скопје" -> "Центар") is matched.
        """
        if not location_text or not location_text.strip():
            log.warning("No location text provided")
            return None

        term = location_text.split(",")[0].strip()
        wanted = term.casefold()

        try:
            async with self.session_maker() as session:
                locations = await LocationRepository(session).list_all()
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(f"Location lookup failed for {term!r}: {e}") from e

        if not locations:
            log.warning("No PropertyLocation records in database")
            return None

        for loc in locations:
            if loc.name.casefold() == wanted:
                log.info("Location exact match: %r -> %s", term, loc.id)
                return loc.id

        for loc in locations:
            if wanted and wanted in loc.name.casefold():
                log.info("Location partial match: %r -> %r (%s)", term, loc.name, loc.id)
                return loc.id

        names = [loc.name for loc in locations]
        try:
            text = await self.completion.call(
                LOCATION_MATCH_PROMPT.format(term=term, names=", ".join(names)),
                context="mapToLocationNode",
                temperature=0.1,
                max_tokens=50,
            )
            matched = parse_location_match(text, names)
        except ModelParseError as e:
            log.warning("Location match returned an unknown name for %r: %s", term, e)
            return None
        except ModelCallError as e:
            log.error("Location match failed for %r: %s", term, e)
            return None

        if matched is None:
            log.warning("No matching PropertyLocation for %r; consider adding it", location_text)
            return None

        loc_id = next(loc.id for loc in locations if loc.name == matched)
        log.info("Location model match: %r -> %r (%s)", term, matched, loc_id)
        return loc_id
