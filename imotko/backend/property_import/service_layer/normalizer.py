# property_import/service_layer/normalizer.py
from __future__ import annotations

import json
import logging

from ..adapters.clients.completion import RateLimitedCompletion
from ..domain.parsing import (
    parse_attributes,
    parse_bilingual_text,
    parse_listing_type,
    parse_numeric,
    parse_property_type,
    parse_reference_code,
)
from ..domain.types import AttributeValue, BilingualText, NormalizedListing, SourceRecord
from ..errors import ModelParseError
from ..models import ListingType, PropertyType

log = logging.getLogger(__name__)

LOW_CONFIDENCE = 0.7

RENT_KEYWORDS = ("изнајм", "rent", "наем")
SALE_KEYWORDS = ("продав", "sale", "sell")

NUMERIC_PROMPT = """Extract the numeric value from the following {field} text.
Return ONLY the number, without currency symbols, units or other text.
If there is no number, return "null".

{field} text: "{text}"

Examples:
- "550 ЕУР / месечно" -> 550
- "62 m2" -> 62
- "1,200 EUR" -> 1200
- "не е наведена" -> null

Return only the number or the word null:"""

LISTING_TYPE_PROMPT = """Classify the following property listing type text as one of:
- for_rent (properties for rent/lease)
- for_sale (properties for sale)

Listing type text: "{text}"

Common Macedonian patterns:
- "Се изнајмува" / "За изнајмување" -> for_rent
- "Се продава" / "За продажба" -> for_sale

Return ONLY one of: for_rent, for_sale"""

PROPERTY_TYPE_PROMPT = """Classify the following property into ONE of these types:
- flat (apartments, studios, penthouses)
- house (single-family homes, villas, townhouses)
- land (plots, parcels, agricultural land)
- holiday_home (vacation homes, cottages)
- garage (parking spaces, garages)
- commercial (offices, shops, warehouses, business spaces)

Property title: "{title}"
Property description: "{description}"

Common Macedonian keywords:
- Стан, Апартман -> flat
- Куќа, Вила -> house
- Земјиште, Плац -> land
- Викендица -> holiday_home
- Гаража, Паркинг -> garage
- Деловен простор, Канцеларија, Локал -> commercial

Return your response in this exact format:
type: <property_type>
confidence: <0.0-1.0>"""

BILINGUAL_PROMPT = """You are translating a real-estate listing {what}. Detect its language and provide
both Macedonian and English versions.

Listing {what}: "{text}"

Instructions:
1. If it is in Macedonian keep it as "mk" and translate to English as "en"
2. If it is in English keep it as "en" and translate to Macedonian as "mk"
3. Otherwise translate to both
4. Keep the tone professional; preserve numbers, measurements, addresses and line breaks

Return ONLY this JSON (no markdown, no extra text):
{{"mk": "macedonian text", "en": "english text"}}
Use null for a language you cannot provide."""

ATTRIBUTES_PROMPT = """Extract property attributes from the listing below and return a JSON object.

Property title: "{title}"
Property description: "{description}"
Features: {features}

Extract, only if mentioned:
- hasBalcony (boolean), hasElevator (boolean), hasParking (boolean)
- hasCentralHeating (boolean), hasAirConditioning (boolean)
- floor (number), totalFloors (number), bedrooms (number), bathrooms (number)
- furnished (boolean), petFriendly (boolean), hasGarden (boolean), hasBasement (boolean)

Common Macedonian keywords:
- Балкон/Тераса -> hasBalcony, Лифт -> hasElevator, Паркинг -> hasParking
- Централно греење -> hasCentralHeating, Клима -> hasAirConditioning
- Спрат -> floor, Намештен -> furnished, Градина -> hasGarden

Return ONLY a JSON object with the attributes found, e.g.
{{"hasBalcony": true, "floor": 3, "bedrooms": 2}}
If nothing is found return {{}}"""

REFERENCE_CODE_PROMPT = """Analyze the property listing below and extract the agency's own property
code/reference number if one is present. Look for patterns like:
- "ШИФРА- 3518" (the code is 3518)
- "Шифра: 5678", "Код: 1234", "ID: ABC123"

Title: {title}

Description: {description}

Return ONLY the code (letters and/or digits), nothing else.
If there is no code, return exactly: null"""


class TextNormalizer:
    """
    Model-assisted extraction over one listing's free text.

    Every call goes through the shared RateLimitedCompletion (rate limit + 2 attempts).
    A call that still fails raises ModelCallError; the orchestrator counts that listing
    as failed and moves on.
    """

    def __init__(self, completion: RateLimitedCompletion):
        self.completion = completion

    async def extract_numeric_value(self, value: str | int | float | None, field: str) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value)
        text = value.strip()
        if not text:
            return None

        raw = await self.completion.call(
            NUMERIC_PROMPT.format(field=field, text=text),
            context=f"extractNumericValue({field})",
            temperature=0.1,
            max_tokens=50,
        )
        parsed = parse_numeric(raw)
        if parsed is None:
            log.warning("Could not extract %s from %r", field, text)
        return parsed

    async def map_listing_type(self, text: str | None) -> ListingType:
        if not text or not text.strip():
            return ListingType.for_sale

        lowered = text.strip().lower()
        if any(k in lowered for k in RENT_KEYWORDS):
            return ListingType.for_rent
        if any(k in lowered for k in SALE_KEYWORDS):
            return ListingType.for_sale

        raw = await self.completion.call(
            LISTING_TYPE_PROMPT.format(text=text),
            context="mapListingType",
            temperature=0.1,
            max_tokens=20,
        )
        return parse_listing_type(raw)

    async def classify_property_type(self, title: str | None, description: str | None) -> tuple[PropertyType, float]:
        if not (title or description):
            raise ValueError("At least title or description is required for classification")

        raw = await self.completion.call(
            PROPERTY_TYPE_PROMPT.format(title=title or "N/A", description=description or "N/A"),
            context="classifyPropertyType",
            temperature=0.2,
            max_tokens=100,
        )
        ptype, confidence = parse_property_type(raw)
        if confidence < LOW_CONFIDENCE:
            log.warning("Low confidence (%.2f) classification for %r -> %s", confidence, title, ptype.value)
        return ptype, confidence

    async def _bilingual(self, text: str, *, what: str, max_tokens: int) -> BilingualText:
        raw = await self.completion.call(
            BILINGUAL_PROMPT.format(what=what, text=text),
            context=f"structure{what.capitalize()}",
            temperature=0.3,
            max_tokens=max_tokens,
        )
        try:
            return parse_bilingual_text(raw, original=text)
        except ModelParseError as e:
            # the source text itself is still a usable (mk) value
            log.warning("Could not structure %s, keeping source text: %s", what, e)
            return BilingualText(mk=text, en=None)

    async def structure_name(self, title: str) -> BilingualText:
        if not title or not title.strip():
            raise ValueError("Title is required")
        return await self._bilingual(title.strip(), what="title", max_tokens=200)

    async def structure_description(self, description: str | None) -> BilingualText:
        if not description or not description.strip():
            return BilingualText(mk="", en=None)
        return await self._bilingual(description.strip(), what="description", max_tokens=800)

    async def extract_attributes(self, record: SourceRecord) -> dict[str, AttributeValue]:
        raw = await self.completion.call(
            ATTRIBUTES_PROMPT.format(
                title=record.title,
                description=record.description or "",
                features=json.dumps(list(record.features), ensure_ascii=False),
            ),
            context="extractAttributes",
            temperature=0.2,
            max_tokens=300,
        )
        try:
            return parse_attributes(raw)
        except ModelParseError as e:
            log.warning("No attributes extracted for %r: %s", record.title, e)
            return {}

    async def extract_reference_code(self, title: str | None, description: str | None) -> str | None:
        """
        None means the model said there is no code. Call failures raise ModelCallError
        and prose answers raise ModelParseError; callers decide what that costs.
        """
        raw = await self.completion.call(
            REFERENCE_CODE_PROMPT.format(title=title or "", description=description or ""),
            context="extractReferenceCode",
            temperature=0.0,
            max_tokens=50,
        )
        return parse_reference_code(raw)

    async def normalize(self, record: SourceRecord) -> NormalizedListing:
        """Runs every extraction for one listing, in a fixed order."""
        price = await self.extract_numeric_value(record.price, "price")
        size = await self.extract_numeric_value(record.area, "area")
        listing_type = await self.map_listing_type(record.listing_type)
        ptype, confidence = await self.classify_property_type(record.title, record.description)
        name = await self.structure_name(record.title)
        description = await self.structure_description(record.description)
        attributes = await self.extract_attributes(record)

        return NormalizedListing(
            price=price,
            size=size,
            listing_type=listing_type,
            property_type=ptype,
            type_confidence=confidence,
            name=name,
            description=description,
            attributes=attributes,
        )
