import pytest

from property_import.domain.types import SourceRecord
from property_import.errors import ModelCallError, ModelParseError
from property_import.models import ListingType, PropertyType
from property_import.service_layer.normalizer import TextNormalizer

from conftest import make_completion, studio_responder


async def test_numeric_values_skip_the_model():
    inner, completion = make_completion()
    n = TextNormalizer(completion)

    assert await n.extract_numeric_value(45000, "price") == 45000
    assert await n.extract_numeric_value(38.7, "area") == 38
    assert await n.extract_numeric_value(None, "area") is None
    assert await n.extract_numeric_value("  ", "area") is None
    assert inner.prompts == []


async def test_numeric_text_goes_through_the_model():
    inner, completion = make_completion(lambda p: "550")
    n = TextNormalizer(completion)

    assert await n.extract_numeric_value("550 ЕУР / месечно", "price") == 550
    assert "550 ЕУР / месечно" in inner.prompts[0]


async def test_listing_type_keywords_then_model():
    inner, completion = make_completion(lambda p: "for_rent")
    n = TextNormalizer(completion)

    assert await n.map_listing_type("Се изнајмува") is ListingType.for_rent
    assert await n.map_listing_type("Се продава") is ListingType.for_sale
    assert await n.map_listing_type(None) is ListingType.for_sale
    assert inner.prompts == []

    assert await n.map_listing_type("Под закуп") is ListingType.for_rent
    assert len(inner.prompts) == 1


async def test_classify_property_type(caplog):
    _, completion = make_completion(lambda p: "type: commercial\nconfidence: 0.4")
    n = TextNormalizer(completion)

    with caplog.at_level("WARNING"):
        ptype, conf = await n.classify_property_type("Деловен простор", None)

    assert ptype is PropertyType.commercial
    assert conf == 0.4
    assert "Low confidence" in caplog.text


async def test_classify_needs_some_text():
    _, completion = make_completion()
    with pytest.raises(ValueError):
        await TextNormalizer(completion).classify_property_type(None, "")


async def test_call_failure_is_retried_once_then_raised():
    inner, completion = make_completion(lambda p: RuntimeError("rate limited"))
    n = TextNormalizer(completion)

    with pytest.raises(ModelCallError):
        await n.classify_property_type("Стан", None)
    assert len(inner.prompts) == 2


async def test_unparsable_type_is_a_parse_error():
    _, completion = make_completion(lambda p: "It is probably a flat")
    with pytest.raises(ModelParseError):
        await TextNormalizer(completion).classify_property_type("Стан", None)


async def test_structure_name_and_description():
    _, completion = make_completion()
    n = TextNormalizer(completion)

    name = await n.structure_name("Studio flat")
    assert name.as_dict() == {"mk": "Студио стан", "en": "Studio flat"}

    empty = await n.structure_description("   ")
    assert empty.as_dict() == {"mk": "", "en": None}


async def test_garbled_translation_keeps_source_text():
    _, completion = make_completion(lambda p: "Sorry, I cannot translate that.")
    name = await TextNormalizer(completion).structure_name("Куќа во Водно")
    assert name.mk == "Куќа во Водно"
    assert name.en is None


async def test_attributes_parse_failure_is_empty():
    _, completion = make_completion(lambda p: "none found")
    rec = SourceRecord(title="Garage", location="Centar", price=10000)
    assert await TextNormalizer(completion).extract_attributes(rec) == {}


async def test_reference_code_distinguishes_no_code_from_failure():
    _, completion = make_completion(lambda p: "null")
    assert await TextNormalizer(completion).extract_reference_code("Стан", "опис") is None

    _, completion = make_completion(lambda p: "5678")
    assert await TextNormalizer(completion).extract_reference_code("Шифра: 5678", None) == "5678"

    _, completion = make_completion(lambda p: RuntimeError("down"))
    with pytest.raises(ModelCallError):
        await TextNormalizer(completion).extract_reference_code("Стан", None)


async def test_normalize_full_listing():
    inner, completion = make_completion(studio_responder)
    rec = SourceRecord(
        title="Studio flat",
        location="Centar",
        price=45000,
        address="12 Ilinden St",
        description="Bright flat",
        area=38,
    )
    out = await TextNormalizer(completion).normalize(rec)

    assert out.price == 45000
    assert out.size == 38
    assert out.listing_type is ListingType.for_sale
    assert out.property_type is PropertyType.flat
    assert out.type_confidence == 0.95
    assert out.name.en == "Studio flat"
    assert out.description.en == "Bright flat"
    assert out.attributes == {"hasBalcony": True, "floor": 3}
    # type, name, description, attributes
    assert len(inner.prompts) == 4
