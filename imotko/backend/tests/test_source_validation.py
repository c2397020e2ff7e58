from property_import.domain.source import validate_source_records


def _item(**kw):
    base = {
        "title": "Studio flat",
        "location": "Centar",
        "price": 45000,
        "address": "12 Ilinden St",
        "images": ["https://x/1.jpg"],
    }
    base.update(kw)
    return base


def test_valid_entry_becomes_source_record():
    valid, invalid = validate_source_records([_item(size=38, features=["Лифт", "Балкон"])])
    assert invalid == []
    rec = valid[0]
    assert rec.title == "Studio flat"
    assert rec.area == 38
    assert rec.images == ("https://x/1.jpg",)
    assert rec.features == ("Лифт", "Балкон")


def test_area_takes_precedence_over_size():
    valid, _ = validate_source_records([_item(area="62 m2", size=38)])
    assert valid[0].area == "62 m2"


def test_images_are_optional():
    item = _item()
    del item["images"]
    valid, invalid = validate_source_records([item])
    assert invalid == []
    assert valid[0].images == ()


def test_invalid_entries_are_reported_with_reasons():
    items = [
        _item(title=""),
        _item(location=None),
        _item(price=None),
        _item(images="https://x/1.jpg"),
        _item(description=42),
        "not an object",
        _item(),
    ]
    valid, invalid = validate_source_records(items)

    assert len(valid) == 1
    assert [e.index for e in invalid] == [0, 1, 2, 3, 4, 5]
    assert "Missing or invalid 'title' field" in invalid[0].errors
    assert invalid[0].title == "Unknown"
    assert "Missing or invalid 'location' field" in invalid[1].errors
    assert "Missing or invalid 'price' field" in invalid[2].errors
    assert "Invalid 'images' field (expected array)" in invalid[3].errors
    assert "Invalid 'description' field (expected string)" in invalid[4].errors
    assert invalid[5].errors == ["Entry is not an object"]


def test_string_price_is_accepted():
    valid, invalid = validate_source_records([_item(price="550 ЕУР / месечно")])
    assert invalid == []
    assert valid[0].price == "550 ЕУР / месечно"
