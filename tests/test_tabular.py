import csv
import io

import pytest

from catalog.app.errors import NotFoundError, ValidationError
from catalog.app.services.import_profiles import PROFILES, get_profile
from catalog.app.services.tabular import FieldDefinition, coerce, parse, render_sample

PRICE = FieldDefinition("basePrice", "Base Price", True, "number")


def test_coerce_types() -> None:
    assert coerce(PRICE, "10") == 10
    assert coerce(PRICE, "10.50") == 10.5
    assert coerce(PRICE, "3.0") == 3.0
    assert coerce(FieldDefinition("a", "A", type="boolean"), "Yes") is True
    assert coerce(FieldDefinition("a", "A", type="boolean"), "0") is False
    assert coerce(FieldDefinition("a", "A", type="array"), "spicy, vegan,,") == [
        "spicy",
        "vegan",
    ]
    with pytest.raises(ValueError):
        coerce(PRICE, "ten")
    with pytest.raises(ValueError):
        coerce(PRICE, "nan")


def test_integer_cells_must_be_whole_numbers() -> None:
    order = FieldDefinition("displayOrder", "Display Order", type="integer")
    assert coerce(order, "3") == 3
    assert coerce(order, "3.0") == 3
    with pytest.raises(ValueError):
        coerce(order, "1.5")

    rows = parse("Name*,Display Order\nMains,1.5\n", get_profile("category").fields)
    assert "displayOrder" not in rows[0]
    assert rows[0]["_errors"] == ["Display Order: '1.5' is not a valid integer"]


def test_parse_matches_labels_and_numbers_rows() -> None:
    profile = get_profile("foodItem")
    content = (
        "\ufeffName*,Category Name*,Base Price*,Labels,Unknown\n"
        "Burger,Mains,12.5,\"spicy,beef\",x\n"
        ",,,,\n"
        "Fries,Sides,abc,,\n"
    ).encode("utf-8")

    rows = parse(content, profile.fields)

    assert [r["_row"] for r in rows] == [2, 4]
    assert rows[0]["name"] == "Burger"
    assert rows[0]["basePrice"] == 12.5
    assert rows[0]["labels"] == ["spicy", "beef"]
    assert "basePrice" not in rows[1]
    assert rows[1]["_errors"] == ["Base Price: 'abc' is not a valid number"]


def test_parse_accepts_field_names_as_headers() -> None:
    rows = parse("name,categoryName,basePrice\nSoup,Starters,4\n", get_profile("foodItem").fields)
    assert rows == [
        {"_row": 2, "_errors": [], "name": "Soup", "categoryName": "Starters", "basePrice": 4}
    ]


def test_parse_rejects_missing_required_columns() -> None:
    with pytest.raises(ValidationError) as exc:
        parse("Name\nBurger\n", get_profile("foodItem").fields)
    assert "Category Name" in exc.value.message
    assert "Base Price" in exc.value.message


def test_parse_rejects_empty_file() -> None:
    with pytest.raises(ValidationError):
        parse(b"", get_profile("category").fields)


def test_every_sample_parses_back() -> None:
    for sheet in PROFILES:
        profile = get_profile(sheet)
        sample = render_sample(profile.fields)
        header = next(csv.reader(io.StringIO(sample)))
        assert header[0].endswith("*")
        rows = parse(sample, profile.fields)
        assert len(rows) == 1
        assert rows[0]["_errors"] == []


def test_unknown_sheet() -> None:
    with pytest.raises(NotFoundError):
        get_profile("desserts")


def test_validation_messages() -> None:
    profile = get_profile("comboMeal")
    data = {
        "name": "Meal",
        "basePrice": -1,
        "foodItemNames": ["Burger"],
        "discountPercentage": 120,
        "_errors": [],
    }
    messages = profile.validate(data)
    assert "Base Price must not be negative" in messages
    assert "Discount Percentage must be between 0 and 100" in messages

    assert get_profile("category").validate({"categoryType": "snack"}) == [
        "Name is required",
        "Category Type must be one of food, dessert, beverage",
    ]
