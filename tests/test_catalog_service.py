import uuid

import pytest

from catalog.app.errors import ConflictError, NotFoundError, ReferenceNotFoundError, ValidationError
from catalog.app.services.import_profiles import get_profile
from catalog.app.services.tabular import parse
from catalog.app.utils.names import DEFAULT_MENU_TYPES


@pytest.mark.anyio
async def test_create_rejects_duplicate_natural_key(services, scope) -> None:
    catalog = services.catalog
    drinks = await catalog.create_entity(scope, "category", {"name": "Drinks"})

    with pytest.raises(ConflictError) as exc:
        await catalog.create_entity(scope, "category", {"name": " DRINKS "})
    assert "already exists" in exc.value.message

    other = await catalog.create_entity(scope, "category", {"name": "Desserts"})
    with pytest.raises(ConflictError):
        await catalog.update_entity(scope, "category", other.id, {"name": "drinks"})
    assert drinks.name_key == "drinks"


@pytest.mark.anyio
async def test_create_validates_payload(services, scope) -> None:
    with pytest.raises(ValidationError):
        await services.catalog.create_entity(scope, "category", {"name": "  "})
    with pytest.raises(ValidationError):
        await services.catalog.create_entity(scope, "category", {"name": "A", "colour": "red"})
    with pytest.raises(ValidationError):
        await services.catalog.create_entity(scope, "add_on", {"name": "Ketchup"})
    with pytest.raises(NotFoundError):
        await services.catalog.create_entity(scope, "dessert", {"name": "Cake"})


@pytest.mark.anyio
async def test_category_parent_cycles_are_rejected(services, scope) -> None:
    catalog = services.catalog
    a = await catalog.create_entity(scope, "category", {"name": "A"})
    b = await catalog.create_entity(scope, "category", {"name": "B", "parent_id": a.id})
    c = await catalog.create_entity(scope, "category", {"name": "C", "parent_id": b.id})

    with pytest.raises(ValidationError):
        await catalog.update_category(scope, a.id, {"parent_id": b.id})
    with pytest.raises(ValidationError):
        await catalog.update_category(scope, a.id, {"parent_id": c.id})
    with pytest.raises(ValidationError):
        await catalog.update_category(scope, a.id, {"parent_id": a.id})
    with pytest.raises(ReferenceNotFoundError):
        await catalog.update_category(scope, a.id, {"parent_id": uuid.uuid4()})

    moved = await catalog.update_category(scope, c.id, {"parent_id": a.id, "description": "Moved"})
    assert (moved.parent_id, moved.description) == (a.id, "Moved")


@pytest.mark.anyio
async def test_delete_is_blocked_by_dependents(services, scope) -> None:
    catalog = services.catalog
    mains = await catalog.create_entity(scope, "category", {"name": "Mains"})
    burger = await catalog.create_entity(
        scope, "food_item", {"name": "Burger", "category_id": mains.id, "base_price": 10}
    )
    await catalog.create_entity(
        scope,
        "combo_meal",
        {"name": "Duo", "base_price": 12, "food_item_ids": [str(burger.id)]},
    )

    with pytest.raises(ConflictError) as exc:
        await catalog.delete_entity(scope, "category", mains.id)
    assert "1 food items" in exc.value.message
    with pytest.raises(ConflictError) as exc:
        await catalog.delete_entity(scope, "food_item", burger.id)
    assert "combo meals" in exc.value.message


@pytest.mark.anyio
async def test_delete_soft_deletes_and_frees_the_name(services, scope) -> None:
    catalog = services.catalog
    group = await catalog.create_entity(scope, "variation_group", {"name": "Size"})
    await catalog.create_entity(
        scope, "variation", {"name": "Large", "variation_group_id": group.id}
    )
    with pytest.raises(ConflictError):
        await catalog.delete_entity(scope, "variation_group", group.id)

    (large,) = await catalog.list_entities(scope, "variation", group.id)
    await catalog.delete_entity(scope, "variation", large.id)
    await catalog.delete_entity(scope, "variation_group", group.id)

    with pytest.raises(NotFoundError):
        await catalog.get_entity(scope, "variation_group", group.id)
    again = await catalog.create_entity(scope, "variation_group", {"name": "size"})
    assert again.id != group.id


@pytest.mark.anyio
async def test_menu_management(services, scope) -> None:
    catalog = services.catalog

    created = await catalog.create_default_menus(scope)
    assert sorted(m.menu_type for m in created) == sorted(DEFAULT_MENU_TYPES)
    assert await catalog.create_default_menus(scope) == []

    with pytest.raises(ConflictError):
        await catalog.create_menu(scope, "Lunch")
    with pytest.raises(ValidationError):
        await catalog.create_menu(scope, "late night")
    brunch = await catalog.create_menu(scope, "brunch", "Weekend brunch")
    assert brunch.name == "Weekend brunch"

    with pytest.raises(ConflictError):
        await catalog.delete_menu(scope, "lunch")
    await catalog.delete_menu(scope, "brunch")
    with pytest.raises(NotFoundError):
        await catalog.delete_menu(scope, "brunch")


@pytest.mark.anyio
async def test_assign_items_to_menu(services, scope) -> None:
    catalog = services.catalog
    mains = await catalog.create_entity(scope, "category", {"name": "Mains"})
    burger = await catalog.create_entity(
        scope, "food_item", {"name": "Burger", "category_id": mains.id, "base_price": 10}
    )

    with pytest.raises(ReferenceNotFoundError):
        await catalog.assign_items_to_menu(scope, "supper", [burger.id, uuid.uuid4()])

    await catalog.assign_items_to_menu(scope, "Supper", [burger.id])
    (supper,) = await catalog.list_menus(scope)
    assert supper["menu_type"] == "supper"
    assert supper["name"] == "Supper"
    assert supper["item_ids"] == [str(burger.id)]


@pytest.mark.anyio
async def test_export_round_trips_through_import(services, scope) -> None:
    for sheet, content in (
        ("category", "Name*,Parent Category\nMains,\nBurgers,Mains\n"),
        (
            "foodItem",
            "Name*,Category Name*,Base Price*,Labels,Menu Types\n"
            "Cheeseburger,Burgers,11.5,cheese,lunch\n",
        ),
        ("addOnGroupAndAddOn", "Add-On Group Name*,Add-On Name,Add-On Price\nSauces,Ketchup,0.5\n"),
    ):
        profile = get_profile(sheet)
        await services.reconciler.run(profile, scope, parse(content, profile.fields))

    categories = await services.catalog.export_sheet(scope, "category")
    assert "Burgers,,food,Mains" in categories

    items = await services.catalog.export_sheet(scope, "foodItem")
    (row,) = parse(items, get_profile("foodItem").fields)
    assert row["categoryName"] == "Burgers"
    assert row["basePrice"] == 11.5
    assert row["labels"] == ["cheese"]
    assert row["menuTypes"] == ["lunch"]

    add_ons = await services.catalog.export_sheet(scope, "addOnGroupAndAddOn")
    (row,) = parse(add_ons, get_profile("addOnGroupAndAddOn").fields)
    assert (row["addOnGroupName"], row["addOnName"], row["addOnPrice"]) == ("Sauces", "Ketchup", 0.5)

    again = await services.reconciler.run(
        get_profile("foodItem"), scope, parse(items, get_profile("foodItem").fields)
    )
    assert (again.created_count, again.updated_count, again.failed_count) == (0, 1, 0)
