import uuid

import pytest
from sqlalchemy import select

from catalog.app.errors import NotFoundError
from catalog.app.models_tenant import CatalogOutbox, FoodItem, Menu
from catalog.app.repos.catalog_repo import Scope
from catalog.app.services.import_profiles import get_profile
from catalog.app.services.outbox import KIND_ITEM_AVAILABILITY, KIND_MENU_AVAILABILITY
from catalog.app.services.tabular import parse


SEED = (
    ("category", "Name*\nMains\n"),
    (
        "foodItem",
        "Name*,Category Name*,Base Price*,Menu Types\n"
        "Burger,Mains,10,\"lunch,dinner\"\n"
        "Soup,Mains,5,lunch\n",
    ),
)


async def _seed(services, scope, sheets=SEED):
    for sheet, content in sheets:
        profile = get_profile(sheet)
        result = await services.reconciler.run(profile, scope, parse(content, profile.fields))
        assert result.failed_count == 0
    # drain the translation tasks queued by the seed
    while await services.worker.run_once():
        pass


async def _items(session_factory):
    async with session_factory() as session:
        items = (await session.execute(select(FoodItem))).scalars().all()
    return {i.name: i for i in items}


async def _menus(session_factory):
    async with session_factory() as session:
        menus = (await session.execute(select(Menu))).scalars().all()
    return {m.menu_type: m.is_active for m in menus}


@pytest.mark.anyio
async def test_item_stays_active_while_another_menu_is_active(services, scope, session_factory) -> None:
    await _seed(services, scope)

    result = await services.availability.set_menu_active(scope, "Lunch", False)
    assert result == {"menu_type": "lunch", "is_active": False, "created": False}
    assert await services.worker.run_once() == 1

    items = await _items(session_factory)
    assert items["Burger"].is_active is True
    assert items["Soup"].is_active is False

    await services.availability.set_menu_active(scope, "dinner", False)
    await services.worker.run_once()
    items = await _items(session_factory)
    assert items["Burger"].is_active is False

    await services.availability.set_menu_active(scope, "lunch", True)
    await services.worker.run_once()
    items = await _items(session_factory)
    assert items["Burger"].is_active is True
    assert items["Soup"].is_active is True


@pytest.mark.anyio
async def test_toggle_only_queues_the_cascade(services, scope, session_factory) -> None:
    await _seed(services, scope)

    await services.availability.set_menu_active(scope, "lunch", False)

    async with session_factory() as session:
        tasks = (await session.execute(select(CatalogOutbox).where(CatalogOutbox.status == "queued"))).scalars().all()
    assert [(t.kind, t.payload["menu_type"]) for t in tasks] == [(KIND_MENU_AVAILABILITY, "lunch")]
    assert (await _items(session_factory))["Soup"].is_active is True


@pytest.mark.anyio
async def test_item_toggles_drive_its_menus(services, scope, session_factory) -> None:
    await _seed(services, scope)
    burger = (await _items(session_factory))["Burger"]
    soup = (await _items(session_factory))["Soup"]

    await services.availability.set_food_item_active(scope, burger.id, False)
    await services.worker.run_once()
    assert await _menus(session_factory) == {"lunch": True, "dinner": False}

    await services.availability.set_food_item_active(scope, soup.id, False)
    await services.worker.run_once()
    assert await _menus(session_factory) == {"lunch": False, "dinner": False}

    await services.availability.set_food_item_active(scope, burger.id, True)
    await services.worker.run_once()
    assert await _menus(session_factory) == {"lunch": True, "dinner": True}


@pytest.mark.anyio
async def test_unknown_menu_type_is_created(services, scope, session_factory) -> None:
    result = await services.availability.set_menu_active(scope, "brunch", True)

    assert result["created"] is True
    async with session_factory() as session:
        (menu,) = (await session.execute(select(Menu))).scalars().all()
    assert (menu.menu_type, menu.name, menu.is_active) == ("brunch", "Brunch", True)


@pytest.mark.anyio
async def test_unknown_food_item(services, scope) -> None:
    with pytest.raises(NotFoundError):
        await services.availability.set_food_item_active(scope, uuid.uuid4(), False)


@pytest.mark.anyio
async def test_failed_cascade_is_reported_not_raised(services, scope, events, session_factory, monkeypatch) -> None:
    await _seed(services, scope)
    burger = (await _items(session_factory))["Burger"]

    async def broken(self, *args):
        raise RuntimeError("store went away")

    monkeypatch.setattr(type(services.availability), "recompute_food_item", broken)
    await services.availability.set_food_item_active(scope, burger.id, False)

    assert await services.worker.run_once() == 1
    async with session_factory() as session:
        task = (
            await session.execute(select(CatalogOutbox).where(CatalogOutbox.kind == KIND_ITEM_AVAILABILITY))
        ).scalars().one()
    assert (task.status, task.error, task.attempts) == ("failed", "store went away", 1)
    assert events.events[-1]["event"] == "outbox.task_failed"
    assert events.events[-1]["error_kind"] == "cascade"
    assert events.events[-1]["entity_id"] == str(burger.id)
    # at most once: nothing left to run
    assert await services.worker.run_once() == 0


async def _branch_menus(session_factory):
    async with session_factory() as session:
        rows = (await session.execute(select(Menu.branch_id, Menu.menu_type, Menu.is_active))).all()
    return {(branch, menu_type): active for branch, menu_type, active in rows}


@pytest.mark.anyio
async def test_cascade_stays_inside_its_branch(services, session_factory) -> None:
    branch_a, branch_b = Scope("t1", "A"), Scope("t1", "B")
    await _seed(services, branch_a)
    await _seed(
        services,
        branch_b,
        (
            ("category", "Name*\nStarters\n"),
            ("foodItem", "Name*,Category Name*,Base Price*,Menu Types\nSoupB,Starters,4,lunch\n"),
        ),
    )

    await services.availability.set_menu_active(branch_a, "lunch", False)
    assert await services.worker.run_once() == 1

    items = await _items(session_factory)
    assert items["Soup"].is_active is False
    assert items["Burger"].is_active is True
    assert items["SoupB"].is_active is True
    assert (await _branch_menus(session_factory))[("B", "lunch")] is True

    await services.availability.set_food_item_active(branch_b, items["SoupB"].id, False)
    await services.worker.run_once()
    menus = await _branch_menus(session_factory)
    assert menus[("B", "lunch")] is False
    assert menus[("A", "dinner")] is True

    listed = {m["menu_type"]: m["item_ids"] for m in await services.catalog.list_menus(branch_b)}
    assert listed == {"lunch": [str(items["SoupB"].id)]}


@pytest.mark.anyio
async def test_entity_update_of_is_active_queues_the_cascade(services, scope, session_factory) -> None:
    await _seed(services, scope)
    burger = (await _items(session_factory))["Burger"]

    await services.catalog.update_entity(scope, "food_item", burger.id, {"is_active": False})
    assert await services.worker.run_once() == 1
    assert await _menus(session_factory) == {"lunch": True, "dinner": False}

    async with session_factory() as session:
        lunch = (await session.execute(select(Menu).where(Menu.menu_type == "lunch"))).scalars().one()
    await services.catalog.update_entity(scope, "menu", lunch.id, {"is_active": False})
    assert await services.worker.run_once() == 1
    assert (await _items(session_factory))["Soup"].is_active is False


@pytest.mark.anyio
async def test_entity_update_without_a_flag_change_queues_nothing(services, scope, session_factory) -> None:
    await _seed(services, scope)
    soup = (await _items(session_factory))["Soup"]

    await services.catalog.update_entity(scope, "food_item", soup.id, {"is_active": True, "stock_type": "limited"})

    async with session_factory() as session:
        tasks = (
            await session.execute(
                select(CatalogOutbox).where(
                    CatalogOutbox.kind.in_([KIND_MENU_AVAILABILITY, KIND_ITEM_AVAILABILITY]),
                    CatalogOutbox.status == "queued",
                )
            )
        ).scalars().all()
    assert tasks == []
