import uuid
from types import SimpleNamespace

import pytest

from catalog.app.repos.catalog_repo import Scope
from catalog.app.repos_sqlalchemy import AddOnRepoSQL, CategoryRepoSQL
from catalog.app.services.natural_keys import NaturalKeyResolver
from catalog.app.utils.names import normalize_key


def _entity(name, **extra):
    return SimpleNamespace(id=uuid.uuid4(), name=name, **extra)


def test_normalize_key_trims_and_lowercases() -> None:
    assert normalize_key("  Drinks ") == "drinks"
    assert normalize_key(None) == ""


def test_resolver_matches_case_and_whitespace_variants() -> None:
    drinks = _entity("Drinks")
    resolver = NaturalKeyResolver("category", Scope("t1"), [drinks])

    assert resolver.resolve(" drinks ") == drinks.id
    assert resolver.resolve("DRINKS") == drinks.id
    assert resolver.resolve("Desserts") is None
    assert resolver.resolve("") is None
    assert "drinks" in resolver


def test_remember_keeps_the_first_id() -> None:
    resolver = NaturalKeyResolver("category", Scope("t1"))
    first, second = uuid.uuid4(), uuid.uuid4()

    resolver.remember("Starters", first)
    resolver.remember("starters", second)
    resolver.remember("Mains", second)

    assert resolver.resolve("STARTERS") == first
    assert resolver.resolve("mains") == second
    assert len(resolver) == 2


def test_children_are_keyed_under_their_parent() -> None:
    sauces, dips = uuid.uuid4(), uuid.uuid4()
    ketchup = _entity("Ketchup", add_on_group_id=sauces)
    resolver = NaturalKeyResolver(
        "add_on",
        Scope("t1"),
        [ketchup],
        parent_column="add_on_group_id",
    )

    assert resolver.resolve("ketchup", sauces) == ketchup.id
    assert resolver.resolve("ketchup", dips) is None
    assert resolver.resolve("ketchup") is None


@pytest.mark.anyio
async def test_snapshot_reads_live_rows_of_the_scope(session_factory) -> None:
    repo = CategoryRepoSQL()
    scope = Scope("t1")
    async with session_factory() as session:
        drinks, old = await repo.insert_many(
            session, scope, [{"name": "Drinks"}, {"name": "Old"}]
        )
        await repo.insert_many(session, Scope("t2"), [{"name": "Other tenant"}])
        await repo.insert_many(session, Scope("t1", "b1"), [{"name": "Branch only"}])
        await repo.soft_delete(session, scope, old.id)
        await session.commit()

    async with session_factory() as session:
        resolver = await NaturalKeyResolver.snapshot(session, repo, scope)

    assert resolver.resolve(" drinks ") == drinks.id
    assert resolver.resolve("old") is None
    assert resolver.resolve("other tenant") is None
    assert resolver.resolve("branch only") is None
    assert set(resolver.entities) == {drinks.id}


@pytest.mark.anyio
async def test_snapshot_of_children_uses_parent_keys(session_factory) -> None:
    scope = Scope("t1")
    group_id = uuid.uuid4()
    repo = AddOnRepoSQL()
    async with session_factory() as session:
        (ketchup,) = await repo.insert_many(
            session, scope, [{"name": "Ketchup", "add_on_group_id": group_id}]
        )
        await session.commit()

    async with session_factory() as session:
        resolver = await NaturalKeyResolver.snapshot(session, repo, scope)

    assert resolver.resolve("KETCHUP", group_id) == ketchup.id
    assert resolver.resolve("ketchup") is None


@pytest.mark.anyio
async def test_branch_snapshot_sees_tenant_rows_and_prefers_its_own(
    session_factory,
) -> None:
    repo = CategoryRepoSQL()
    tenant, branch = Scope("t1"), Scope("t1", "b1")
    async with session_factory() as session:
        tenant_drinks, mains = await repo.insert_many(
            session, tenant, [{"name": "Drinks"}, {"name": "Mains"}]
        )
        (branch_drinks,) = await repo.insert_many(session, branch, [{"name": "Drinks"}])
        await repo.insert_many(session, Scope("t1", "b2"), [{"name": "Other branch"}])
        await session.commit()

    async with session_factory() as session:
        resolver = await NaturalKeyResolver.snapshot(session, repo, branch)

    assert resolver.resolve("drinks") == branch_drinks.id
    assert resolver.resolve("mains") == mains.id
    assert resolver.resolve("other branch") is None
    assert tenant_drinks.id in resolver.entities
