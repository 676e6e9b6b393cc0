"""Single-entity catalog operations.

Unlike the bulk reconciler these calls either fully succeed or raise: a
duplicate natural key or a delete that would orphan dependents is a
:class:`~catalog.app.errors.ConflictError`, a missing record a
:class:`~catalog.app.errors.NotFoundError`.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import (
    ConflictError,
    NotFoundError,
    ReferenceNotFoundError,
    ValidationError,
)
from ..models_tenant import FoodItem, Menu
from ..repos.catalog_repo import Scope
from ..repos_sqlalchemy import (
    AddOnGroupRepoSQL,
    AddOnRepoSQL,
    BuffetRepoSQL,
    CategoryRepoSQL,
    ComboMealRepoSQL,
    EntityRepoSQL,
    FoodItemRepoSQL,
    MenuRepoSQL,
    VariationGroupRepoSQL,
    VariationRepoSQL,
    store_errors,
)
from ..utils.names import DEFAULT_MENU_TYPES, menu_display_name, normalize_key
from .import_profiles import get_profile
from .outbox import KIND_ITEM_AVAILABILITY, KIND_MENU_AVAILABILITY, enqueue
from .tabular import render_export
from .translations import TranslationOrchestrator, TranslationRequest

SLUG_RE = re.compile(r"^[a-z0-9_]+$")
TRANSLATED_FIELDS = ("name", "description")
MANAGED_COLUMNS = frozenset(
    {"id", "tenant_id", "branch_id", "name_key", "created_at", "updated_at", "deleted_at"}
)

logger = logging.getLogger("catalog.service")


class CatalogService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        translations: TranslationOrchestrator | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.translations = translations
        self.menus = MenuRepoSQL()
        self.repos: dict[str, EntityRepoSQL] = {
            repo.entity_type: repo
            for repo in (
                CategoryRepoSQL(),
                FoodItemRepoSQL(),
                AddOnGroupRepoSQL(),
                AddOnRepoSQL(),
                VariationGroupRepoSQL(),
                VariationRepoSQL(),
                BuffetRepoSQL(),
                ComboMealRepoSQL(),
                self.menus,
            )
        }

    def repo(self, entity_type: str) -> EntityRepoSQL:
        try:
            return self.repos[entity_type]
        except KeyError:
            raise NotFoundError(f"unknown entity type {entity_type!r}") from None

    def _translate(
        self, session: AsyncSession, scope: Scope, entity_type: str, entity_id, fields
    ) -> None:
        if self.translations is None:
            return
        texts = {
            k: v for k, v in fields.items() if k in TRANSLATED_FIELDS and isinstance(v, str)
        }
        if texts:
            self.translations.enqueue(
                session, scope.tenant_id, TranslationRequest(entity_type, entity_id, texts)
            )

    @staticmethod
    def _writable(repo: EntityRepoSQL, fields: dict[str, Any]) -> dict[str, Any]:
        columns = set(repo.model.__table__.columns.keys()) - MANAGED_COLUMNS
        unknown = sorted(set(fields) - columns)
        if unknown:
            raise ValidationError(
                f"unknown {repo.entity_type} fields: " + ", ".join(unknown)
            )
        return fields

    async def _commit(self, session: AsyncSession, entity_type: str) -> None:
        with store_errors(entity_type):
            await session.commit()

    # ----------------------------------------------------------- entities

    async def get_entity(self, scope: Scope, entity_type: str, entity_id: UUID):
        repo = self.repo(entity_type)
        async with self.session_factory() as session:
            return await repo.get(session, scope, entity_id)

    async def list_entities(
        self, scope: Scope, entity_type: str, parent_id: UUID | None = None
    ) -> list:
        repo = self.repo(entity_type)
        async with self.session_factory() as session:
            return await repo.find_all_active(session, scope, parent_id)

    async def create_entity(
        self, scope: Scope, entity_type: str, fields: dict[str, Any]
    ):
        """Create one entity; a live entity with the same natural key is a conflict."""
        repo = self.repo(entity_type)
        name = str(fields.get(repo.key_field) or "").strip()
        if not name:
            raise ValidationError(f"{repo.key_field} is required")
        fields = self._writable(repo, {**fields, repo.key_field: name})
        parent_id = fields.get(repo.parent_column) if repo.parent_column else None
        if repo.keyed_by_parent and parent_id is None:
            raise ValidationError(f"{repo.parent_column} is required")
        async with self.session_factory() as session:
            if await repo.find_by_natural_key(session, scope, name, parent_id):
                raise ConflictError(
                    f"{entity_type.replace('_', ' ')} '{name}' already exists"
                )
            if isinstance(repo, CategoryRepoSQL) and parent_id is not None:
                await self._check_category_parent(session, scope, None, parent_id)
            (entity,) = await repo.insert_many(session, scope, [fields])
            self._translate(session, scope, entity_type, entity.id, fields)
            await self._commit(session, entity_type)
        return entity

    async def update_entity(
        self,
        scope: Scope,
        entity_type: str,
        entity_id: UUID,
        fields: dict[str, Any],
    ):
        repo = self.repo(entity_type)
        fields = self._writable(repo, fields)
        async with self.session_factory() as session:
            entity = await repo.get(session, scope, entity_id)
            if repo.key_field in fields:
                parent_id = (
                    getattr(entity, repo.parent_column) if repo.keyed_by_parent else None
                )
                other = await repo.find_by_natural_key(
                    session, scope, fields[repo.key_field], parent_id
                )
                if other is not None and other.id != entity_id:
                    raise ConflictError(
                        f"{entity_type.replace('_', ' ')} "
                        f"'{fields[repo.key_field]}' already exists"
                    )
            if isinstance(repo, CategoryRepoSQL) and fields.get("parent_id"):
                await self._check_category_parent(
                    session, scope, entity_id, fields["parent_id"]
                )
            toggled = "is_active" in fields and bool(fields["is_active"]) != entity.is_active
            await repo.update_by_id(session, scope, entity_id, fields)
            self._translate(session, scope, entity_type, entity_id, fields)
            if toggled:
                self._queue_cascade(session, scope, entity, bool(fields["is_active"]))
            await self._commit(session, entity_type)
            await session.refresh(entity)
            return entity

    @staticmethod
    def _queue_cascade(session: AsyncSession, scope: Scope, entity, active: bool) -> None:
        """Queue the availability recompute a flag change on a menu or item needs."""
        if isinstance(entity, Menu):
            kind = KIND_MENU_AVAILABILITY
            payload = {"menu_type": entity.menu_type}
        elif isinstance(entity, FoodItem):
            kind = KIND_ITEM_AVAILABILITY
            payload = {"item_id": str(entity.id)}
        else:
            return
        payload.update(branch_id=scope.branch_id, active=active)
        enqueue(session, scope.tenant_id, kind, payload)

    async def update_category(
        self, scope: Scope, category_id: UUID, fields: dict[str, Any]
    ):
        """Partial category update; the new parent may not close a cycle."""
        return await self.update_entity(scope, "category", category_id, fields)

    async def _check_category_parent(
        self,
        session: AsyncSession,
        scope: Scope,
        category_id: UUID | None,
        parent_id: UUID,
    ) -> None:
        repo: CategoryRepoSQL = self.repos["category"]
        if category_id is not None and parent_id == category_id:
            raise ValidationError("a category cannot be its own parent")
        if not await repo.find_by_ids(session, scope, [parent_id]):
            raise ReferenceNotFoundError(f"parent category {parent_id} not found")
        if category_id is not None:
            if category_id in await repo.ancestor_ids(session, scope, parent_id):
                raise ValidationError(
                    "the parent category is a descendant of this category"
                )

    async def dependents(
        self, session: AsyncSession, scope: Scope, entity_type: str, entity_id: UUID
    ) -> dict[str, int]:
        """Live records that still point at one entity, counted by kind."""
        found: dict[str, int] = {}
        if entity_type == "category":
            found["food items"] = len(
                await self.repos["food_item"].find_referencing(session, scope, entity_id)
            )
            found["sub-categories"] = len(
                await self.repos["category"].find_referencing(session, scope, entity_id)
            )
        elif entity_type == "add_on_group":
            found["add-ons"] = len(
                await self.repos["add_on"].find_referencing(session, scope, entity_id)
            )
            found["food items"] = len(
                await self.repos["add_on_group"].linked_food_item_ids(session, entity_id)
            )
        elif entity_type == "variation_group":
            found["variations"] = len(
                await self.repos["variation"].find_referencing(session, scope, entity_id)
            )
        elif entity_type == "food_item":
            found["combo meals"] = len(
                await self.repos["combo_meal"].find_containing_item(
                    session, scope, entity_id
                )
            )
        return {kind: count for kind, count in found.items() if count}

    async def delete_entity(
        self, scope: Scope, entity_type: str, entity_id: UUID
    ) -> None:
        """Soft delete, refused while other live records depend on the entity."""
        if entity_type == "menu":
            raise ValidationError("menus are deleted by menu type")
        repo = self.repo(entity_type)
        async with self.session_factory() as session:
            await repo.get(session, scope, entity_id)
            blocking = await self.dependents(session, scope, entity_type, entity_id)
            if blocking:
                details = ", ".join(f"{n} {kind}" for kind, n in blocking.items())
                raise ConflictError(
                    f"{entity_type.replace('_', ' ')} is still used by {details}"
                )
            await repo.soft_delete(session, scope, entity_id)
            await self._commit(session, entity_type)
        logger.info(
            "soft deleted %s %s",
            entity_type,
            entity_id,
            extra={
                "event": "catalog.deleted",
                "tenant": scope.tenant_id,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
            },
        )

    # -------------------------------------------------------------- menus

    async def list_menus(self, scope: Scope) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            menus = await self.menus.get_menus(session, scope)
            items = await self.menus.item_ids_by_menu(
                session, scope, [m.menu_type for m in menus]
            )
        return [
            {
                "id": str(m.id),
                "menu_type": m.menu_type,
                "name": m.name,
                "is_active": m.is_active,
                "item_ids": sorted(str(i) for i in items.get(m.menu_type, set())),
            }
            for m in menus
        ]

    async def create_menu(
        self,
        scope: Scope,
        menu_type: str,
        name: str | None = None,
        is_active: bool = True,
    ):
        menu_type = normalize_key(menu_type)
        if not SLUG_RE.match(menu_type):
            raise ValidationError(
                "menu type must use lowercase letters, digits and underscores"
            )
        async with self.session_factory() as session:
            if await self.menus.get_menus(session, scope, [menu_type]):
                raise ConflictError(f"menu type '{menu_type}' already exists")
            (menu,) = await self.menus.insert_many(
                session,
                scope,
                [
                    {
                        "menu_type": menu_type,
                        "name": (name or "").strip() or menu_display_name(menu_type),
                        "is_active": is_active,
                    }
                ],
            )
            self._translate(session, scope, "menu", menu.id, {"name": menu.name})
            await self._commit(session, "menu")
        return menu

    async def create_default_menus(self, scope: Scope) -> list:
        """Make sure every default menu type exists; returns the new ones."""
        async with self.session_factory() as session:
            created = await self.menus.ensure_menus(session, scope, DEFAULT_MENU_TYPES)
            for menu in created:
                self._translate(session, scope, "menu", menu.id, {"name": menu.name})
            await self._commit(session, "menu")
        return created

    async def assign_items_to_menu(
        self, scope: Scope, menu_type: str, item_ids: Iterable[UUID]
    ) -> dict[str, Any]:
        """Replace the food items of ``menu_type``; creates the menu if needed."""
        item_ids = list(dict.fromkeys(item_ids))
        menu_type = normalize_key(menu_type)
        async with self.session_factory() as session:
            found = await self.repos["food_item"].find_by_ids(session, scope, item_ids)
            missing = set(item_ids) - {item.id for item in found}
            if missing:
                raise ReferenceNotFoundError(
                    "food items not found: " + ", ".join(sorted(map(str, missing)))
                )
            created = await self.menus.ensure_menus(session, scope, [menu_type])
            for menu in created:
                self._translate(session, scope, "menu", menu.id, {"name": menu.name})
            await self.menus.replace_menu_items(session, scope, menu_type, item_ids)
            await self._commit(session, "menu")
        return {"menu_type": menu_type, "item_ids": [str(i) for i in item_ids]}

    async def delete_menu(self, scope: Scope, menu_type: str) -> None:
        menu_type = normalize_key(menu_type)
        if menu_type in DEFAULT_MENU_TYPES:
            raise ConflictError(f"default menu '{menu_type}' cannot be deleted")
        async with self.session_factory() as session:
            menus = await self.menus.get_menus(session, scope, [menu_type])
            if not menus:
                raise NotFoundError(f"menu '{menu_type}' not found")
            await self.menus.replace_menu_items(session, scope, menu_type, [])
            await self.menus.soft_delete(session, scope, menus[0].id)
            await self._commit(session, "menu")

    # ------------------------------------------------------------- export

    async def export_sheet(self, scope: Scope, sheet: str) -> str:
        """CSV of the live records of ``sheet``, re-importable as is."""
        profile = get_profile(sheet)
        parent = profile.parent
        async with self.session_factory() as session:
            entities = await parent.repo.find_all_active(session, scope)
            names = {}
            if profile.self_reference is not None:
                names = {
                    e.id: getattr(e, parent.key_attr)
                    for e in await parent.repo.find_visible(session, scope)
                }
            references = [ref for ref in profile.references if not ref.link]
            ref_names = {}
            for ref in references:
                ref_names[ref.field] = {
                    str(e.id): e.name for e in await ref.repo.find_visible(session, scope)
                }
            extras = {}
            if profile.export_relations is not None:
                extras = await profile.export_relations(session, scope, entities)
            rows: list[dict[str, Any]] = []
            for entity in entities:
                row = parent.export(entity)
                if profile.self_reference is not None:
                    parent_id = getattr(entity, profile.self_reference.attr)
                    row[profile.self_reference.field] = names.get(parent_id)
                for ref in references:
                    value = getattr(entity, ref.attr)
                    lookup = ref_names[ref.field]
                    row[ref.field] = (
                        [lookup.get(v, v) for v in value or []]
                        if ref.many
                        else lookup.get(str(value))
                    )
                row.update(extras.get(entity.id, {}))
                if profile.child is None:
                    rows.append(row)
                    continue
                kids = await profile.child.repo.find_referencing(session, scope, entity.id)
                if not kids:
                    rows.append(row)
                for kid in kids:
                    rows.append({**row, **profile.child.export(kid)})
        return render_export(profile.fields, rows)
