"""SQLAlchemy implementation of the menu repository.

Every method works on sets of menus or items so the availability cascade
issues a fixed number of statements per toggle, whatever the menu size.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models_tenant import FoodItem, Menu, MenuItem
from ..repos.catalog_repo import Scope
from ..repos.menu_repo import MenuRepo
from ..utils.names import menu_display_name, normalize_key
from .entity_repo_sql import EntityRepoSQL, store_errors


class MenuRepoSQL(EntityRepoSQL, MenuRepo):
    """Menus keyed by ``menu_type`` plus the ``menu_items`` assignments."""

    model = Menu
    entity_type = "menu"
    key_field = "menu_type"

    @staticmethod
    def _assigned(scope: Scope) -> list:
        branch = MenuItem.branch_id
        return [
            MenuItem.tenant_id == scope.tenant_id,
            branch.is_(None) if scope.branch_id is None else branch == scope.branch_id,
        ]

    async def find_visible(self, session: AsyncSession, scope: Scope) -> list:
        return await self.find_all_active(session, scope)

    async def get_menus(
        self,
        session: AsyncSession,
        scope: Scope,
        menu_types: Iterable[str] | None = None,
    ) -> list[Menu]:
        stmt = select(Menu).where(*self._live(scope))
        if menu_types is not None:
            stmt = stmt.where(Menu.menu_type.in_(list(menu_types)))
        with store_errors(self.entity_type):
            return list((await session.execute(stmt.order_by(Menu.display_order))).scalars().all())

    async def ensure_menus(
        self,
        session: AsyncSession,
        scope: Scope,
        menu_types: Iterable[str],
        active: bool = True,
    ) -> list[Menu]:
        wanted = list(dict.fromkeys(menu_types))
        if not wanted:
            return []
        existing = {m.menu_type for m in await self.get_menus(session, scope, wanted)}
        missing = [mt for mt in wanted if mt not in existing]
        if not missing:
            return []
        return await self.insert_many(
            session,
            scope,
            [
                {"menu_type": mt, "name": menu_display_name(mt), "is_active": active}
                for mt in missing
            ],
        )

    async def set_menus_active(
        self,
        session: AsyncSession,
        scope: Scope,
        menu_types: Iterable[str],
        active: bool,
    ) -> int:
        menu_types = list(menu_types)
        if not menu_types:
            return 0
        stmt = (
            update(Menu)
            .where(
                *self._live(scope),
                Menu.menu_type.in_(menu_types),
                Menu.is_active.is_not(active),
            )
            .values(is_active=active, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        with store_errors(self.entity_type):
            return (await session.execute(stmt)).rowcount

    async def item_ids_by_menu(
        self, session: AsyncSession, scope: Scope, menu_types: Iterable[str]
    ) -> dict[str, set[UUID]]:
        stmt = (
            select(MenuItem.menu_type, MenuItem.food_item_id)
            .join(FoodItem, FoodItem.id == MenuItem.food_item_id)
            .where(
                *self._assigned(scope),
                MenuItem.menu_type.in_(list(menu_types)),
                FoodItem.deleted_at.is_(None),
            )
        )
        grouped: dict[str, set[UUID]] = {}
        with store_errors(self.entity_type):
            for menu_type, item_id in (await session.execute(stmt)).all():
                grouped.setdefault(menu_type, set()).add(item_id)
        return grouped

    async def menu_types_by_item(
        self, session: AsyncSession, scope: Scope, item_ids: Iterable[UUID]
    ) -> dict[UUID, set[str]]:
        stmt = select(MenuItem.food_item_id, MenuItem.menu_type).where(
            *self._assigned(scope),
            MenuItem.food_item_id.in_(list(item_ids)),
        )
        grouped: dict[UUID, set[str]] = {}
        with store_errors(self.entity_type):
            for item_id, menu_type in (await session.execute(stmt)).all():
                grouped.setdefault(item_id, set()).add(menu_type)
        return grouped

    async def item_active_flags(
        self, session: AsyncSession, scope: Scope, item_ids: Iterable[UUID]
    ) -> dict[UUID, bool]:
        stmt = select(FoodItem.id, FoodItem.is_active).where(
            FoodItem.tenant_id == scope.tenant_id,
            FoodItem.deleted_at.is_(None),
            FoodItem.id.in_(list(item_ids)),
        )
        with store_errors("food_item"):
            return dict((await session.execute(stmt)).all())

    async def set_items_active(
        self,
        session: AsyncSession,
        scope: Scope,
        item_ids: Iterable[UUID],
        active: bool,
    ) -> int:
        item_ids = list(item_ids)
        if not item_ids:
            return 0
        stmt = (
            update(FoodItem)
            .where(
                FoodItem.tenant_id == scope.tenant_id,
                FoodItem.deleted_at.is_(None),
                FoodItem.id.in_(item_ids),
                FoodItem.is_active.is_not(active),
            )
            .values(is_active=active, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        with store_errors("food_item"):
            return (await session.execute(stmt)).rowcount

    async def replace_menu_items(
        self,
        session: AsyncSession,
        scope: Scope,
        menu_type: str,
        item_ids: Iterable[UUID],
    ) -> None:
        wanted = list(dict.fromkeys(item_ids))
        with store_errors(self.entity_type):
            await session.execute(
                delete(MenuItem).where(
                    *self._assigned(scope),
                    MenuItem.menu_type == menu_type,
                )
            )
            session.add_all(
                MenuItem(
                    tenant_id=scope.tenant_id,
                    branch_id=scope.branch_id,
                    menu_type=menu_type,
                    food_item_id=item_id,
                    display_order=position,
                )
                for position, item_id in enumerate(wanted)
            )
            await session.flush()

    async def replace_item_menus(
        self,
        session: AsyncSession,
        scope: Scope,
        item_id: UUID,
        menu_types: Iterable[str],
    ) -> None:
        wanted = list(dict.fromkeys(normalize_key(mt) for mt in menu_types if mt))
        with store_errors(self.entity_type):
            await session.execute(
                delete(MenuItem).where(
                    *self._assigned(scope),
                    MenuItem.food_item_id == item_id,
                )
            )
            session.add_all(
                MenuItem(
                    tenant_id=scope.tenant_id,
                    branch_id=scope.branch_id,
                    menu_type=mt,
                    food_item_id=item_id,
                )
                for mt in wanted
            )
            await session.flush()
