"""Keep food item and menu ``is_active`` flags consistent.

The rule being maintained: a food item stays active while it belongs to at
least one active menu. Toggles write the flag the caller asked for and queue
a recompute task in the same commit; the recompute runs from the outbox
worker after the caller already has its response. Recomputes read the
current state instead of trusting the task payload, so running the same
toggle again repairs whatever a crashed or failed recompute left behind.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotFoundError
from ..repos.catalog_repo import Scope
from ..repos_sqlalchemy.menu_repo_sql import MenuRepoSQL
from ..routes_metrics import catalog_cascade_updates_total
from ..utils.names import normalize_key
from .outbox import KIND_ITEM_AVAILABILITY, KIND_MENU_AVAILABILITY, enqueue
from .translations import TranslationOrchestrator, TranslationRequest

logger = logging.getLogger("catalog.availability")


class AvailabilityCascade:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        menus: MenuRepoSQL | None = None,
        translations: TranslationOrchestrator | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.menus = menus or MenuRepoSQL()
        self.translations = translations

    def _queue_menu_translations(self, session, scope: Scope, created) -> None:
        if self.translations is None:
            return
        for menu in created:
            self.translations.enqueue(
                session,
                scope.tenant_id,
                TranslationRequest("menu", menu.id, {"name": menu.name}),
            )

    async def set_menu_active(self, scope: Scope, menu_type: str, active: bool) -> dict:
        """Flip one menu and queue the recompute of its food items.

        A menu type without a record yet gets one, named after the slug.
        """
        menu_type = normalize_key(menu_type)
        async with self.session_factory() as session:
            existing = await self.menus.get_menus(session, scope, [menu_type])
            created = []
            if existing:
                await self.menus.set_menus_active(session, scope, [menu_type], active)
            else:
                created = await self.menus.ensure_menus(
                    session, scope, [menu_type], active=active
                )
                self._queue_menu_translations(session, scope, created)
            enqueue(
                session,
                scope.tenant_id,
                KIND_MENU_AVAILABILITY,
                {"menu_type": menu_type, "branch_id": scope.branch_id, "active": active},
            )
            await session.commit()
        logger.info(
            "menu %s %s",
            menu_type,
            "activated" if active else "deactivated",
            extra={
                "event": "availability.menu_toggled",
                "tenant": scope.tenant_id,
                "entity_type": "menu",
                "entity_id": menu_type,
            },
        )
        return {"menu_type": menu_type, "is_active": active, "created": bool(created)}

    async def set_food_item_active(
        self, scope: Scope, item_id: UUID, active: bool
    ) -> dict:
        """Flip one food item and queue the recompute of its menus."""
        async with self.session_factory() as session:
            flags = await self.menus.item_active_flags(session, scope, [item_id])
            if item_id not in flags:
                raise NotFoundError(f"food_item {item_id} not found")
            await self.menus.set_items_active(session, scope, [item_id], active)
            enqueue(
                session,
                scope.tenant_id,
                KIND_ITEM_AVAILABILITY,
                {"item_id": str(item_id), "branch_id": scope.branch_id, "active": active},
            )
            await session.commit()
        return {"id": str(item_id), "is_active": active}

    async def recompute_menu(self, scope: Scope, menu_type: str) -> int:
        """Align the food items of ``menu_type`` with the menu's current flag.

        Activation turns on every inactive item. Deactivation turns off only
        the items that are in no other active menu. Returns the number of
        items changed.
        """
        async with self.session_factory() as session:
            menus = await self.menus.get_menus(session, scope)
            active_types = {m.menu_type for m in menus if m.is_active}
            if menu_type not in {m.menu_type for m in menus}:
                return 0
            item_ids = (
                await self.menus.item_ids_by_menu(session, scope, [menu_type])
            ).get(menu_type, set())
            if not item_ids:
                return 0
            if menu_type in active_types:
                changed = await self.menus.set_items_active(
                    session, scope, item_ids, True
                )
            else:
                memberships = await self.menus.menu_types_by_item(
                    session, scope, item_ids
                )
                orphaned = [
                    item_id
                    for item_id in item_ids
                    if not memberships.get(item_id, set()) & active_types
                ]
                changed = await self.menus.set_items_active(
                    session, scope, orphaned, False
                )
            await session.commit()
        catalog_cascade_updates_total.labels(entity_type="food_item").inc(changed)
        return changed

    async def recompute_food_item(self, scope: Scope, item_id: UUID) -> int:
        """Align the menus containing ``item_id`` with the item's current flag.

        An active item that sits in no active menu activates all of its menus,
        creating missing menu records. An inactive item deactivates each of
        its menus that has no other active item left. Returns the number of
        menus changed or created.
        """
        async with self.session_factory() as session:
            flags = await self.menus.item_active_flags(session, scope, [item_id])
            if item_id not in flags:
                return 0
            menu_types = (
                await self.menus.menu_types_by_item(session, scope, [item_id])
            ).get(item_id, set())
            if not menu_types:
                return 0
            if flags[item_id]:
                menus = await self.menus.get_menus(session, scope, menu_types)
                if any(m.is_active for m in menus):
                    return 0
                changed = await self.menus.set_menus_active(
                    session, scope, menu_types, True
                )
                created = await self.menus.ensure_menus(
                    session,
                    scope,
                    sorted(menu_types - {m.menu_type for m in menus}),
                    active=True,
                )
                self._queue_menu_translations(session, scope, created)
                changed += len(created)
            else:
                by_menu = await self.menus.item_ids_by_menu(session, scope, menu_types)
                others = set().union(*by_menu.values()) - {item_id}
                other_flags = await self.menus.item_active_flags(session, scope, others)
                idle = [
                    mt
                    for mt in menu_types
                    if not any(other_flags.get(i) for i in by_menu.get(mt, set()) - {item_id})
                ]
                changed = await self.menus.set_menus_active(session, scope, idle, False)
            await session.commit()
        catalog_cascade_updates_total.labels(entity_type="menu").inc(changed)
        return changed

    async def handle_menu_task(self, tenant_id: str, payload: dict) -> None:
        """Outbox handler for ``availability.menu`` tasks."""
        scope = Scope(tenant_id, payload.get("branch_id"))
        await self.recompute_menu(scope, payload["menu_type"])

    async def handle_item_task(self, tenant_id: str, payload: dict) -> None:
        """Outbox handler for ``availability.food_item`` tasks."""
        scope = Scope(tenant_id, payload.get("branch_id"))
        await self.recompute_food_item(scope, UUID(payload["item_id"]))
