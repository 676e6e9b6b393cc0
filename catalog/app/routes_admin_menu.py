"""Admin catalog routes.

Availability toggles for menus and food items, menu management and the
single-entity create, update and delete calls. Errors raised by the
services are rendered by the application's ``CatalogError`` handler.
"""

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from .deps import get_scope, get_services
from .errors import ValidationError
from .repos.catalog_repo import Scope
from .repos_sqlalchemy import entity_to_dict
from .services import CatalogServices
from .utils.responses import ok

router = APIRouter()

PREFIX = "/api/outlet/{tenant_id}"

# URL segment -> entity type
ENTITY_PATHS = {
    "categories": "category",
    "food-items": "food_item",
    "add-on-groups": "add_on_group",
    "add-ons": "add_on",
    "variation-groups": "variation_group",
    "variations": "variation",
    "buffets": "buffet",
    "combo-meals": "combo_meal",
}


def _entity_type(kind: str) -> str:
    try:
        return ENTITY_PATHS[kind]
    except KeyError:
        raise ValidationError(f"unknown catalog collection {kind!r}") from None


def _with_ids(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert ``*_id`` values of a JSON body to UUIDs."""

    converted = dict(fields)
    for key, value in fields.items():
        if key.endswith("_id") and isinstance(value, str):
            try:
                converted[key] = UUID(value)
            except ValueError:
                raise ValidationError(f"{key} is not a valid id") from None
    return converted


class ActiveToggle(BaseModel):
    """Payload for availability toggles."""

    active: bool


class MenuCreate(BaseModel):
    menu_type: str
    name: Optional[str] = None
    is_active: bool = True


class MenuItemsAssign(BaseModel):
    item_ids: List[UUID]


class CategoryUpdate(BaseModel):
    """Partial category update; omitted fields are left unchanged."""

    name: Optional[str] = None
    description: Optional[str] = None
    category_type: Optional[str] = None
    parent_id: Optional[UUID] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


@router.patch(PREFIX + "/menus/{menu_type}/active")
async def toggle_menu(
    menu_type: str,
    payload: ActiveToggle,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    """Activate or deactivate a menu.

    Food items follow in the background through the outbox worker.
    """

    return ok(
        await services.availability.set_menu_active(scope, menu_type, payload.active)
    )


@router.patch(PREFIX + "/food-items/{item_id}/active")
async def toggle_food_item(
    item_id: UUID,
    payload: ActiveToggle,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    return ok(
        await services.availability.set_food_item_active(scope, item_id, payload.active)
    )


@router.get(PREFIX + "/menus")
async def list_menus(
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    return ok(await services.catalog.list_menus(scope))


@router.post(PREFIX + "/menus", status_code=201)
async def create_menu(
    payload: MenuCreate,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    menu = await services.catalog.create_menu(
        scope, payload.menu_type, payload.name, payload.is_active
    )
    return ok(entity_to_dict(menu))


@router.post(PREFIX + "/menus/defaults")
async def create_default_menus(
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    """Create the default menu types that do not exist yet."""

    created = await services.catalog.create_default_menus(scope)
    return ok({"created": [m.menu_type for m in created]})


@router.put(PREFIX + "/menus/{menu_type}/items")
async def assign_menu_items(
    menu_type: str,
    payload: MenuItemsAssign,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    return ok(
        await services.catalog.assign_items_to_menu(scope, menu_type, payload.item_ids)
    )


@router.delete(PREFIX + "/menus/{menu_type}")
async def delete_menu(
    menu_type: str,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    await services.catalog.delete_menu(scope, menu_type)
    return ok(None)


@router.patch(PREFIX + "/categories/{category_id}")
async def update_category(
    category_id: UUID,
    payload: CategoryUpdate,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    """Update a category; moving it under one of its descendants is rejected."""

    category = await services.catalog.update_category(
        scope, category_id, payload.model_dump(exclude_unset=True)
    )
    return ok(entity_to_dict(category))


@router.get(PREFIX + "/{kind}")
async def list_entities(
    kind: str,
    parent_id: Optional[UUID] = None,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    entities = await services.catalog.list_entities(scope, _entity_type(kind), parent_id)
    return ok([entity_to_dict(e) for e in entities])


@router.post(PREFIX + "/{kind}", status_code=201)
async def create_entity(
    kind: str,
    payload: dict[str, Any] = Body(...),
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    entity = await services.catalog.create_entity(
        scope, _entity_type(kind), _with_ids(payload)
    )
    return ok(entity_to_dict(entity))


@router.patch(PREFIX + "/{kind}/{entity_id}")
async def update_entity(
    kind: str,
    entity_id: UUID,
    payload: dict[str, Any] = Body(...),
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    entity = await services.catalog.update_entity(
        scope, _entity_type(kind), entity_id, _with_ids(payload)
    )
    return ok(entity_to_dict(entity))


@router.delete(PREFIX + "/{kind}/{entity_id}")
async def delete_entity(
    kind: str,
    entity_id: UUID,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    """Soft delete; refused with 409 while other records depend on it."""

    await services.catalog.delete_entity(scope, _entity_type(kind), entity_id)
    return ok(None)
