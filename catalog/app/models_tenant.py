"""Tenant-scoped catalog models.

Every catalog table carries ``tenant_id`` and an optional ``branch_id``; rows
are never physically removed, ``deleted_at`` marks them as gone. Entities
identified by a human readable name also store ``name_key`` (trimmed and
lower-cased) which backs the partial unique indexes declared at the bottom
of this module."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class CatalogEntityMixin(TimestampMixin):
    """Columns shared by every natural-key catalog entity."""

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    branch_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    name_key = Column(String, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class Category(CatalogEntityMixin, Base):
    """Menu category with an optional parent category."""

    __tablename__ = "categories"

    description = Column(Text, nullable=True)
    category_type = Column(String, nullable=False, default="food")
    parent_id = Column(Uuid, ForeignKey("categories.id"), nullable=True)


class FoodItem(CatalogEntityMixin, Base):
    """Sellable item belonging to one category."""

    __tablename__ = "food_items"

    category_id = Column(Uuid, ForeignKey("categories.id"), nullable=False)
    description = Column(Text, nullable=True)
    base_price = Column(Numeric(10, 2), nullable=False, default=0)
    stock_type = Column(String, nullable=False, default="unlimited")
    stock_quantity = Column(Integer, nullable=True)
    age_limit = Column(Integer, nullable=True)


class FoodItemLabel(Base):
    """Free-form label attached to a food item (``spicy``, ``vegan``...)."""

    __tablename__ = "food_item_labels"

    id = Column(Integer, primary_key=True)
    food_item_id = Column(Uuid, ForeignKey("food_items.id"), nullable=False)
    label = Column(String, nullable=False)


class FoodItemAddOnGroup(Base):
    """Link between a food item and an add-on group offered with it."""

    __tablename__ = "food_item_add_on_groups"
    __table_args__ = (UniqueConstraint("food_item_id", "add_on_group_id"),)

    id = Column(Integer, primary_key=True)
    food_item_id = Column(Uuid, ForeignKey("food_items.id"), nullable=False)
    add_on_group_id = Column(Uuid, ForeignKey("add_on_groups.id"), nullable=False)


class Menu(CatalogEntityMixin, Base):
    """Menu identified by a stable ``menu_type`` slug.

    ``name_key`` holds the normalized ``menu_type`` rather than the display
    name, so the slug is the natural key."""

    __tablename__ = "menus"

    menu_type = Column(String, nullable=False)


class MenuItem(Base):
    """Assignment of a food item to the menu type of one branch.

    Menus are per branch, so an assignment carries the branch of the menu it
    belongs to; ``None`` is the tenant-wide menu."""

    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    branch_id = Column(String, nullable=True)
    menu_type = Column(String, nullable=False)
    food_item_id = Column(Uuid, ForeignKey("food_items.id"), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AddOnGroup(CatalogEntityMixin, Base):
    """Group of optional extras offered with food items."""

    __tablename__ = "add_on_groups"

    selection_type = Column(String, nullable=False, default="multiple")
    is_required = Column(Boolean, nullable=False, default=False)
    min_selections = Column(Integer, nullable=False, default=0)
    max_selections = Column(Integer, nullable=True)
    category = Column(String, nullable=True)


class AddOn(CatalogEntityMixin, Base):
    """Single add-on inside an add-on group."""

    __tablename__ = "add_ons"

    add_on_group_id = Column(Uuid, ForeignKey("add_on_groups.id"), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)


class VariationGroup(CatalogEntityMixin, Base):
    """Group of mutually exclusive variations (sizes, crusts...)."""

    __tablename__ = "variation_groups"


class Variation(CatalogEntityMixin, Base):
    """Variation inside a variation group."""

    __tablename__ = "variations"

    variation_group_id = Column(
        Uuid, ForeignKey("variation_groups.id"), nullable=False
    )
    recipe_multiplier = Column(Float, nullable=False, default=1.0)
    pricing_adjustment = Column(Numeric(10, 2), nullable=False, default=0)


class Buffet(CatalogEntityMixin, Base):
    """Fixed-price buffet offered on one or more menus."""

    __tablename__ = "buffets"

    description = Column(Text, nullable=True)
    price_per_person = Column(Numeric(10, 2), nullable=False)
    min_persons = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=True)
    menu_types = Column(JSON, nullable=False, default=list)


class ComboMeal(CatalogEntityMixin, Base):
    """Bundle of food items sold at a combined price."""

    __tablename__ = "combo_meals"

    description = Column(Text, nullable=True)
    base_price = Column(Numeric(10, 2), nullable=False)
    food_item_ids = Column(JSON, nullable=False, default=list)
    menu_types = Column(JSON, nullable=False, default=list)
    discount_percentage = Column(Numeric(5, 2), nullable=True)


class Translation(Base):
    """Localized text for one field of one entity."""

    __tablename__ = "translations"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "field_name", "language"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    field_name = Column(String, nullable=False)
    language = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    source_language = Column(String, nullable=False, default="en")
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CatalogOutbox(Base):
    """Background tasks queued by the cascade and the reconciler."""

    __tablename__ = "catalog_outbox"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default="queued")
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)


def _natural_key_index(model, *scope) -> Index:
    """Partial unique index over the live rows of ``model``."""

    live = model.deleted_at.is_(None)
    return Index(
        f"uq_{model.__tablename__}_natural_key",
        *scope,
        model.name_key,
        unique=True,
        sqlite_where=live,
        postgresql_where=live,
    )


for _model in (Category, FoodItem, Menu, AddOnGroup, VariationGroup, Buffet, ComboMeal):
    _natural_key_index(
        _model, _model.tenant_id, func.coalesce(_model.branch_id, "")
    )

_natural_key_index(AddOn, AddOn.add_on_group_id)
_natural_key_index(Variation, Variation.variation_group_id)
Index(
    "uq_menu_items_assignment",
    MenuItem.tenant_id,
    func.coalesce(MenuItem.branch_id, ""),
    MenuItem.menu_type,
    MenuItem.food_item_id,
    unique=True,
)
Index("ix_menu_items_food_item", MenuItem.food_item_id)
Index("ix_catalog_outbox_status", CatalogOutbox.status, CatalogOutbox.id)
