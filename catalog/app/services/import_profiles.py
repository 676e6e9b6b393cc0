"""Import sheet definitions.

A profile tells the reconciler how one sheet maps onto the catalog: which
columns exist, which entity a row upserts (``parent``), which entity it may
additionally upsert under that parent (``child``), which names must resolve
to existing entities (``references``) and which checks a row must pass
before anything is written.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError
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
)
from ..utils.names import menu_display_name, normalize_key
from .tabular import FieldDefinition
from .translations import TranslationRequest

SLUG_RE = re.compile(r"^[a-z0-9_]+$")


def _text(value: Any) -> str:
    return str(value).strip()


def _int(value: Any) -> int:
    return int(value)


def _float(value: Any) -> float:
    return float(value)


def _money(value: Any) -> Decimal:
    return Decimal(str(value))


def _bool(value: Any) -> bool:
    return bool(value)


def _lower(value: Any) -> str:
    return normalize_key(value)


def _title(value: Any) -> str:
    return _text(value).capitalize()


def _slugs(values: Any) -> list[str]:
    return list(dict.fromkeys(normalize_key(v) for v in values if normalize_key(v)))


@dataclass(frozen=True)
class Column:
    """Row field ``field`` stored in model attribute ``attr``."""

    field: str
    attr: str
    convert: Callable[[Any], Any] = _text


@dataclass
class EntityBinding:
    """How a row creates or updates one entity."""

    repo: EntityRepoSQL
    key_field: str
    key_attr: str = "name"
    key_convert: Callable[[Any], Any] = _text
    columns: tuple[Column, ...] = ()
    defaults: dict[str, Any] = field(default_factory=dict)
    create_missing: bool = True
    translate: tuple[str, ...] = ("name",)
    on_create: Callable[[dict], dict] | None = None
    normalize: Callable[[dict], dict] | None = None

    @property
    def entity_type(self) -> str:
        return self.repo.entity_type

    def values(self, data: dict) -> dict[str, Any]:
        """Model values for the columns present in ``data``."""
        values = {c.attr: c.convert(data[c.field]) for c in self.columns if c.field in data}
        return self.normalize(values) if self.normalize else values

    def create_payload(self, data: dict, values: dict[str, Any]) -> dict[str, Any]:
        payload = dict(self.defaults)
        if self.on_create:
            payload.update(self.on_create(data))
        payload[self.key_attr] = self.key_convert(data[self.key_field])
        payload.update(values)
        return self.normalize(payload) if self.normalize else payload

    def export(self, entity) -> dict[str, Any]:
        row = {self.key_field: getattr(entity, self.key_attr)}
        for column in self.columns:
            value = getattr(entity, column.attr)
            row[column.field] = float(value) if isinstance(value, Decimal) else value
        return row


@dataclass(frozen=True)
class Reference:
    """Names in ``field`` that must resolve to existing ``repo`` entities.

    A ``link`` reference is not a column of the row entity; its ids are handed
    to the profile's relation hook instead.
    """

    field: str
    repo: EntityRepoSQL
    attr: str
    many: bool = False
    link: bool = False


@dataclass(frozen=True)
class SelfReference:
    """A reference to another entity of the same sheet (category parent)."""

    field: str
    attr: str


RelationHook = Callable[
    [AsyncSession, Scope, UUID, dict, dict], Awaitable[list[TranslationRequest]]
]
ExportHook = Callable[[AsyncSession, Scope, list], Awaitable[dict[UUID, dict]]]


@dataclass
class ImportProfile:
    sheet: str
    fields: list[FieldDefinition]
    parent: EntityBinding
    child: EntityBinding | None = None
    references: tuple[Reference, ...] = ()
    self_reference: SelfReference | None = None
    checks: tuple[Callable[[dict], str | None], ...] = ()
    relations: RelationHook | None = None
    export_relations: ExportHook | None = None

    def validate(self, data: dict) -> list[str]:
        """Messages for everything wrong with one parsed row."""
        errors = list(data.get("_errors") or [])
        for f in self.fields:
            value = data.get(f.name)
            if f.required and (value is None or value == "" or value == []):
                errors.append(f"{f.label} is required")
                continue
            if f.choices and value not in (None, ""):
                values = value if isinstance(value, list) else [value]
                bad = [v for v in values if normalize_key(v) not in f.choices]
                if bad:
                    errors.append(
                        f"{f.label} must be one of {', '.join(f.choices)}"
                    )
        if not errors:
            for check in self.checks:
                message = check(data)
                if message:
                    errors.append(message)
        return errors

    def has_child(self, data: dict) -> bool:
        return self.child is not None and bool(_text(data.get(self.child.key_field, "")))


def _non_negative(name: str, label: str):
    def check(data: dict) -> str | None:
        if name in data and data[name] < 0:
            return f"{label} must not be negative"
        return None

    return check


def _between(name: str, label: str, low: float, high: float):
    def check(data: dict) -> str | None:
        if name in data and not low <= data[name] <= high:
            return f"{label} must be between {low:g} and {high:g}"
        return None

    return check


def _slug_field(name: str, label: str):
    def check(data: dict) -> str | None:
        values = data.get(name)
        if values is None:
            return None
        values = values if isinstance(values, list) else [values]
        bad = [v for v in values if not SLUG_RE.match(normalize_key(v))]
        if bad:
            listed = ", ".join(map(str, bad))
            return f"{label} must use lowercase letters, digits and underscores: {listed}"
        return None

    return check


def _selection_bounds(min_field: str, max_field: str):
    def check(data: dict) -> str | None:
        low, high = data.get(min_field), data.get(max_field)
        if low is not None and high is not None and high and low > high:
            return "Min Selections must not exceed Max Selections"
        return None

    return check


def _selection_rules(values: dict) -> dict:
    """A single-choice group allows exactly one pick, and one is mandatory
    when the group is required."""
    if values.get("selection_type") == "single":
        values["max_selections"] = 1
        if values.get("is_required"):
            values["min_selections"] = 1
    return values


async def _food_item_relations(
    session: AsyncSession, scope: Scope, item_id: UUID, data: dict, links: dict
) -> list[TranslationRequest]:
    requests: list[TranslationRequest] = []
    items = FoodItemRepoSQL()
    if "labels" in data:
        await items.replace_labels(session, item_id, data["labels"])
    if "add_on_group_ids" in links:
        await items.replace_add_on_groups(
            session, item_id, [UUID(i) for i in links["add_on_group_ids"]]
        )
    if "menuTypes" in data:
        menus = MenuRepoSQL()
        menu_types = _slugs(data["menuTypes"])
        created = await menus.ensure_menus(session, scope, menu_types)
        await menus.replace_item_menus(session, scope, item_id, menu_types)
        requests.extend(
            TranslationRequest("menu", m.id, {"name": m.name}) for m in created
        )
    return requests


async def _food_item_export(
    session: AsyncSession, scope: Scope, items: list
) -> dict[UUID, dict]:
    ids = [item.id for item in items]
    repo = FoodItemRepoSQL()
    labels = await repo.labels_by_item(session, ids)
    groups = await repo.add_on_group_names_by_item(session, ids)
    menu_types = await MenuRepoSQL().menu_types_by_item(session, scope, ids)
    return {
        item_id: {
            "labels": labels.get(item_id, []),
            "menuTypes": sorted(menu_types.get(item_id, set())),
            "addOnGroupNames": sorted(groups.get(item_id, [])),
        }
        for item_id in ids
    }


NAME = FieldDefinition("name", "Name", True, description="Used to find the record to update")
DESCRIPTION = FieldDefinition("description", "Description")
DISPLAY_ORDER = FieldDefinition("displayOrder", "Display Order", type="integer", example="0")
IS_ACTIVE = FieldDefinition("isActive", "Is Active", type="boolean", example="true")

# (field suffix, label, model attribute, converter, field options)
GROUP_COLUMNS = (
    (
        "SelectionType",
        "Selection Type",
        "selection_type",
        _lower,
        {"example": "multiple", "choices": ("single", "multiple")},
    ),
    ("IsRequired", "Is Required", "is_required", _bool, {"type": "boolean", "example": "false"}),
    ("MinSelections", "Min Selections", "min_selections", _int, {"type": "integer"}),
    ("MaxSelections", "Max Selections", "max_selections", _int, {"type": "integer"}),
    (
        "Category",
        "Category",
        "category",
        _title,
        {"example": "Add", "choices": ("add", "remove", "change")},
    ),
)


def _group_name(prefix: str, suffix: str) -> str:
    return f"{prefix}{suffix}" if prefix else suffix[0].lower() + suffix[1:]


def _group_fields(prefix: str = "", label_prefix: str = "") -> list[FieldDefinition]:
    return [
        FieldDefinition(_group_name(prefix, suffix), f"{label_prefix}{label}", **options)
        for suffix, label, _, _, options in GROUP_COLUMNS
    ]


def _group_columns(prefix: str = "") -> tuple[Column, ...]:
    return tuple(
        Column(_group_name(prefix, suffix), attr, convert)
        for suffix, _, attr, convert, _ in GROUP_COLUMNS
    )


def _category() -> ImportProfile:
    return ImportProfile(
        sheet="category",
        fields=[
            NAME,
            DESCRIPTION,
            FieldDefinition(
                "categoryType",
                "Category Type",
                example="food",
                choices=("food", "dessert", "beverage"),
            ),
            FieldDefinition(
                "parentName",
                "Parent Category",
                description="Name of an existing category or one defined in this file",
            ),
            DISPLAY_ORDER,
            IS_ACTIVE,
        ],
        parent=EntityBinding(
            CategoryRepoSQL(),
            "name",
            columns=(
                Column("description", "description"),
                Column("categoryType", "category_type", _lower),
                Column("displayOrder", "display_order", _int),
                Column("isActive", "is_active", _bool),
            ),
            translate=("name", "description"),
        ),
        self_reference=SelfReference("parentName", "parent_id"),
    )


def _food_item() -> ImportProfile:
    return ImportProfile(
        sheet="foodItem",
        fields=[
            NAME,
            DESCRIPTION,
            FieldDefinition("categoryName", "Category Name", True),
            FieldDefinition("basePrice", "Base Price", True, "number", example="10.00"),
            FieldDefinition(
                "stockType",
                "Stock Type",
                example="unlimited",
                choices=("unlimited", "limited"),
            ),
            FieldDefinition("stockQuantity", "Stock Quantity", type="integer"),
            FieldDefinition("ageLimit", "Age Limit", type="integer"),
            FieldDefinition("labels", "Labels", type="array", example="spicy,vegetarian"),
            FieldDefinition(
                "menuTypes", "Menu Types", type="array", example="breakfast,lunch"
            ),
            FieldDefinition(
                "addOnGroupNames",
                "Add-On Group Names",
                type="array",
                example="Sauces,Toppings",
            ),
            IS_ACTIVE,
        ],
        parent=EntityBinding(
            FoodItemRepoSQL(),
            "name",
            columns=(
                Column("description", "description"),
                Column("basePrice", "base_price", _money),
                Column("stockType", "stock_type", _lower),
                Column("stockQuantity", "stock_quantity", _int),
                Column("ageLimit", "age_limit", _int),
                Column("isActive", "is_active", _bool),
            ),
            translate=("name", "description"),
        ),
        references=(
            Reference("categoryName", CategoryRepoSQL(), "category_id"),
            Reference(
                "addOnGroupNames",
                AddOnGroupRepoSQL(),
                "add_on_group_ids",
                many=True,
                link=True,
            ),
        ),
        checks=(
            _non_negative("basePrice", "Base Price"),
            _non_negative("stockQuantity", "Stock Quantity"),
            _non_negative("ageLimit", "Age Limit"),
            _slug_field("menuTypes", "Menu Types"),
        ),
        relations=_food_item_relations,
        export_relations=_food_item_export,
    )


def _add_on_group() -> ImportProfile:
    return ImportProfile(
        sheet="addOnGroup",
        fields=[NAME, *_group_fields()],
        parent=EntityBinding(
            AddOnGroupRepoSQL(),
            "name",
            columns=_group_columns(),
            defaults={"selection_type": "multiple"},
            normalize=_selection_rules,
        ),
        checks=(_selection_bounds("minSelections", "maxSelections"),),
    )


def _add_on() -> ImportProfile:
    return ImportProfile(
        sheet="addon",
        fields=[
            FieldDefinition("addOnGroupName", "Add-On Group Name", True),
            FieldDefinition("name", "Name", True),
            FieldDefinition("price", "Price", type="number", example="0"),
            IS_ACTIVE,
            DISPLAY_ORDER,
        ],
        parent=EntityBinding(
            AddOnGroupRepoSQL(), "addOnGroupName", create_missing=False, translate=()
        ),
        child=EntityBinding(
            AddOnRepoSQL(),
            "name",
            columns=(
                Column("price", "price", _money),
                Column("isActive", "is_active", _bool),
                Column("displayOrder", "display_order", _int),
            ),
        ),
        checks=(_non_negative("price", "Price"),),
    )


def _add_on_group_and_add_on() -> ImportProfile:
    return ImportProfile(
        sheet="addOnGroupAndAddOn",
        fields=[
            FieldDefinition("addOnGroupName", "Add-On Group Name", True),
            *_group_fields("addOnGroup", "Add-On Group "),
            FieldDefinition("addOnName", "Add-On Name"),
            FieldDefinition("addOnPrice", "Add-On Price", type="number", example="0"),
            FieldDefinition(
                "addOnIsActive", "Add-On Is Active", type="boolean", example="true"
            ),
            FieldDefinition(
                "addOnDisplayOrder", "Add-On Display Order", type="integer", example="0"
            ),
        ],
        parent=EntityBinding(
            AddOnGroupRepoSQL(),
            "addOnGroupName",
            columns=_group_columns("addOnGroup"),
            defaults={"selection_type": "multiple"},
            normalize=_selection_rules,
        ),
        child=EntityBinding(
            AddOnRepoSQL(),
            "addOnName",
            columns=(
                Column("addOnPrice", "price", _money),
                Column("addOnIsActive", "is_active", _bool),
                Column("addOnDisplayOrder", "display_order", _int),
            ),
        ),
        checks=(
            _non_negative("addOnPrice", "Add-On Price"),
            _selection_bounds("addOnGroupMinSelections", "addOnGroupMaxSelections"),
        ),
    )


def _variation_group() -> ImportProfile:
    return ImportProfile(
        sheet="variationGroup",
        fields=[NAME],
        parent=EntityBinding(VariationGroupRepoSQL(), "name"),
    )


def _variation() -> ImportProfile:
    return ImportProfile(
        sheet="variation",
        fields=[
            FieldDefinition("variationGroupName", "Variation Group Name", True),
            FieldDefinition("name", "Name", True),
            FieldDefinition(
                "recipeMultiplier", "Recipe Multiplier", type="number", example="1"
            ),
            FieldDefinition(
                "pricingAdjustment", "Pricing Adjustment", type="number", example="0"
            ),
            DISPLAY_ORDER,
        ],
        parent=EntityBinding(
            VariationGroupRepoSQL(),
            "variationGroupName",
            create_missing=False,
            translate=(),
        ),
        child=EntityBinding(
            VariationRepoSQL(),
            "name",
            columns=(
                Column("recipeMultiplier", "recipe_multiplier", _float),
                Column("pricingAdjustment", "pricing_adjustment", _money),
                Column("displayOrder", "display_order", _int),
            ),
        ),
        checks=(_non_negative("recipeMultiplier", "Recipe Multiplier"),),
    )


def _variation_group_and_variation() -> ImportProfile:
    return ImportProfile(
        sheet="variationGroupAndVariation",
        fields=[
            FieldDefinition("variationGroupName", "Variation Group Name", True),
            FieldDefinition("variationName", "Variation Name"),
            FieldDefinition(
                "variationRecipeMultiplier",
                "Variation Recipe Multiplier",
                type="number",
                example="1",
            ),
            FieldDefinition(
                "variationPricingAdjustment",
                "Variation Pricing Adjustment",
                type="number",
                example="0",
            ),
            FieldDefinition(
                "variationDisplayOrder",
                "Variation Display Order",
                type="integer",
                example="0",
            ),
        ],
        parent=EntityBinding(VariationGroupRepoSQL(), "variationGroupName"),
        child=EntityBinding(
            VariationRepoSQL(),
            "variationName",
            columns=(
                Column("variationRecipeMultiplier", "recipe_multiplier", _float),
                Column("variationPricingAdjustment", "pricing_adjustment", _money),
                Column("variationDisplayOrder", "display_order", _int),
            ),
        ),
        checks=(
            _non_negative("variationRecipeMultiplier", "Variation Recipe Multiplier"),
        ),
    )


def _menu() -> ImportProfile:
    return ImportProfile(
        sheet="menu",
        fields=[
            FieldDefinition(
                "menuType",
                "Menu Type",
                True,
                description="Lowercase letters, digits and underscores",
                example="breakfast",
            ),
            FieldDefinition("name", "Name"),
            IS_ACTIVE,
        ],
        parent=EntityBinding(
            MenuRepoSQL(),
            "menuType",
            key_attr="menu_type",
            key_convert=_lower,
            columns=(
                Column("name", "name"),
                Column("isActive", "is_active", _bool),
            ),
            on_create=lambda data: {"name": menu_display_name(_lower(data["menuType"]))},
        ),
        checks=(_slug_field("menuType", "Menu Type"),),
    )


def _buffet() -> ImportProfile:
    return ImportProfile(
        sheet="buffet",
        fields=[
            NAME,
            DESCRIPTION,
            FieldDefinition(
                "pricePerPerson", "Price Per Person", True, "number", example="25.00"
            ),
            FieldDefinition("minPersons", "Minimum Persons", type="integer"),
            FieldDefinition("duration", "Duration (minutes)", type="integer"),
            FieldDefinition(
                "menuTypes", "Menu Types", True, "array", example="breakfast,lunch"
            ),
            DISPLAY_ORDER,
            IS_ACTIVE,
        ],
        parent=EntityBinding(
            BuffetRepoSQL(),
            "name",
            columns=(
                Column("description", "description"),
                Column("pricePerPerson", "price_per_person", _money),
                Column("minPersons", "min_persons", _int),
                Column("duration", "duration", _int),
                Column("menuTypes", "menu_types", _slugs),
                Column("displayOrder", "display_order", _int),
                Column("isActive", "is_active", _bool),
            ),
            translate=("name", "description"),
        ),
        checks=(
            _non_negative("pricePerPerson", "Price Per Person"),
            _non_negative("minPersons", "Minimum Persons"),
            _non_negative("duration", "Duration (minutes)"),
            _slug_field("menuTypes", "Menu Types"),
        ),
    )


def _combo_meal() -> ImportProfile:
    return ImportProfile(
        sheet="comboMeal",
        fields=[
            NAME,
            DESCRIPTION,
            FieldDefinition("basePrice", "Base Price", True, "number", example="15.00"),
            FieldDefinition(
                "foodItemNames",
                "Food Item Names",
                True,
                "array",
                description="Names of existing food items",
                example="Burger,Fries",
            ),
            FieldDefinition(
                "menuTypes", "Menu Types", type="array", example="breakfast,lunch"
            ),
            FieldDefinition(
                "discountPercentage", "Discount Percentage", type="number", example="10"
            ),
            DISPLAY_ORDER,
            IS_ACTIVE,
        ],
        parent=EntityBinding(
            ComboMealRepoSQL(),
            "name",
            columns=(
                Column("description", "description"),
                Column("basePrice", "base_price", _money),
                Column("menuTypes", "menu_types", _slugs),
                Column("discountPercentage", "discount_percentage", _money),
                Column("displayOrder", "display_order", _int),
                Column("isActive", "is_active", _bool),
            ),
            translate=("name", "description"),
        ),
        references=(
            Reference("foodItemNames", FoodItemRepoSQL(), "food_item_ids", many=True),
        ),
        checks=(
            _non_negative("basePrice", "Base Price"),
            _between("discountPercentage", "Discount Percentage", 0, 100),
            _slug_field("menuTypes", "Menu Types"),
        ),
    )


PROFILES: dict[str, Callable[[], ImportProfile]] = {
    "category": _category,
    "foodItem": _food_item,
    "addOnGroup": _add_on_group,
    "addon": _add_on,
    "addOnGroupAndAddOn": _add_on_group_and_add_on,
    "variationGroup": _variation_group,
    "variation": _variation,
    "variationGroupAndVariation": _variation_group_and_variation,
    "menu": _menu,
    "buffet": _buffet,
    "comboMeal": _combo_meal,
}


def get_profile(sheet: str) -> ImportProfile:
    """Return the profile for ``sheet`` or raise :class:`NotFoundError`."""
    try:
        return PROFILES[sheet]()
    except KeyError:
        raise NotFoundError(f"unknown import sheet {sheet!r}") from None
