"""SQLAlchemy implementations of the natural-key entity repositories."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterable, Iterator
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ConflictError, NotFoundError, PersistenceError
from ..models_tenant import (
    AddOn,
    AddOnGroup,
    Buffet,
    Category,
    ComboMeal,
    FoodItem,
    FoodItemAddOnGroup,
    FoodItemLabel,
    Variation,
    VariationGroup,
)
from ..repos.catalog_repo import CatalogRepo, Scope
from ..utils.names import normalize_key


@contextmanager
def store_errors(entity_type: str) -> Iterator[None]:
    """Translate driver errors raised inside the block to catalog errors."""
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(
            f"{entity_type} conflicts with an existing record"
        ) from exc
    except SQLAlchemyError as exc:
        raise PersistenceError(f"{entity_type} could not be saved: {exc}") from exc


def entity_to_dict(entity) -> dict[str, Any]:
    """Plain JSON-friendly view of a mapped row."""
    data: dict[str, Any] = {}
    for column in entity.__table__.columns:
        value = getattr(entity, column.key)
        if isinstance(value, UUID):
            value = str(value)
        elif isinstance(value, Decimal):
            value = float(value)
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        data[column.key] = value
    return data


class EntityRepoSQL(CatalogRepo):
    """Generic repository for one natural-key model.

    Subclasses set ``model`` and, for entities owned by a parent, the name of
    the foreign key column in ``parent_column``. ``keyed_by_parent`` marks
    children whose natural key is ``(parent_id, name)`` instead of
    ``(tenant, branch, name)``.
    """

    model: Any = None
    entity_type = "entity"
    key_field = "name"
    parent_column: str | None = None
    keyed_by_parent = False

    def _live(self, scope: Scope) -> list:
        m = self.model
        conds = [m.tenant_id == scope.tenant_id, m.deleted_at.is_(None)]
        if self.keyed_by_parent:
            return conds
        if scope.branch_id is None:
            conds.append(m.branch_id.is_(None))
        else:
            conds.append(m.branch_id == scope.branch_id)
        return conds

    def _parent(self):
        return getattr(self.model, self.parent_column)

    async def find_by_natural_key(
        self,
        session: AsyncSession,
        scope: Scope,
        key: str,
        parent_id: UUID | None = None,
    ):
        stmt = select(self.model).where(
            *self._live(scope), self.model.name_key == normalize_key(key)
        )
        if self.keyed_by_parent:
            stmt = stmt.where(self._parent() == parent_id)
        with store_errors(self.entity_type):
            return (await session.execute(stmt)).scalars().first()

    async def find_all_active(
        self, session: AsyncSession, scope: Scope, parent_id: UUID | None = None
    ) -> list:
        stmt = select(self.model).where(*self._live(scope))
        if parent_id is not None and self.parent_column:
            stmt = stmt.where(self._parent() == parent_id)
        stmt = stmt.order_by(self.model.display_order, self.model.name)
        with store_errors(self.entity_type):
            return list((await session.execute(stmt)).scalars().all())

    async def find_visible(self, session: AsyncSession, scope: Scope) -> list:
        """Live entities of the branch followed by the tenant-wide ones.

        A branch sees the tenant catalog beneath its own. When both carry the
        same name the branch row is listed first.
        """
        m = self.model
        if self.keyed_by_parent or scope.branch_id is None:
            conds = self._live(scope)
        else:
            conds = [
                m.tenant_id == scope.tenant_id,
                m.deleted_at.is_(None),
                or_(m.branch_id == scope.branch_id, m.branch_id.is_(None)),
            ]
        stmt = select(m).where(*conds).order_by(
            m.branch_id.is_(None), m.display_order, m.name
        )
        with store_errors(self.entity_type):
            return list((await session.execute(stmt)).scalars().all())

    async def find_by_ids(
        self, session: AsyncSession, scope: Scope, ids: Iterable[UUID]
    ) -> list:
        ids = list(ids)
        if not ids:
            return []
        stmt = select(self.model).where(
            self.model.tenant_id == scope.tenant_id,
            self.model.deleted_at.is_(None),
            self.model.id.in_(ids),
        )
        with store_errors(self.entity_type):
            return list((await session.execute(stmt)).scalars().all())

    async def get(self, session: AsyncSession, scope: Scope, entity_id: UUID):
        """Return one live entity or raise :class:`NotFoundError`."""
        found = await self.find_by_ids(session, scope, [entity_id])
        if not found:
            raise NotFoundError(f"{self.entity_type} {entity_id} not found")
        return found[0]

    def build(self, scope: Scope, row: dict[str, Any]):
        """Return a new, unsaved model instance for ``row``."""
        values = dict(row)
        values.setdefault("id", uuid.uuid4())
        values["tenant_id"] = scope.tenant_id
        values["branch_id"] = scope.branch_id
        values["name_key"] = normalize_key(values[self.key_field])
        return self.model(**values)

    async def insert_many(
        self, session: AsyncSession, scope: Scope, rows: list[dict[str, Any]]
    ) -> list:
        entities = [self.build(scope, row) for row in rows]
        with store_errors(self.entity_type):
            session.add_all(entities)
            await session.flush()
        return entities

    async def update_by_id(
        self,
        session: AsyncSession,
        scope: Scope,
        entity_id: UUID,
        fields: dict[str, Any],
    ) -> None:
        values = dict(fields)
        if self.key_field in values:
            values["name_key"] = normalize_key(values[self.key_field])
        stmt = (
            update(self.model)
            .where(
                self.model.id == entity_id,
                self.model.tenant_id == scope.tenant_id,
                self.model.deleted_at.is_(None),
            )
            .values(**values, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        with store_errors(self.entity_type):
            result = await session.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError(f"{self.entity_type} {entity_id} not found")

    async def soft_delete(
        self, session: AsyncSession, scope: Scope, entity_id: UUID
    ) -> None:
        stmt = (
            update(self.model)
            .where(
                self.model.id == entity_id,
                self.model.tenant_id == scope.tenant_id,
                self.model.deleted_at.is_(None),
            )
            .values(deleted_at=func.now(), updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        with store_errors(self.entity_type):
            result = await session.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError(f"{self.entity_type} {entity_id} not found")

    async def find_referencing(
        self, session: AsyncSession, scope: Scope, parent_id: UUID
    ) -> list:
        if not self.parent_column:
            return []
        stmt = select(self.model).where(
            self.model.tenant_id == scope.tenant_id,
            self.model.deleted_at.is_(None),
            self._parent() == parent_id,
        )
        with store_errors(self.entity_type):
            return list((await session.execute(stmt)).scalars().all())


class CategoryRepoSQL(EntityRepoSQL):
    model = Category
    entity_type = "category"
    parent_column = "parent_id"

    async def ancestor_ids(
        self, session: AsyncSession, scope: Scope, category_id: UUID
    ) -> list[UUID]:
        """Walk ``parent_id`` upwards from ``category_id`` (inclusive).

        Stops at a root or at the first repeated id, so an already corrupt
        chain cannot loop forever.
        """
        stmt = select(Category.id, Category.parent_id).where(
            Category.tenant_id == scope.tenant_id, Category.deleted_at.is_(None)
        )
        with store_errors(self.entity_type):
            parents = dict((await session.execute(stmt)).all())
        chain: list[UUID] = []
        current: UUID | None = category_id
        while current is not None and current not in chain:
            chain.append(current)
            current = parents.get(current)
        return chain


class FoodItemRepoSQL(EntityRepoSQL):
    model = FoodItem
    entity_type = "food_item"
    parent_column = "category_id"

    async def replace_labels(
        self, session: AsyncSession, item_id: UUID, labels: Iterable[str]
    ) -> None:
        """Make ``labels`` the exact label set of one item."""
        wanted = list(dict.fromkeys(label.strip() for label in labels if label.strip()))
        with store_errors(self.entity_type):
            await session.execute(
                delete(FoodItemLabel).where(FoodItemLabel.food_item_id == item_id)
            )
            session.add_all(
                FoodItemLabel(food_item_id=item_id, label=label) for label in wanted
            )
            await session.flush()

    async def labels_by_item(
        self, session: AsyncSession, item_ids: Iterable[UUID]
    ) -> dict[UUID, list[str]]:
        stmt = select(FoodItemLabel.food_item_id, FoodItemLabel.label).where(
            FoodItemLabel.food_item_id.in_(list(item_ids))
        )
        labels: dict[UUID, list[str]] = {}
        with store_errors(self.entity_type):
            for item_id, label in (await session.execute(stmt)).all():
                labels.setdefault(item_id, []).append(label)
        return labels

    async def replace_add_on_groups(
        self, session: AsyncSession, item_id: UUID, group_ids: Iterable[UUID]
    ) -> None:
        """Make ``group_ids`` the exact add-on groups offered with one item."""
        wanted = list(dict.fromkeys(group_ids))
        with store_errors(self.entity_type):
            await session.execute(
                delete(FoodItemAddOnGroup).where(
                    FoodItemAddOnGroup.food_item_id == item_id
                )
            )
            session.add_all(
                FoodItemAddOnGroup(food_item_id=item_id, add_on_group_id=group_id)
                for group_id in wanted
            )
            await session.flush()

    async def add_on_group_names_by_item(
        self, session: AsyncSession, item_ids: Iterable[UUID]
    ) -> dict[UUID, list[str]]:
        stmt = (
            select(FoodItemAddOnGroup.food_item_id, AddOnGroup.name)
            .join(AddOnGroup, AddOnGroup.id == FoodItemAddOnGroup.add_on_group_id)
            .where(
                FoodItemAddOnGroup.food_item_id.in_(list(item_ids)),
                AddOnGroup.deleted_at.is_(None),
            )
        )
        names: dict[UUID, list[str]] = {}
        with store_errors(self.entity_type):
            for item_id, name in (await session.execute(stmt)).all():
                names.setdefault(item_id, []).append(name)
        return names


class AddOnGroupRepoSQL(EntityRepoSQL):
    model = AddOnGroup
    entity_type = "add_on_group"

    async def linked_food_item_ids(
        self, session: AsyncSession, group_id: UUID
    ) -> list[UUID]:
        stmt = (
            select(FoodItemAddOnGroup.food_item_id)
            .join(FoodItem, FoodItem.id == FoodItemAddOnGroup.food_item_id)
            .where(
                FoodItemAddOnGroup.add_on_group_id == group_id,
                FoodItem.deleted_at.is_(None),
            )
        )
        with store_errors(self.entity_type):
            return list((await session.execute(stmt)).scalars().all())


class AddOnRepoSQL(EntityRepoSQL):
    model = AddOn
    entity_type = "add_on"
    parent_column = "add_on_group_id"
    keyed_by_parent = True


class VariationGroupRepoSQL(EntityRepoSQL):
    model = VariationGroup
    entity_type = "variation_group"


class VariationRepoSQL(EntityRepoSQL):
    model = Variation
    entity_type = "variation"
    parent_column = "variation_group_id"
    keyed_by_parent = True


class BuffetRepoSQL(EntityRepoSQL):
    model = Buffet
    entity_type = "buffet"


class ComboMealRepoSQL(EntityRepoSQL):
    model = ComboMeal
    entity_type = "combo_meal"

    async def find_containing_item(
        self, session: AsyncSession, scope: Scope, item_id: UUID
    ) -> list:
        """Live combo meals (any branch) that bundle ``item_id``."""
        stmt = select(ComboMeal).where(
            ComboMeal.tenant_id == scope.tenant_id, ComboMeal.deleted_at.is_(None)
        )
        with store_errors(self.entity_type):
            combos = (await session.execute(stmt)).scalars().all()
        return [c for c in combos if str(item_id) in (c.food_item_ids or [])]
