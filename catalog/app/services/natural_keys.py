"""Natural key lookups for one entity type within one tenant/branch scope.

A resolver is filled from a single snapshot query at the start of a run and
then only grows through :meth:`NaturalKeyResolver.remember` as the run creates
entities. It never goes back to the store, so entities created by another
run in the meantime stay invisible; the partial unique index on
``name_key`` turns such a race into a :class:`~catalog.app.errors.ConflictError`
instead of a duplicate.
"""

from __future__ import annotations

from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..repos.catalog_repo import Scope
from ..utils.names import normalize_key

class NaturalKeyResolver:
    """In-memory ``(parent id, normalized name) -> id`` map."""

    def __init__(
        self,
        entity_type: str,
        scope: Scope,
        entities: Iterable[Any] = (),
        *,
        key_field: str = "name",
        parent_column: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.scope = scope
        self.key_field = key_field
        self.parent_column = parent_column
        self._ids: dict[tuple[UUID | None, str], UUID] = {}
        self.entities: dict[UUID, Any] = {}
        for entity in entities:
            parent_id = getattr(entity, parent_column) if parent_column else None
            self.remember(getattr(entity, key_field), entity.id, parent_id)
            self.entities[entity.id] = entity

    @classmethod
    async def snapshot(
        cls, session: AsyncSession, repo, scope: Scope
    ) -> "NaturalKeyResolver":
        """Load every entity ``scope`` can see in one query.

        A branch scope also sees the tenant-wide entities; where a name exists
        at both levels the branch entity wins.
        """
        entities = await repo.find_visible(session, scope)
        return cls(
            repo.entity_type,
            scope,
            entities,
            key_field=repo.key_field,
            parent_column=repo.parent_column if repo.keyed_by_parent else None,
        )

    def resolve(self, name: str | None, parent_id: UUID | None = None) -> UUID | None:
        key = normalize_key(name)
        if not key:
            return None
        return self._ids.get((parent_id, key))

    def remember(
        self, name: str, entity_id: UUID, parent_id: UUID | None = None
    ) -> None:
        """Record an entity created (or found) during the current run."""
        key = normalize_key(name)
        if key:
            self._ids.setdefault((parent_id, key), entity_id)

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None

    def __len__(self) -> int:
        return len(self._ids)
