"""Repository interface for natural-key catalog entities."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Scope:
    """Tenant and optional branch every catalog read and write is bound to.

    A ``branch_id`` of ``None`` addresses the tenant-wide rows only, rows of
    a specific branch are never mixed into it.
    """

    tenant_id: str
    branch_id: str | None = None


class CatalogRepo(ABC):
    """Contract shared by every typed entity repository.

    All reads exclude soft-deleted rows. Writes are flushed, never committed:
    the caller owns the session and decides when its unit of work ends.
    """

    @abstractmethod
    def find_by_natural_key(self, session, scope, key, parent_id=None):
        """Return the live entity whose normalized key matches ``key``."""
        raise NotImplementedError

    @abstractmethod
    def find_all_active(self, session, scope, parent_id=None):
        """Return every live entity of the scope (optionally one parent's)."""
        raise NotImplementedError

    @abstractmethod
    def find_visible(self, session, scope):
        """Return the live entities that rows of ``scope`` may point at."""
        raise NotImplementedError

    @abstractmethod
    def find_by_ids(self, session, scope, ids):
        """Return live entities for ``ids``; unknown ids are skipped."""
        raise NotImplementedError

    @abstractmethod
    def insert_many(self, session, scope, rows):
        """Insert ``rows`` in one statement batch and return the new entities."""
        raise NotImplementedError

    @abstractmethod
    def update_by_id(self, session, scope, entity_id, fields):
        """Apply the partial ``fields`` to one live entity."""
        raise NotImplementedError

    @abstractmethod
    def soft_delete(self, session, scope, entity_id):
        """Mark one live entity as deleted."""
        raise NotImplementedError

    @abstractmethod
    def find_referencing(self, session, scope, parent_id):
        """Return live entities whose parent reference points at ``parent_id``."""
        raise NotImplementedError
