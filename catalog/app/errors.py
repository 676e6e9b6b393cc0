"""Error taxonomy shared by the reconciler, the cascade and the API layer."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog errors carrying a stable ``kind``."""

    kind = "catalog"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CatalogError):
    """A row or payload is missing a required field or holds a bad value."""

    kind = "validation"
    status_code = 422


class ReferenceNotFoundError(CatalogError):
    """A natural key reference could not be resolved to a persisted entity."""

    kind = "reference"
    status_code = 404


class ConflictError(CatalogError):
    """Duplicate natural key, or a delete blocked by existing dependents."""

    kind = "conflict"
    status_code = 409


class PersistenceError(CatalogError):
    """The underlying store rejected or failed a call."""

    kind = "persistence"
    status_code = 500


class NotFoundError(CatalogError):
    """An entity addressed by id does not exist (or is soft-deleted)."""

    kind = "not_found"
    status_code = 404


__all__ = [
    "CatalogError",
    "ConflictError",
    "NotFoundError",
    "PersistenceError",
    "ReferenceNotFoundError",
    "ValidationError",
]
