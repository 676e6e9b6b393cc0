from __future__ import annotations

"""Dependency helpers for tenant resolution."""

from fastapi import HTTPException, Query

from ..repos.catalog_repo import Scope


def get_scope(tenant_id: str, branch_id: str | None = Query(default=None)) -> Scope:
    """Return the :class:`Scope` addressed by the path and ``branch_id`` query.

    Raises:
        HTTPException: If the tenant id is blank.
    """
    if not tenant_id.strip():
        raise HTTPException(400, "Missing tenant id")
    return Scope(tenant_id=tenant_id, branch_id=branch_id or None)
