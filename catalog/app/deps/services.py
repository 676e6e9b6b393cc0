from __future__ import annotations

"""Access to the services wired at application startup."""

from fastapi import Request

from ..services import CatalogServices


def get_services(request: Request) -> CatalogServices:
    return request.app.state.services
