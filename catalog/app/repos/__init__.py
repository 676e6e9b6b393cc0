"""Repository contracts for catalog persistence."""

from .catalog_repo import CatalogRepo, Scope
from .menu_repo import MenuRepo

__all__ = ["CatalogRepo", "MenuRepo", "Scope"]
