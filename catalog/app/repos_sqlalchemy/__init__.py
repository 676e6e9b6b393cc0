"""SQLAlchemy-backed repository implementations."""

from .entity_repo_sql import (
    AddOnGroupRepoSQL,
    AddOnRepoSQL,
    BuffetRepoSQL,
    CategoryRepoSQL,
    ComboMealRepoSQL,
    EntityRepoSQL,
    FoodItemRepoSQL,
    VariationGroupRepoSQL,
    VariationRepoSQL,
    entity_to_dict,
    store_errors,
)
from .menu_repo_sql import MenuRepoSQL

__all__ = [
    "AddOnGroupRepoSQL",
    "AddOnRepoSQL",
    "BuffetRepoSQL",
    "CategoryRepoSQL",
    "ComboMealRepoSQL",
    "EntityRepoSQL",
    "FoodItemRepoSQL",
    "MenuRepoSQL",
    "VariationGroupRepoSQL",
    "VariationRepoSQL",
    "entity_to_dict",
    "store_errors",
]
