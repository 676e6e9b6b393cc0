"""Repository interface for menus and their food item assignments."""

from abc import ABC, abstractmethod


class MenuRepo(ABC):
    """Contract for the menu/food item relation used by the cascade."""

    @abstractmethod
    def get_menus(self, session, scope, menu_types=None):
        """Return live menus, optionally restricted to ``menu_types``."""
        raise NotImplementedError

    @abstractmethod
    def ensure_menus(self, session, scope, menu_types, active=True):
        """Create the menus missing among ``menu_types``; return the new ones."""
        raise NotImplementedError

    @abstractmethod
    def set_menus_active(self, session, scope, menu_types, active):
        """Set the active flag of several menus in one statement."""
        raise NotImplementedError

    @abstractmethod
    def item_ids_by_menu(self, session, scope, menu_types):
        """Map each menu type to the ids of the food items assigned to it."""
        raise NotImplementedError

    @abstractmethod
    def menu_types_by_item(self, session, scope, item_ids):
        """Map each food item id to the menu types it is assigned to."""
        raise NotImplementedError

    @abstractmethod
    def item_active_flags(self, session, scope, item_ids):
        """Map each live food item id to its active flag."""
        raise NotImplementedError

    @abstractmethod
    def set_items_active(self, session, scope, item_ids, active):
        """Set the active flag of several food items in one statement."""
        raise NotImplementedError

    @abstractmethod
    def replace_menu_items(self, session, scope, menu_type, item_ids):
        """Make ``item_ids`` the exact assignment set of ``menu_type``."""
        raise NotImplementedError

    @abstractmethod
    def replace_item_menus(self, session, scope, item_id, menu_types):
        """Make ``menu_types`` the exact set of menus ``item_id`` belongs to."""
        raise NotImplementedError
