"""Name helpers shared by repositories and services."""

DEFAULT_MENU_TYPES = ("all_day", "breakfast", "lunch", "dinner", "kids_special")


def normalize_key(value) -> str:
    """Return the natural key form of ``value``: trimmed and lower-cased."""
    return str(value or "").strip().lower()


def menu_display_name(menu_type: str) -> str:
    """``kids_special`` -> ``Kids special``."""
    if not menu_type:
        return ""
    return (menu_type[0].upper() + menu_type[1:]).replace("_", " ")
