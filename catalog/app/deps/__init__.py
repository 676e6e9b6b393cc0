"""FastAPI dependencies."""

from .services import get_services
from .tenant import get_scope

__all__ = ["get_scope", "get_services"]
