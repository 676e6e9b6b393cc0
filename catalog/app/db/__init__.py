"""Database engine and session helpers."""

from .engine import get_engine, make_session_factory, run_migrations

__all__ = ["get_engine", "make_session_factory", "run_migrations"]
