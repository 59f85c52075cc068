"""Database engine and session helpers."""

from __future__ import annotations

from .session import build_engine, build_session_factory, create_schema, session_scope

__all__ = ["build_engine", "build_session_factory", "create_schema", "session_scope"]
