"""Database related helpers."""

from __future__ import annotations

from .session import async_session_maker, engine, get_session, init_db

__all__ = ["async_session_maker", "engine", "get_session", "init_db"]
