"""Metadata registry: importing this module registers every table."""

from __future__ import annotations

from sqlmodel import SQLModel

from ..models import Comment, Task, User

metadata = SQLModel.metadata

__all__ = ["Comment", "SQLModel", "Task", "User", "metadata"]
