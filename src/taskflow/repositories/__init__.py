"""Database repositories for encapsulating persistence logic."""

from __future__ import annotations

from .comments import CommentRepository
from .tasks import TaskRepository
from .users import UserRepository

__all__ = ["CommentRepository", "TaskRepository", "UserRepository"]
