"""Service layer orchestrating user-related operations."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlmodel.ext.asyncio.session import AsyncSession

from ..errors import InvalidInputError, NotFoundError, ValidationFailedError
from ..models import User, UserRole, normalize_email, utcnow
from ..policies import UserAction, enforce
from ..repositories import CommentRepository, TaskRepository, UserRepository

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 255
USER_FIELDS = frozenset({"email", "first_name", "last_name", "role"})


class UserService:
    """High-level business operations for ``User`` entities."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repository = UserRepository(session)
        self._tasks = TaskRepository(session)
        self._comments = CommentRepository(session)

    @property
    def repository(self) -> UserRepository:
        return self._repository

    async def _clean(
        self,
        fields: Mapping[str, Any],
        *,
        current: User | None = None,
    ) -> tuple[dict[str, Any], dict[str, list[str]]]:
        cleaned: dict[str, Any] = {}
        errors: dict[str, list[str]] = {}
        for name, value in fields.items():
            if name not in USER_FIELDS:
                errors.setdefault(name, []).append("is not permitted")
            elif name == "role":
                try:
                    cleaned[name] = UserRole(value)
                except ValueError:
                    errors.setdefault(name, []).append("is not included in the list")
            elif name == "email":
                email = normalize_email(value) if isinstance(value, str) else ""
                if "@" not in email:
                    errors.setdefault(name, []).append("is invalid")
                    continue
                existing = await self._repository.get_by_email(email)
                if existing is not None and (current is None or existing.id != current.id):
                    errors.setdefault(name, []).append("has already been taken")
                    continue
                cleaned[name] = email
            else:
                text = value.strip() if isinstance(value, str) else ""
                if not text:
                    errors.setdefault(name, []).append("can't be blank")
                elif len(text) > NAME_MAX_LENGTH:
                    errors.setdefault(name, []).append("is too long")
                else:
                    cleaned[name] = text
        return cleaned, errors

    async def register_user(
        self,
        *,
        email: str,
        first_name: str,
        last_name: str,
        role: UserRole = UserRole.MEMBER,
    ) -> User:
        """Create a user without an acting user (signup and seeding)."""
        fields = {"email": email, "first_name": first_name, "last_name": last_name, "role": role}
        cleaned, errors = await self._clean(fields)
        if errors:
            raise InvalidInputError("User could not be created.", errors=errors)
        user = User(**cleaned)
        await self._repository.add(user)
        await self._session.commit()
        await self._repository.refresh(user)
        logger.info("User %s registered", user.id, extra={"user_id": user.id, "role": user.role.value})
        return user

    async def create_user(self, actor: User, fields: Mapping[str, Any]) -> User:
        enforce(actor, UserAction.CREATE)
        missing = [name for name in ("email", "first_name", "last_name") if name not in fields]
        if missing:
            raise InvalidInputError(
                "User could not be created.",
                errors={name: ["can't be blank"] for name in missing},
            )
        return await self.register_user(
            email=fields["email"],
            first_name=fields["first_name"],
            last_name=fields["last_name"],
            role=fields.get("role", UserRole.MEMBER),
        )

    async def find_user(self, user_id: int) -> User:
        user = await self._repository.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found.")
        return user

    async def get_user(self, actor: User, user_id: int) -> User:
        user = await self.find_user(user_id)
        enforce(actor, UserAction.VIEW, user)
        return user

    async def get_user_by_email(self, email: str) -> User | None:
        return await self._repository.get_by_email(email)

    async def list_users(self, actor: User) -> list[User]:
        enforce(actor, UserAction.LIST)
        return await self._repository.list()

    async def update_user(self, user: User | None, actor: User, fields: Mapping[str, Any]) -> User:
        """Update profile attributes; changing a role requires an admin."""
        enforce(actor, UserAction.UPDATE, user)
        if "role" in fields and fields["role"] != user.role:
            enforce(actor, UserAction.CHANGE_ROLE, user)
        cleaned, errors = await self._clean(fields, current=user)
        if errors:
            raise ValidationFailedError("User could not be updated.", errors=errors)
        for name, value in cleaned.items():
            setattr(user, name, value)
        user.updated_at = utcnow()
        self._session.add(user)
        await self._session.commit()
        await self._repository.refresh(user)
        return user

    async def delete_user(self, user: User | None, actor: User) -> None:
        """Delete ``user``.

        Tasks the user created are deleted along with their comments, tasks
        merely assigned to the user are unassigned, and the user's own
        comments are removed.
        """
        enforce(actor, UserAction.DELETE, user)
        user_id = user.id
        created = await self._tasks.ids_created_by(user_id)
        await self._comments.delete_for_tasks(created)
        await self._comments.delete_by_author(user_id)
        unassigned = await self._tasks.clear_assignee(user_id, now=utcnow())
        await self._tasks.delete_by_ids(created)
        await self._repository.delete(user)
        await self._session.commit()
        logger.info(
            "User %s deleted",
            user_id,
            extra={
                "user_id": user_id,
                "actor_id": actor.id,
                "deleted_tasks": len(created),
                "unassigned_tasks": unassigned,
            },
        )


__all__ = ["UserService"]
