"""Reusable FastAPI dependencies."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlmodel.ext.asyncio.session import AsyncSession

from .core.config import Settings, get_settings
from .core.security import decode_access_token
from .db.session import get_session
from .models import User
from .repositories import UserRepository
from .services import CommentService, NotificationDispatcher, TaskService, UserService

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields a database session."""

    async for session in get_session():
        yield session


SettingsDependency = Annotated[Settings, Depends(get_settings)]
DatabaseSessionDependency = Annotated[AsyncSession, Depends(get_db_session)]


def _unauthenticated(detail: str = "Could not validate credentials.") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    session: DatabaseSessionDependency,
    settings: SettingsDependency,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> User:
    """Resolve the acting user from the bearer token."""

    if credentials is None or not credentials.credentials:
        raise _unauthenticated("Authentication required.")
    try:
        payload = decode_access_token(credentials.credentials, settings)
        user_id = int(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError) as exc:
        raise _unauthenticated() from exc

    user = await UserRepository(session).get(user_id)
    if user is None:
        raise _unauthenticated()
    return user


CurrentUserDependency = Annotated[User, Depends(get_current_user)]


def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


async def get_task_service(
    session: DatabaseSessionDependency,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
) -> TaskService:
    return TaskService(session, dispatcher=dispatcher)


async def get_user_service(session: DatabaseSessionDependency) -> UserService:
    return UserService(session)


async def get_comment_service(session: DatabaseSessionDependency) -> CommentService:
    return CommentService(session)


TaskServiceDependency = Annotated[TaskService, Depends(get_task_service)]
UserServiceDependency = Annotated[UserService, Depends(get_user_service)]
CommentServiceDependency = Annotated[CommentService, Depends(get_comment_service)]


__all__ = [
    "CommentServiceDependency",
    "CurrentUserDependency",
    "DatabaseSessionDependency",
    "SettingsDependency",
    "TaskServiceDependency",
    "UserServiceDependency",
    "get_current_user",
    "get_db_session",
    "get_notification_dispatcher",
    "get_task_service",
]
