"""Role based authorization rules.

Every decision goes through a single permission table keyed by action and
role. A rule is either a constant or a predicate over the actor and the
resource; actions that operate on a concrete resource deny when it is
missing. Nothing here touches the database except ``visible_scope``, which
returns a SQL predicate for repositories to apply before filtering.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Union

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement

from .errors import UnauthorizedError
from .models import Comment, Task, User, UserRole


class TaskAction(str, Enum):
    LIST = "list"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN = "assign"
    COMPLETE = "complete"


class UserAction(str, Enum):
    LIST = "list"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CHANGE_ROLE = "change_role"


class CommentAction(str, Enum):
    LIST = "list"
    CREATE = "create"
    DELETE = "delete"


Action = Union[TaskAction, UserAction, CommentAction]
Predicate = Callable[[User, Any, Task | None], bool]
Rule = Union[bool, Predicate]


def _is_task_creator(actor: User, task: Task, _: Task | None) -> bool:
    return task.creator_id == actor.id


def _is_task_participant(actor: User, task: Task, _: Task | None) -> bool:
    return actor.id in (task.creator_id, task.assignee_id)


def _is_self(actor: User, user: User, _: Task | None) -> bool:
    return user.id == actor.id


def _is_other_user(actor: User, user: User, _: Task | None) -> bool:
    return user.id != actor.id


def _is_comment_moderator(actor: User, comment: Comment, task: Task | None) -> bool:
    if comment.user_id == actor.id:
        return True
    return task is not None and task.id == comment.task_id and task.creator_id == actor.id


_ALL_ROLES = (UserRole.ADMIN, UserRole.MANAGER, UserRole.MEMBER)


def _uniform(rule: Rule) -> dict[UserRole, Rule]:
    return dict.fromkeys(_ALL_ROLES, rule)


PERMISSIONS: dict[Action, dict[UserRole, Rule]] = {
    TaskAction.LIST: _uniform(True),
    TaskAction.VIEW: {UserRole.ADMIN: True, UserRole.MANAGER: True, UserRole.MEMBER: _is_task_participant},
    TaskAction.CREATE: _uniform(True),
    TaskAction.UPDATE: {UserRole.ADMIN: True, UserRole.MANAGER: True, UserRole.MEMBER: _is_task_creator},
    TaskAction.DELETE: {UserRole.ADMIN: True, UserRole.MANAGER: False, UserRole.MEMBER: False},
    TaskAction.ASSIGN: {UserRole.ADMIN: True, UserRole.MANAGER: True, UserRole.MEMBER: False},
    TaskAction.COMPLETE: {
        UserRole.ADMIN: True,
        UserRole.MANAGER: True,
        UserRole.MEMBER: _is_task_participant,
    },
    UserAction.LIST: {UserRole.ADMIN: True, UserRole.MANAGER: True, UserRole.MEMBER: False},
    UserAction.VIEW: {UserRole.ADMIN: True, UserRole.MANAGER: True, UserRole.MEMBER: _is_self},
    UserAction.CREATE: {UserRole.ADMIN: True, UserRole.MANAGER: False, UserRole.MEMBER: False},
    UserAction.UPDATE: {UserRole.ADMIN: True, UserRole.MANAGER: _is_self, UserRole.MEMBER: _is_self},
    UserAction.DELETE: {UserRole.ADMIN: _is_other_user, UserRole.MANAGER: False, UserRole.MEMBER: False},
    UserAction.CHANGE_ROLE: {UserRole.ADMIN: True, UserRole.MANAGER: False, UserRole.MEMBER: False},
    CommentAction.LIST: {UserRole.ADMIN: True, UserRole.MANAGER: True, UserRole.MEMBER: _is_task_participant},
    CommentAction.CREATE: _uniform(True),
    CommentAction.DELETE: {
        UserRole.ADMIN: True,
        UserRole.MANAGER: _is_comment_moderator,
        UserRole.MEMBER: _is_comment_moderator,
    },
}

# Actions evaluated against a concrete record; they deny when it is absent.
RESOURCE_ACTIONS: frozenset[Action] = frozenset(
    {
        TaskAction.VIEW,
        TaskAction.UPDATE,
        TaskAction.DELETE,
        TaskAction.ASSIGN,
        TaskAction.COMPLETE,
        UserAction.VIEW,
        UserAction.UPDATE,
        UserAction.DELETE,
        UserAction.CHANGE_ROLE,
        CommentAction.LIST,
        CommentAction.DELETE,
    }
)


def authorize(
    actor: User | None,
    action: Action,
    resource: Any | None = None,
    *,
    task: Task | None = None,
) -> bool:
    """Return whether ``actor`` may perform ``action`` on ``resource``.

    ``task`` supplies the parent task for comment actions. Unknown actions,
    unknown roles, a missing actor or a missing resource all deny.
    """

    if actor is None:
        return False
    if action in RESOURCE_ACTIONS and resource is None:
        return False
    rule = PERMISSIONS.get(action, {}).get(actor.role, False)
    if isinstance(rule, bool):
        return rule
    return bool(rule(actor, resource, task))


def enforce(
    actor: User | None,
    action: Action,
    resource: Any | None = None,
    *,
    task: Task | None = None,
) -> None:
    """Raise ``UnauthorizedError`` unless :func:`authorize` allows the action."""

    if not authorize(actor, action, resource, task=task):
        raise UnauthorizedError(
            details={"action": f"{type(action).__name__}.{action.name}".lower()},
        )


def visible_scope(actor: User) -> ColumnElement[bool]:
    """Return the predicate restricting a task query to what ``actor`` may see."""

    if actor.role.at_least(UserRole.MANAGER):
        return sa.true()
    return sa.or_(Task.creator_id == actor.id, Task.assignee_id == actor.id)


def is_visible(actor: User | None, task: Task | None) -> bool:
    return authorize(actor, TaskAction.VIEW, task)


__all__ = [
    "Action",
    "CommentAction",
    "PERMISSIONS",
    "RESOURCE_ACTIONS",
    "TaskAction",
    "UserAction",
    "authorize",
    "enforce",
    "is_visible",
    "visible_scope",
]
