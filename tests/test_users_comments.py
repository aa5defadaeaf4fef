from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskflow.errors import InvalidInputError, NotFoundError, UnauthorizedError, ValidationFailedError
from taskflow.models import Comment, Task, User, UserRole
from taskflow.services import CommentService, UserService

pytestmark = pytest.mark.asyncio


async def _task(session: AsyncSession, creator: User, assignee: User | None = None, title: str = "Plan sprint") -> Task:
    task = Task(title=title, creator_id=creator.id, assignee_id=assignee.id if assignee else None)
    session.add(task)
    await session.commit()
    await session.refresh(task)
    return task


async def test_register_user_normalises_email_and_defaults_to_member(session: AsyncSession) -> None:
    user = await UserService(session).register_user(
        email="  New.Person@Example.COM ",
        first_name=" New ",
        last_name="Person",
    )

    assert user.email == "new.person@example.com"
    assert user.first_name == "New"
    assert user.role is UserRole.MEMBER
    assert user.full_name == "New Person"


async def test_register_user_rejects_duplicate_email(session: AsyncSession, member: User) -> None:
    with pytest.raises(InvalidInputError) as excinfo:
        await UserService(session).register_user(
            email="MEMBER@example.com",
            first_name="Copy",
            last_name="Cat",
        )

    assert excinfo.value.errors == {"email": ["has already been taken"]}


async def test_only_admin_creates_users(session: AsyncSession, admin: User, manager: User) -> None:
    service = UserService(session)
    fields = {"email": "hire@example.com", "first_name": "Hugo", "last_name": "Hire", "role": "manager"}

    with pytest.raises(UnauthorizedError):
        await service.create_user(manager, fields)

    created = await service.create_user(admin, fields)
    assert created.role is UserRole.MANAGER


async def test_create_user_reports_missing_fields(session: AsyncSession, admin: User) -> None:
    with pytest.raises(InvalidInputError) as excinfo:
        await UserService(session).create_user(admin, {"email": "x@example.com"})

    assert set(excinfo.value.errors) == {"first_name", "last_name"}


async def test_member_sees_only_self(session: AsyncSession, member: User, other_member: User) -> None:
    service = UserService(session)

    assert (await service.get_user(member, member.id)).id == member.id
    with pytest.raises(UnauthorizedError):
        await service.get_user(member, other_member.id)
    with pytest.raises(UnauthorizedError):
        await service.list_users(member)


async def test_manager_lists_users(session: AsyncSession, admin: User, manager: User, member: User) -> None:
    users = await UserService(session).list_users(manager)

    assert [user.id for user in users] == [admin.id, manager.id, member.id]


async def test_get_missing_user_is_not_found(session: AsyncSession, admin: User) -> None:
    with pytest.raises(NotFoundError):
        await UserService(session).get_user(admin, 9999)


async def test_user_updates_own_profile_but_not_role(session: AsyncSession, member: User) -> None:
    service = UserService(session)

    updated = await service.update_user(member, member, {"first_name": "Mila"})
    assert updated.full_name == "Mila Member"

    with pytest.raises(UnauthorizedError) as excinfo:
        await service.update_user(member, member, {"role": "admin"})
    assert excinfo.value.details == {"action": "useraction.change_role"}


async def test_unchanged_role_does_not_require_admin(session: AsyncSession, manager: User) -> None:
    updated = await UserService(session).update_user(manager, manager, {"role": "manager", "last_name": "Mayer"})

    assert updated.last_name == "Mayer"
    assert updated.role is UserRole.MANAGER


async def test_admin_changes_roles(session: AsyncSession, admin: User, member: User) -> None:
    updated = await UserService(session).update_user(member, admin, {"role": UserRole.MANAGER})

    assert updated.role is UserRole.MANAGER


async def test_update_rejects_taken_email(session: AsyncSession, admin: User, member: User) -> None:
    with pytest.raises(ValidationFailedError) as excinfo:
        await UserService(session).update_user(member, admin, {"email": "admin@example.com"})

    assert excinfo.value.code == "validation_failed"
    assert excinfo.value.errors == {"email": ["has already been taken"]}


async def test_admin_cannot_delete_self(session: AsyncSession, admin: User) -> None:
    with pytest.raises(UnauthorizedError):
        await UserService(session).delete_user(admin, admin)


async def test_deleting_user_cascades_created_tasks_and_unassigns_the_rest(
    session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    admin: User,
    member: User,
) -> None:
    owned = await _task(session, member, title="Member's own task")
    assigned = await _task(session, admin, member, title="Assigned to member")
    session.add(Comment(content="on own task", task_id=owned.id, user_id=admin.id))
    session.add(Comment(content="member remark", task_id=assigned.id, user_id=member.id))
    session.add(Comment(content="admin remark", task_id=assigned.id, user_id=admin.id))
    await session.commit()
    owned_id, assigned_id, member_id = owned.id, assigned.id, member.id

    await UserService(session).delete_user(member, admin)

    async with session_factory() as fresh:
        assert await fresh.get(User, member_id) is None
        assert await fresh.get(Task, owned_id) is None
        survivor = await fresh.get(Task, assigned_id)
        assert survivor is not None
        assert survivor.assignee_id is None
        remaining = (await fresh.exec(select(Comment.content))).all()
        assert remaining == ["admin remark"]


async def test_any_user_comments_and_blank_content_is_rejected(
    session: AsyncSession,
    admin: User,
    other_member: User,
) -> None:
    task = await _task(session, admin)
    service = CommentService(session)

    comment = await service.create_comment(other_member, task, "  Looks good  ")
    assert comment.content == "Looks good"
    assert comment.user_id == other_member.id

    with pytest.raises(InvalidInputError) as excinfo:
        await service.create_comment(other_member, task, "   ")
    assert excinfo.value.errors == {"content": ["can't be blank"]}

    with pytest.raises(NotFoundError):
        await service.create_comment(other_member, None, "orphan")


async def test_listing_comments_requires_task_visibility(
    session: AsyncSession,
    admin: User,
    member: User,
    other_member: User,
) -> None:
    task = await _task(session, admin, member)
    service = CommentService(session)
    first = await service.create_comment(admin, task, "first")
    second = await service.create_comment(member, task, "second")

    listed = await service.list_comments(member, task)
    assert [comment.id for comment in listed] == [first.id, second.id]

    with pytest.raises(UnauthorizedError):
        await service.list_comments(other_member, task)


async def test_comment_deletion_rules(
    session: AsyncSession,
    admin: User,
    manager: User,
    member: User,
    other_member: User,
) -> None:
    task = await _task(session, member)
    service = CommentService(session)
    by_other = await service.create_comment(other_member, task, "drive-by")
    by_manager = await service.create_comment(manager, task, "manager note")
    by_admin = await service.create_comment(admin, task, "admin note")

    with pytest.raises(UnauthorizedError):
        await service.delete_comment(manager, by_other, task)

    # task creator moderates comments on their task
    await service.delete_comment(member, by_manager, task)
    await service.delete_comment(other_member, by_other, task)
    with pytest.raises(UnauthorizedError):
        await service.delete_comment(other_member, by_admin, task)

    remaining = await service.list_comments(admin, task)
    assert [comment.id for comment in remaining] == [by_admin.id]


async def test_find_comment_checks_the_parent_task(session: AsyncSession, admin: User) -> None:
    first_task = await _task(session, admin, title="First")
    second_task = await _task(session, admin, title="Second")
    service = CommentService(session)
    comment = await service.create_comment(admin, first_task, "hello")

    assert (await service.find_comment(first_task, comment.id)).id == comment.id
    with pytest.raises(NotFoundError):
        await service.find_comment(second_task, comment.id)
