"""Seed script for populating development data."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from ..models import TaskPriority, TaskStatus, UserRole, utcnow
from ..services import NotificationDispatcher, TaskService, UserService
from .session import async_session_maker, init_db

SEED_USERS = (
    ("admin@example.com", "Ada", "Admin", UserRole.ADMIN),
    ("manager@example.com", "Max", "Manager", UserRole.MANAGER),
    ("member@example.com", "Mia", "Member", UserRole.MEMBER),
)


async def seed() -> None:
    """Populate the database with one user per role and a handful of tasks."""
    await init_db()
    async with async_session_maker() as session:
        users = UserService(session)
        # Seeding must work without Redis, so lifecycle events are discarded.
        tasks = TaskService(session, dispatcher=NotificationDispatcher(enqueue=lambda *_: None))

        seeded = {}
        for email, first_name, last_name, role in SEED_USERS:
            user = await users.get_user_by_email(email)
            if user is None:
                user = await users.register_user(
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    role=role,
                )
            seeded[role] = user

        admin, member = seeded[UserRole.ADMIN], seeded[UserRole.MEMBER]
        existing = await tasks.list_tasks(admin, limit=1)
        if existing.total:
            return

        now = utcnow()
        await tasks.create_task(
            admin,
            {"title": "Ship release", "priority": TaskPriority.URGENT, "due_date": now + timedelta(days=1)},
        )
        await tasks.create_task(
            admin,
            {
                "title": "Write onboarding guide",
                "description": "Cover local setup and the worker processes.",
                "assignee_id": member.id,
                "status": TaskStatus.IN_PROGRESS,
            },
        )
        await tasks.create_task(
            member,
            {"title": "Triage bug reports", "priority": TaskPriority.LOW, "due_date": now - timedelta(days=2)},
        )


def main() -> None:
    """Console entry point for ``taskflow-seed``."""
    asyncio.run(seed())


if __name__ == "__main__":  # pragma: no cover - manual execution entry-point
    main()
