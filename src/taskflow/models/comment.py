"""Comment model attached to tasks."""

from __future__ import annotations

import sqlalchemy as sa
from sqlmodel import Field

from .common import TimestampMixin


class Comment(TimestampMixin, table=True):
    """A note left on a task by a user."""

    __tablename__ = "comments"
    __table_args__ = (
        sa.CheckConstraint("length(content) > 0", name="ck_comments_content_length"),
    )

    id: int | None = Field(default=None, primary_key=True)
    content: str = Field(sa_column=sa.Column(sa.Text(), nullable=False))
    task_id: int = Field(
        sa_column=sa.Column(
            sa.Integer(),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    user_id: int = Field(
        sa_column=sa.Column(
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )


__all__ = ["Comment"]
