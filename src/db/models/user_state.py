"""
Per-user state table.

Each row holds one user's entire planner state as a single JSON blob.
The version counter increases on every write.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class UserStateRecord(Base):
    """Stored UserState for one user key."""

    __tablename__ = "user_states"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<UserStateRecord user={self.user_id} version={self.version}>"
