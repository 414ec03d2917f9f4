"""User model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

STAFF_ROLES: frozenset[str] = frozenset({"admin", "staff"})
PAYER_ROLES: frozenset[str] = frozenset({"parent", "student"})


class User(Base):
    """Represents a portal user (staff member, parent or learner)."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "(role IS NULL) OR (role IN ('admin','staff','parent','student'))",
            name="ck_users_role_valid",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    auth0_sub: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    children: Mapped[list["Student"]] = relationship(
        "Student",
        back_populates="parent",
        foreign_keys="Student.parent_id",
    )


__all__ = ["User", "STAFF_ROLES", "PAYER_ROLES"]
