"""Student (child profile) model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Student(Base):
    """A learner enrolled at the centre, optionally linked to parent and login accounts."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # Guardian who pays on the learner's behalf.
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    # Learner's own portal account.
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    parent: Mapped["User | None"] = relationship(
        "User", back_populates="children", foreign_keys=[parent_id]
    )
    enrollments: Mapped[list["ProgramEnrollment"]] = relationship(
        "ProgramEnrollment", back_populates="student"
    )
    invoices: Mapped[list["Invoice"]] = relationship("Invoice", back_populates="student")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


__all__ = ["Student"]
