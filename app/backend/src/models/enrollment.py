"""Payment plan and program enrollment models."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PaymentPlan(Base):
    """Pricing plan attached to an enrollment; its amount seeds new invoices."""

    __tablename__ = "payment_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    curriculum_id: Mapped[int | None] = mapped_column(
        ForeignKey("curricula.id"), nullable=True
    )


class ProgramEnrollment(Base):
    """Enrollment of a student in a curriculum for one academic year."""

    __tablename__ = "program_enrollments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False, index=True)
    academic_year_id: Mapped[int] = mapped_column(
        ForeignKey("academic_years.id"), nullable=False
    )
    curriculum_id: Mapped[int] = mapped_column(ForeignKey("curricula.id"), nullable=False)
    payment_plan_id: Mapped[int | None] = mapped_column(
        ForeignKey("payment_plans.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")

    student: Mapped["Student"] = relationship("Student", back_populates="enrollments")
    payment_plan: Mapped[PaymentPlan | None] = relationship(PaymentPlan)


__all__ = ["PaymentPlan", "ProgramEnrollment"]
