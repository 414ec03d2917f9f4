"""Invoice model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

STATUS_DRAFT = "draft"
STATUS_SENT = "sent"
STATUS_PENDING = "pending"
STATUS_PARTIALLY_PAID = "partially_paid"
STATUS_PAID = "paid"
# Reserved; overdue is derived from the due date and never written.
STATUS_OVERDUE = "overdue"
STATUS_CANCELLED = "cancelled"

INVOICE_STATUSES: tuple[str, ...] = (
    STATUS_DRAFT,
    STATUS_SENT,
    STATUS_PENDING,
    STATUS_PARTIALLY_PAID,
    STATUS_PAID,
    STATUS_OVERDUE,
    STATUS_CANCELLED,
)


class Invoice(Base):
    """A bill issued to a student for an enrollment."""

    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_invoices_amount_non_negative"),
        CheckConstraint(
            "status IN ('draft','sent','pending','partially_paid','paid','overdue','cancelled')",
            name="ck_invoices_status_valid",
        ),
        Index("ix_invoices_student_status", "student_id", "status"),
        Index("ix_invoices_status_due_date", "status", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(
        String(32), unique=True, nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_DRAFT)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Copied from the enrollment so list screens can filter without joins.
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False)
    academic_year_id: Mapped[int] = mapped_column(
        ForeignKey("academic_years.id"), nullable=False, index=True
    )
    curriculum_id: Mapped[int] = mapped_column(ForeignKey("curricula.id"), nullable=False)
    program_enrollment_id: Mapped[int | None] = mapped_column(
        ForeignKey("program_enrollments.id"), nullable=True
    )
    payment_plan_id: Mapped[int | None] = mapped_column(
        ForeignKey("payment_plans.id"), nullable=True
    )
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    student: Mapped["Student"] = relationship("Student", back_populates="invoices")
    academic_year: Mapped["AcademicYear"] = relationship("AcademicYear")
    curriculum: Mapped["Curriculum"] = relationship("Curriculum")
    program_enrollment: Mapped["ProgramEnrollment | None"] = relationship("ProgramEnrollment")
    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.id",
    )

    __mapper_args__ = {"version_id_col": version}


__all__ = [
    "Invoice",
    "INVOICE_STATUSES",
    "STATUS_CANCELLED",
    "STATUS_DRAFT",
    "STATUS_OVERDUE",
    "STATUS_PAID",
    "STATUS_PARTIALLY_PAID",
    "STATUS_PENDING",
    "STATUS_SENT",
]
