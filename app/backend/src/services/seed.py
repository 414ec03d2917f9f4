"""Utilities for seeding development data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.models import (
    AcademicYear,
    Curriculum,
    PaymentPlan,
    ProgramEnrollment,
    Student,
    User,
)

DEFAULT_ADMIN_EMAIL = "office@tutoring.example"
DEFAULT_ADMIN_NAME = "Front Office"
DEFAULT_PARENT_EMAIL = "parent@tutoring.example"
DEFAULT_PARENT_NAME = "Demo Parent"
DEFAULT_YEAR_NAME = "2025-2026"
DEFAULT_CURRICULUM_CODE = "MATH-CORE"
DEFAULT_PLAN_CODE = "MONTHLY-300"


@dataclass
class SeedResult:
    """Records ensured by :func:`seed_development_data`."""

    admin: User
    parent: User
    student: Student
    enrollment: ProgramEnrollment
    admin_created: bool
    enrollment_created: bool


def _ensure_user(
    session: Session, *, email: str, name: str, role: str, auth0_sub: str | None = None
) -> tuple[User, bool]:
    user = session.scalars(select(User).where(User.email == email)).one_or_none()
    if user is None:
        user = User(email=email, name=name, role=role, auth0_sub=auth0_sub)
        session.add(user)
        session.flush()
        return user, True
    if user.role != role:
        user.role = role
    if auth0_sub and user.auth0_sub != auth0_sub:
        user.auth0_sub = auth0_sub
    return user, False


def seed_development_data(
    session: Session,
    *,
    admin_email: str = DEFAULT_ADMIN_EMAIL,
    parent_email: str = DEFAULT_PARENT_EMAIL,
    auth0_sub: str | None = None,
) -> SeedResult:
    """Ensure an office admin, a parent with one enrolled child and a plan exist.

    Safe to run repeatedly; existing rows are reused.
    """

    admin, admin_created = _ensure_user(
        session, email=admin_email, name=DEFAULT_ADMIN_NAME, role="admin", auth0_sub=auth0_sub
    )
    parent, _ = _ensure_user(
        session, email=parent_email, name=DEFAULT_PARENT_NAME, role="parent"
    )

    year = session.scalars(
        select(AcademicYear).where(AcademicYear.name == DEFAULT_YEAR_NAME)
    ).one_or_none()
    if year is None:
        year = AcademicYear(
            name=DEFAULT_YEAR_NAME,
            start_date=date(2025, 8, 1),
            end_date=date(2026, 6, 30),
            is_current=True,
        )
        session.add(year)

    curriculum = session.scalars(
        select(Curriculum).where(Curriculum.code == DEFAULT_CURRICULUM_CODE)
    ).one_or_none()
    if curriculum is None:
        curriculum = Curriculum(name="Core Mathematics", code=DEFAULT_CURRICULUM_CODE)
        session.add(curriculum)
    session.flush()

    plan = session.scalars(
        select(PaymentPlan).where(PaymentPlan.code == DEFAULT_PLAN_CODE)
    ).one_or_none()
    if plan is None:
        plan = PaymentPlan(
            name="Monthly tuition",
            code=DEFAULT_PLAN_CODE,
            amount=Decimal("300.00"),
            curriculum_id=curriculum.id,
        )
        session.add(plan)

    student = session.scalars(
        select(Student).where(Student.parent_id == parent.id)
    ).first()
    if student is None:
        student = Student(first_name="Sam", last_name="Rivera", parent_id=parent.id)
        session.add(student)
    session.flush()

    enrollment = session.scalars(
        select(ProgramEnrollment).where(
            ProgramEnrollment.student_id == student.id,
            ProgramEnrollment.academic_year_id == year.id,
            ProgramEnrollment.curriculum_id == curriculum.id,
        )
    ).one_or_none()
    enrollment_created = False
    if enrollment is None:
        enrollment = ProgramEnrollment(
            student_id=student.id,
            academic_year_id=year.id,
            curriculum_id=curriculum.id,
            payment_plan_id=plan.id,
        )
        session.add(enrollment)
        session.flush()
        enrollment_created = True

    return SeedResult(
        admin=admin,
        parent=parent,
        student=student,
        enrollment=enrollment,
        admin_created=admin_created,
        enrollment_created=enrollment_created,
    )


__all__ = ["seed_development_data", "SeedResult"]
