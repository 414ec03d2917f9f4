"""Overdue and due-soon classification.

Every list filter, badge and dashboard alert goes through
:func:`classify_urgency` so an invoice is labelled the same way everywhere.
Overdue is never stored; it is derived from the due date at read time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import and_
from sqlalchemy.sql.elements import ColumnElement

from app.backend.src.models.invoice import (
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_PENDING,
    Invoice,
)
from app.backend.src.services.invoice_status import UNPAID_STATUSES

URGENCY_NONE = "none"
URGENCY_OVERDUE = "overdue"
URGENCY_URGENT = "urgent"
URGENCY_NORMAL = "normal"

DEFAULT_DUE_SOON_DAYS = 7

STATUS_COLORS: dict[str, str] = {
    "draft": "bg-gray-100 text-gray-600",
    "sent": "bg-blue-100 text-blue-800",
    "pending": "bg-yellow-100 text-yellow-800",
    "partially_paid": "bg-orange-100 text-orange-800",
    "paid": "bg-green-100 text-green-800",
    "overdue": "bg-red-100 text-red-800",
    "cancelled": "bg-gray-100 text-gray-600",
}
DEFAULT_STATUS_COLOR = "bg-gray-100 text-gray-600"


@dataclass(frozen=True, slots=True)
class Urgency:
    """Urgency level plus days past due (overdue) or days remaining (urgent)."""

    level: str
    days: int = 0

    @property
    def is_overdue(self) -> bool:
        return self.level == URGENCY_OVERDUE


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def classify_urgency(
    due_date: date | datetime,
    status: str,
    today: date | datetime,
    *,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> Urgency:
    """Classify an invoice by how close it is to, or how far past, its due date."""

    if status in (STATUS_DRAFT, STATUS_PAID, STATUS_CANCELLED):
        return Urgency(URGENCY_NONE)

    due = _as_date(due_date)
    current = _as_date(today)
    if current > due:
        return Urgency(URGENCY_OVERDUE, (current - due).days)

    remaining = (due - current).days
    if remaining <= due_soon_days:
        return Urgency(URGENCY_URGENT, remaining)
    return Urgency(URGENCY_NORMAL)


def display_status(
    status: str,
    due_date: date | datetime,
    today: date | datetime,
) -> str:
    """Return ``overdue`` for late unpaid invoices, otherwise the stored status."""

    if status == STATUS_OVERDUE:
        status = STATUS_PENDING
    if status in UNPAID_STATUSES and classify_urgency(due_date, status, today).is_overdue:
        return STATUS_OVERDUE
    return status


def status_color(status: str) -> str:
    """Badge classes for ``status``."""

    return STATUS_COLORS.get(status, DEFAULT_STATUS_COLOR)


def overdue_clause(today: date) -> ColumnElement[bool]:
    """SQL form of the overdue predicate used by :func:`display_status`."""

    return and_(
        Invoice.status.in_(sorted(UNPAID_STATUSES)),
        Invoice.due_date < today,
    )


__all__ = [
    "STATUS_COLORS",
    "URGENCY_NONE",
    "URGENCY_NORMAL",
    "URGENCY_OVERDUE",
    "URGENCY_URGENT",
    "Urgency",
    "classify_urgency",
    "display_status",
    "overdue_clause",
    "status_color",
]
