"""Invoice status machine and paid-date bookkeeping."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from app.backend.src.models.invoice import (
    INVOICE_STATUSES,
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_PARTIALLY_PAID,
    STATUS_PENDING,
    STATUS_SENT,
    Invoice,
)
from app.backend.src.services.errors import InvalidTransitionError, InvoiceValidationError
from app.backend.src.services.metrics import invoice_transitions_total

LOGGER = structlog.get_logger(__name__)

# Simplified vocabulary used by the old edit screen.
LEGACY_STATUS_MAP: dict[str, str] = {
    "unpaid": STATUS_PENDING,
    "paid": STATUS_PAID,
    "overdue": STATUS_PENDING,
    "cancelled": STATUS_CANCELLED,
}

WRITABLE_STATUSES: frozenset[str] = frozenset(
    status for status in INVOICE_STATUSES if status != STATUS_OVERDUE
)
UNPAID_STATUSES: frozenset[str] = frozenset(
    {STATUS_SENT, STATUS_PENDING, STATUS_PARTIALLY_PAID, STATUS_OVERDUE}
)
PAYABLE_STATUSES: frozenset[str] = frozenset(
    {STATUS_SENT, STATUS_PENDING, STATUS_PARTIALLY_PAID, STATUS_OVERDUE}
)

TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_DRAFT: frozenset({STATUS_SENT, STATUS_PENDING, STATUS_PAID, STATUS_CANCELLED}),
    STATUS_SENT: frozenset(
        {STATUS_PENDING, STATUS_PARTIALLY_PAID, STATUS_PAID, STATUS_CANCELLED}
    ),
    STATUS_PENDING: frozenset(
        {STATUS_SENT, STATUS_PARTIALLY_PAID, STATUS_PAID, STATUS_CANCELLED}
    ),
    STATUS_PARTIALLY_PAID: frozenset({STATUS_PENDING, STATUS_PAID, STATUS_CANCELLED}),
    STATUS_PAID: frozenset({STATUS_SENT, STATUS_PENDING, STATUS_PARTIALLY_PAID}),
    STATUS_CANCELLED: frozenset(),
}


def normalize_status(value: str | None, *, field: str = "status") -> str:
    """Return the canonical stored status for ``value``.

    Accepts both vocabularies (``Unpaid``, ``partially_paid``...). A stored or
    submitted ``overdue`` maps to ``pending`` since overdue is derived.
    """

    candidate = (value or "").strip().lower().replace(" ", "_")
    if candidate in LEGACY_STATUS_MAP:
        return LEGACY_STATUS_MAP[candidate]
    if candidate in WRITABLE_STATUSES:
        return candidate
    raise InvoiceValidationError({field: f"Unknown invoice status: {value!r}"})


def current_status(invoice: Invoice) -> str:
    """Return the invoice status with legacy persisted values folded in."""

    if invoice.status == STATUS_OVERDUE:
        return STATUS_PENDING
    return invoice.status


def can_transition(current: str, requested: str) -> bool:
    """Return ``True`` when ``current`` may move to ``requested``."""

    current = STATUS_PENDING if current == STATUS_OVERDUE else current
    if current == requested:
        return True
    return requested in TRANSITIONS.get(current, frozenset())


def apply_status(
    invoice: Invoice,
    requested: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Move ``invoice`` to ``requested`` and keep ``paid_date`` consistent.

    Returns ``True`` when the stored status changed.
    """

    target = normalize_status(requested)
    previous = current_status(invoice)
    if previous == target:
        if invoice.status != target:
            invoice.status = target
        return False
    if not can_transition(previous, target):
        raise InvalidTransitionError(previous, target)

    invoice.status = target
    if target == STATUS_PAID:
        invoice.paid_date = now or datetime.now(timezone.utc)
    elif previous == STATUS_PAID:
        invoice.paid_date = None

    invoice_transitions_total.labels(from_status=previous, to_status=target).inc()
    LOGGER.info(
        "invoice_status_changed",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        from_status=previous,
        to_status=target,
    )
    return True


__all__ = [
    "LEGACY_STATUS_MAP",
    "PAYABLE_STATUSES",
    "TRANSITIONS",
    "UNPAID_STATUSES",
    "WRITABLE_STATUSES",
    "apply_status",
    "can_transition",
    "current_status",
    "normalize_status",
]
