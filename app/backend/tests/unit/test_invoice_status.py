"""Unit tests for the invoice status machine."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_billing.db")

import pytest

from app.backend.src.models import Invoice
from app.backend.src.services.errors import InvalidTransitionError, InvoiceValidationError
from app.backend.src.services.invoice_status import (
    apply_status,
    can_transition,
    current_status,
    normalize_status,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("Unpaid", "pending"),
        ("Paid", "paid"),
        ("Overdue", "pending"),
        ("Cancelled", "cancelled"),
        ("partially_paid", "partially_paid"),
        ("Partially Paid", "partially_paid"),
        (" draft ", "draft"),
    ],
)
def test_normalize_status_accepts_both_vocabularies(value: str, expected: str) -> None:
    assert normalize_status(value) == expected


def test_normalize_status_rejects_unknown_values() -> None:
    with pytest.raises(InvoiceValidationError) as exc_info:
        normalize_status("refunded")

    assert exc_info.value.status_code == 422
    assert "status" in exc_info.value.errors


def test_stored_overdue_reads_as_pending() -> None:
    assert current_status(Invoice(status="overdue")) == "pending"


def test_cancelled_is_terminal() -> None:
    for target in ("draft", "sent", "pending", "partially_paid", "paid"):
        assert can_transition("cancelled", target) is False


def test_paid_cannot_be_cancelled() -> None:
    assert can_transition("paid", "cancelled") is False
    assert can_transition("paid", "pending") is True


def test_entering_paid_stamps_paid_date() -> None:
    invoice = Invoice(invoice_number="INV-202505-0001", status="sent")
    moment = datetime(2025, 5, 20, 12, 0, tzinfo=timezone.utc)

    changed = apply_status(invoice, "paid", now=moment)

    assert changed is True
    assert invoice.status == "paid"
    assert invoice.paid_date == moment


def test_leaving_paid_clears_paid_date() -> None:
    invoice = Invoice(
        invoice_number="INV-202505-0001",
        status="paid",
        paid_date=datetime(2025, 5, 20, tzinfo=timezone.utc),
    )

    apply_status(invoice, "Unpaid")

    assert invoice.status == "pending"
    assert invoice.paid_date is None


def test_same_status_is_a_no_op() -> None:
    paid_at = datetime(2025, 5, 20, tzinfo=timezone.utc)
    invoice = Invoice(invoice_number="INV-202505-0001", status="paid", paid_date=paid_at)

    assert apply_status(invoice, "paid") is False
    assert invoice.paid_date == paid_at


def test_disallowed_transition_raises_conflict() -> None:
    invoice = Invoice(invoice_number="INV-202505-0001", status="cancelled")

    with pytest.raises(InvalidTransitionError) as exc_info:
        apply_status(invoice, "paid")

    assert exc_info.value.status_code == 409
    assert invoice.status == "cancelled"


def test_legacy_overdue_row_is_rewritten_on_next_change() -> None:
    invoice = Invoice(invoice_number="INV-202505-0001", status="overdue")

    apply_status(invoice, "partially_paid")

    assert invoice.status == "partially_paid"
