"""Unit tests for the invoice service layer."""

from __future__ import annotations

import os
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_billing.db")

import pytest
from fastapi import HTTPException

from app.backend.src.db import get_engine, session_scope
from app.backend.src.models import (
    AcademicYear,
    Curriculum,
    Invoice,
    PaymentPlan,
    ProgramEnrollment,
    Student,
    User,
)
from app.backend.src.models.base import Base
from app.backend.src.schemas.invoice import InvoiceCreate, InvoiceFilters, InvoiceUpdate
from app.backend.src.services import invoices
from app.backend.src.services.audit import ActivityEntry, ActorContext, set_audit_sink
from app.backend.src.services.errors import (
    ConsistencyError,
    InvalidTransitionError,
    InvoiceValidationError,
)
from app.backend.src.services.invoice_numbers import format_invoice_number

TODAY = date(2025, 5, 10)
STAFF = ActorContext(user_id=None, role="staff", ip_address="127.0.0.1")


class RecordingSink:
    def __init__(self) -> None:
        self.entries: list[ActivityEntry] = []

    def record(self, entry: ActivityEntry) -> None:
        self.entries.append(entry)


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def audit_entries() -> list[ActivityEntry]:  # type: ignore[no-untyped-def]
    sink = RecordingSink()
    previous = set_audit_sink(sink)
    yield sink.entries
    set_audit_sink(previous)


@pytest.fixture()
def seeded() -> dict[str, int]:
    with session_scope() as session:
        parent = User(email="parent@example.com", name="Parent", role="parent")
        other_parent = User(email="other@example.com", name="Other", role="parent")
        learner = User(email="learner@example.com", name="Learner", role="student")
        session.add_all([parent, other_parent, learner])
        session.flush()

        year = AcademicYear(name="2024-2025", is_current=True)
        next_year = AcademicYear(name="2025-2026")
        curriculum = Curriculum(name="Algebra", code="ALG")
        session.add_all([year, next_year, curriculum])
        session.flush()

        plan = PaymentPlan(name="Monthly", code="M300", amount=Decimal("300.00"))
        session.add(plan)
        student = Student(
            first_name="Ada", last_name="Lovelace", parent_id=parent.id, user_id=learner.id
        )
        other_student = Student(first_name="Alan", last_name="Turing", parent_id=other_parent.id)
        session.add_all([student, other_student])
        session.flush()

        enrollment = ProgramEnrollment(
            student_id=student.id,
            academic_year_id=year.id,
            curriculum_id=curriculum.id,
            payment_plan_id=plan.id,
        )
        next_enrollment = ProgramEnrollment(
            student_id=student.id,
            academic_year_id=next_year.id,
            curriculum_id=curriculum.id,
            payment_plan_id=plan.id,
        )
        other_enrollment = ProgramEnrollment(
            student_id=other_student.id,
            academic_year_id=year.id,
            curriculum_id=curriculum.id,
        )
        session.add_all([enrollment, next_enrollment, other_enrollment])
        session.flush()

        return {
            "parent": parent.id,
            "other_parent": other_parent.id,
            "learner": learner.id,
            "student": student.id,
            "other_student": other_student.id,
            "year": year.id,
            "next_year": next_year.id,
            "plan": plan.id,
            "enrollment": enrollment.id,
            "next_enrollment": next_enrollment.id,
            "other_enrollment": other_enrollment.id,
        }


def _create(enrollment_id: int, **fields) -> int:  # type: ignore[no-untyped-def]
    with session_scope() as session:
        invoice = invoices.create_invoice(
            session,
            InvoiceCreate(program_enrollment_id=enrollment_id, **fields),
            STAFF,
            today=TODAY,
        )
        return invoice.id


def test_create_invoice_copies_enrollment_and_numbers_sequentially(
    seeded: dict[str, int],
) -> None:
    first_id = _create(seeded["enrollment"])
    second_id = _create(seeded["enrollment"], amount=Decimal("120.00"))

    with session_scope() as session:
        first = session.get(Invoice, first_id)
        second = session.get(Invoice, second_id)

        assert first.invoice_number == "INV-202505-0001"
        assert second.invoice_number == "INV-202505-0002"
        assert first.amount == Decimal("300.00")
        assert second.amount == Decimal("120.00")
        assert first.student_id == seeded["student"]
        assert first.academic_year_id == seeded["year"]
        assert first.payment_plan_id == seeded["plan"]
        assert first.invoice_date == TODAY
        assert first.due_date == date(2025, 6, 9)
        assert first.status == "draft"


def test_numbering_restarts_each_month(seeded: dict[str, int]) -> None:
    _create(seeded["enrollment"])

    with session_scope() as session:
        june = invoices.next_invoice_number(session, date(2025, 6, 1))
        may = invoices.next_invoice_number(session, TODAY)

    assert june == format_invoice_number(date(2025, 6, 1), 1)
    assert may == "INV-202505-0002"


def test_create_invoice_requires_existing_enrollment(seeded: dict[str, int]) -> None:
    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as exc_info:
            invoices.create_invoice(
                session, InvoiceCreate(program_enrollment_id=9999), STAFF, today=TODAY
            )

    assert "program_enrollment_id" in exc_info.value.errors
    with session_scope() as session:
        assert session.query(Invoice).count() == 0


def test_create_invoice_reports_every_bad_field(seeded: dict[str, int]) -> None:
    payload = InvoiceCreate(
        program_enrollment_id=seeded["enrollment"],
        amount=Decimal("-5"),
        invoice_date=date(2025, 5, 10),
        due_date=date(2025, 5, 1),
        status="refunded",
    )
    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as exc_info:
            invoices.create_invoice(session, payload, STAFF, today=TODAY)

    assert set(exc_info.value.errors) == {"amount", "due_date", "status"}


def test_create_without_plan_needs_amount(seeded: dict[str, int]) -> None:
    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as exc_info:
            invoices.create_invoice(
                session,
                InvoiceCreate(program_enrollment_id=seeded["other_enrollment"]),
                STAFF,
                today=TODAY,
            )

    assert "amount" in exc_info.value.errors


def test_create_as_paid_stamps_paid_date(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"], status="Paid")

    with session_scope() as session:
        invoice = session.get(Invoice, invoice_id)
        assert invoice.status == "paid"
        assert invoice.paid_date is not None


def test_create_records_activity(
    seeded: dict[str, int], audit_entries: list[ActivityEntry]
) -> None:
    invoice_id = _create(seeded["enrollment"])

    entry = audit_entries[-1]
    assert entry.action == "create"
    assert entry.subject_type == "Invoice"
    assert entry.subject_id == invoice_id
    assert entry.metadata["invoice_number"] == "INV-202505-0001"
    assert entry.ip_address == "127.0.0.1"


def test_update_changes_enrollment_and_copies_references(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"])

    with session_scope() as session:
        invoices.update_invoice(
            session,
            invoice_id,
            InvoiceUpdate(program_enrollment_id=seeded["next_enrollment"]),
            STAFF,
        )

    with session_scope() as session:
        invoice = session.get(Invoice, invoice_id)
        assert invoice.program_enrollment_id == seeded["next_enrollment"]
        assert invoice.academic_year_id == seeded["next_year"]


def test_update_with_missing_enrollment_writes_nothing(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"])

    with session_scope() as session:
        with pytest.raises(ConsistencyError):
            invoices.update_invoice(
                session,
                invoice_id,
                InvoiceUpdate(program_enrollment_id=4242, amount=Decimal("99.00")),
                STAFF,
            )

    with session_scope() as session:
        invoice = session.get(Invoice, invoice_id)
        assert invoice.program_enrollment_id == seeded["enrollment"]
        assert invoice.amount == Decimal("300.00")


def test_update_status_out_of_paid_clears_paid_date(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"], status="paid")

    with session_scope() as session:
        invoices.update_invoice(session, invoice_id, InvoiceUpdate(status="Unpaid"), STAFF)

    with session_scope() as session:
        invoice = session.get(Invoice, invoice_id)
        assert invoice.status == "pending"
        assert invoice.paid_date is None


def test_update_rejects_negative_amount(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"])

    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as exc_info:
            invoices.update_invoice(
                session, invoice_id, InvoiceUpdate(amount=Decimal("-1")), STAFF
            )

    assert "amount" in exc_info.value.errors


def test_cancelled_invoice_cannot_be_reopened(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"], status="sent")

    with session_scope() as session:
        invoices.cancel_invoice(session, invoice_id, STAFF)

    with session_scope() as session:
        with pytest.raises(InvalidTransitionError):
            invoices.mark_as_sent(session, invoice_id, STAFF)


def test_paid_invoice_cannot_be_cancelled(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"], status="sent")

    with session_scope() as session:
        invoices.mark_as_paid(
            session, invoice_id, STAFF, now=datetime(2025, 5, 12, tzinfo=timezone.utc)
        )

    with session_scope() as session:
        with pytest.raises(InvalidTransitionError):
            invoices.cancel_invoice(session, invoice_id, STAFF)

    with session_scope() as session:
        assert session.get(Invoice, invoice_id).status == "paid"


def test_get_invoice_missing_returns_404(seeded: dict[str, int]) -> None:
    with session_scope() as session:
        with pytest.raises(HTTPException) as exc_info:
            invoices.get_invoice(session, 12345)

    assert exc_info.value.status_code == 404


def test_bulk_send_only_touches_drafts(seeded: dict[str, int]) -> None:
    draft_id = _create(seeded["enrollment"])
    pending_id = _create(seeded["enrollment"], status="pending")

    with session_scope() as session:
        updated = invoices.bulk_mark_as_sent(session, [draft_id, pending_id], STAFF)
        updated_ids = [invoice.id for invoice in updated]

    assert updated_ids == [draft_id]
    with session_scope() as session:
        assert session.get(Invoice, draft_id).status == "sent"
        assert session.get(Invoice, pending_id).status == "pending"


def test_bulk_mark_paid_skips_drafts_and_cancelled(seeded: dict[str, int]) -> None:
    draft_id = _create(seeded["enrollment"])
    sent_id = _create(seeded["enrollment"], status="sent")
    cancelled_id = _create(seeded["enrollment"], status="cancelled")

    with session_scope() as session:
        updated = invoices.bulk_mark_as_paid(
            session, [draft_id, sent_id, cancelled_id], STAFF
        )
        updated_ids = [invoice.id for invoice in updated]

    assert updated_ids == [sent_id]
    with session_scope() as session:
        sent = session.get(Invoice, sent_id)
        assert sent.status == "paid"
        assert sent.paid_date is not None
        assert session.get(Invoice, cancelled_id).status == "cancelled"


def test_bulk_action_requires_selection(seeded: dict[str, int]) -> None:
    with session_scope() as session:
        with pytest.raises(InvoiceValidationError):
            invoices.bulk_mark_as_sent(session, [], STAFF)


def test_list_invoices_filters_search_and_derived_overdue(seeded: dict[str, int]) -> None:
    late_id = _create(seeded["enrollment"], status="pending", due_date=date(2025, 5, 20))
    _create(seeded["enrollment"], status="pending", due_date=date(2025, 8, 1))
    _create(seeded["enrollment"], status="paid", due_date=date(2025, 5, 20))
    _create(seeded["other_enrollment"], amount=Decimal("50.00"), description="Chess club")

    later = date(2025, 6, 1)
    with session_scope() as session:
        overdue = invoices.list_invoices(session, InvoiceFilters(status="overdue"), today=later)
        by_name = invoices.list_invoices(session, InvoiceFilters(search="turing"), today=later)
        by_description = invoices.list_invoices(session, InvoiceFilters(search="chess"), today=later)
        everything = invoices.list_invoices(
            session, InvoiceFilters(sort_by="amount", sort_direction="asc", per_page=10), today=later
        )

    assert [item.id for item in overdue.items] == [late_id]
    assert overdue.items[0].display_status == "overdue"
    assert overdue.items[0].status == "pending"
    assert overdue.items[0].urgency.level == "overdue"
    assert by_name.total == 1
    assert by_name.items[0].student_name == "Alan Turing"
    assert by_description.total == 1
    assert everything.total == 4
    assert everything.items[0].amount == Decimal("50.00")


def test_list_invoices_paginates(seeded: dict[str, int]) -> None:
    for _ in range(12):
        _create(seeded["enrollment"])

    with session_scope() as session:
        second_page = invoices.list_invoices(
            session, InvoiceFilters(page=2, per_page=10), today=TODAY
        )

    assert second_page.total == 12
    assert second_page.pages == 2
    assert len(second_page.items) == 2


def test_list_invoices_rejects_unknown_page_size(seeded: dict[str, int]) -> None:
    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as exc_info:
            invoices.list_invoices(session, InvoiceFilters(per_page=7), today=TODAY)

    assert "per_page" in exc_info.value.errors


def test_payer_scope_limits_listing(seeded: dict[str, int]) -> None:
    _create(seeded["enrollment"])
    _create(seeded["other_enrollment"], amount=Decimal("50.00"))

    parent = ActorContext(user_id=seeded["parent"], role="parent")
    learner = ActorContext(user_id=seeded["learner"], role="student")
    with session_scope() as session:
        assert invoices.payer_student_ids(session, parent) == [seeded["student"]]
        assert invoices.payer_student_ids(session, learner) == [seeded["student"]]
        assert invoices.payer_student_ids(session, STAFF) is None
        page = invoices.list_invoices(
            session,
            InvoiceFilters(),
            today=TODAY,
            student_ids=invoices.payer_student_ids(session, parent),
        )

    assert page.total == 1
    assert page.items[0].student_id == seeded["student"]


def test_invoice_stats(seeded: dict[str, int]) -> None:
    _create(seeded["enrollment"], status="paid", amount=Decimal("300.00"))
    _create(seeded["enrollment"], status="pending", amount=Decimal("100.00"), due_date=date(2025, 5, 15))
    _create(seeded["enrollment"], status="sent", amount=Decimal("100.00"), due_date=date(2025, 7, 1))

    with session_scope() as session:
        stats = invoices.invoice_stats(session, today=date(2025, 6, 1))

    assert stats.total_invoices == 3
    assert stats.total_amount == Decimal("500.00")
    assert stats.paid_amount == Decimal("300.00")
    assert stats.overdue_count == 1
    assert stats.pending_count == 1
    assert stats.collection_rate == 60.0


def test_invoice_alerts_cover_overdue_and_due_soon(seeded: dict[str, int]) -> None:
    overdue_id = _create(seeded["enrollment"], status="sent", due_date=date(2025, 5, 28))
    soon_id = _create(seeded["enrollment"], status="pending", due_date=date(2025, 6, 4))
    _create(seeded["enrollment"], status="pending", due_date=date(2025, 7, 30))
    _create(seeded["enrollment"], status="paid", due_date=date(2025, 5, 20))

    with session_scope() as session:
        alerts = invoices.invoice_alerts(session, today=date(2025, 6, 1))

    assert [(alert.invoice_id, alert.urgency.level) for alert in alerts] == [
        (overdue_id, "overdue"),
        (soon_id, "urgent"),
    ]
    assert alerts[0].urgency.days == 4
    assert alerts[1].urgency.days == 3


def test_unpaid_status_filters_exclude_past_due_rows(seeded: dict[str, int]) -> None:
    late_id = _create(seeded["enrollment"], status="pending", due_date=date(2025, 5, 20))
    current_id = _create(seeded["enrollment"], status="pending", due_date=date(2025, 8, 1))
    late_sent_id = _create(seeded["enrollment"], status="sent", due_date=date(2025, 5, 20))
    with session_scope() as session:
        legacy = session.get(Invoice, _create(seeded["enrollment"], due_date=date(2025, 7, 1)))
        legacy.status = "overdue"
        legacy_id = legacy.id

    later = date(2025, 6, 1)
    with session_scope() as session:
        pending = invoices.list_invoices(session, InvoiceFilters(status="pending"), today=later)
        sent = invoices.list_invoices(session, InvoiceFilters(status="sent"), today=later)
        overdue = invoices.list_invoices(session, InvoiceFilters(status="overdue"), today=later)

    pending_ids = {item.id for item in pending.items}
    overdue_ids = {item.id for item in overdue.items}
    assert pending_ids == {current_id, legacy_id}
    assert sent.total == 0
    assert overdue_ids == {late_id, late_sent_id}
    assert not pending_ids & overdue_ids
    assert all(item.display_status == "pending" for item in pending.items)


def test_amount_edit_keeps_manual_settlement(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"], status="pending")
    settled_at = datetime(2025, 5, 12, tzinfo=timezone.utc)

    with session_scope() as session:
        invoices.mark_as_paid(session, invoice_id, STAFF, now=settled_at)

    with session_scope() as session:
        invoices.update_invoice(
            session, invoice_id, InvoiceUpdate(amount=Decimal("310.00")), STAFF
        )

    with session_scope() as session:
        invoice = session.get(Invoice, invoice_id)
        assert invoice.status == "paid"
        assert invoice.amount == Decimal("310.00")
        assert invoice.paid_date is not None


def test_partially_paid_needs_recorded_payments(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"], status="pending")

    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as exc_info:
            invoices.update_invoice(
                session, invoice_id, InvoiceUpdate(status="partially_paid"), STAFF
            )

    assert "status" in exc_info.value.errors
    with session_scope() as session:
        assert session.get(Invoice, invoice_id).status == "pending"


def test_create_accepts_custom_invoice_number(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"], invoice_number=" FALL-2025-001 ")

    with session_scope() as session:
        assert session.get(Invoice, invoice_id).invoice_number == "FALL-2025-001"


def test_duplicate_invoice_number_is_a_field_error(seeded: dict[str, int]) -> None:
    first_id = _create(seeded["enrollment"])
    second_id = _create(seeded["enrollment"])

    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as create_error:
            invoices.create_invoice(
                session,
                InvoiceCreate(
                    program_enrollment_id=seeded["enrollment"],
                    invoice_number="INV-202505-0001",
                ),
                STAFF,
                today=TODAY,
            )
    with session_scope() as session:
        with pytest.raises(InvoiceValidationError) as update_error:
            invoices.update_invoice(
                session, second_id, InvoiceUpdate(invoice_number="INV-202505-0001"), STAFF
            )

    assert create_error.value.errors == {"invoice_number": "The invoice number has already been taken."}
    assert "invoice_number" in update_error.value.errors
    with session_scope() as session:
        assert session.query(Invoice).count() == 2
        assert session.get(Invoice, second_id).invoice_number == "INV-202505-0002"
        assert session.get(Invoice, first_id).invoice_number == "INV-202505-0001"


def test_invoice_number_format_is_checked(seeded: dict[str, int]) -> None:
    invoice_id = _create(seeded["enrollment"])

    with session_scope() as session:
        invoices.update_invoice(
            session, invoice_id, InvoiceUpdate(invoice_number="INV-202505-0001"), STAFF
        )
        with pytest.raises(InvoiceValidationError) as exc_info:
            invoices.update_invoice(
                session, invoice_id, InvoiceUpdate(invoice_number="bad number!"), STAFF
            )

    assert "invoice_number" in exc_info.value.errors
