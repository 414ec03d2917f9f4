"""Invoice service: creation, edits, status actions, listings and dashboards."""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import structlog
from fastapi import HTTPException, status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.backend.src.core.config import get_settings
from app.backend.src.models import Invoice, PaymentPlan, ProgramEnrollment, Student
from app.backend.src.models.invoice import (
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_PARTIALLY_PAID,
    STATUS_PENDING,
    STATUS_SENT,
)
from app.backend.src.schemas.invoice import (
    InvoiceAlert,
    InvoiceCreate,
    InvoiceFilters,
    InvoicePage,
    InvoiceRead,
    InvoiceStats,
    InvoiceUpdate,
    UrgencyRead,
)
from app.backend.src.services.audit import ActorContext, record_activity
from app.backend.src.services.balance import ZERO, remaining_balance, to_money, total_paid
from app.backend.src.services.errors import (
    ConsistencyError,
    InvoiceValidationError,
    PaymentAuthorizationError,
)
from app.backend.src.services.invoice_numbers import generate_invoice_number
from app.backend.src.services.invoice_status import (
    UNPAID_STATUSES,
    apply_status,
    current_status,
    normalize_status,
)
from app.backend.src.services.urgency import (
    URGENCY_NONE,
    URGENCY_NORMAL,
    classify_urgency,
    display_status,
    overdue_clause,
    status_color,
)

LOGGER = structlog.get_logger(__name__)

MAX_NUMBER_ATTEMPTS = 5
INVOICE_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]{0,31}$")
DUPLICATE_NUMBER_MESSAGE = "The invoice number has already been taken."
PER_PAGE_OPTIONS: tuple[int, ...] = (10, 15, 25, 50)
SORTABLE_COLUMNS = {
    "created_at": Invoice.created_at,
    "invoice_number": Invoice.invoice_number,
    "invoice_date": Invoice.invoice_date,
    "due_date": Invoice.due_date,
    "amount": Invoice.amount,
    "status": Invoice.status,
}
CREATABLE_STATUSES: frozenset[str] = frozenset(
    {STATUS_DRAFT, STATUS_SENT, STATUS_PENDING, STATUS_PAID, STATUS_CANCELLED}
)
BULK_SENDABLE: frozenset[str] = frozenset({STATUS_DRAFT})
BULK_PAYABLE: frozenset[str] = frozenset(
    {STATUS_SENT, STATUS_PENDING, STATUS_PARTIALLY_PAID, STATUS_OVERDUE}
)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------------
# Lookups and access
# --------------------------------------------------------------------------
def get_invoice(session: Session, invoice_id: int, *, for_update: bool = False) -> Invoice:
    """Return the invoice or raise 404; ``for_update`` takes a row lock."""

    query = select(Invoice).where(Invoice.id == invoice_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    invoice = session.execute(query).scalar_one_or_none()
    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        )
    return invoice


def payer_student_ids(session: Session, context: ActorContext) -> list[int] | None:
    """Students whose invoices the actor may see; ``None`` means all of them."""

    if context.is_staff:
        return None
    role = (context.role or "").lower()
    if context.user_id is None or role not in {"parent", "student"}:
        return []
    column = Student.parent_id if role == "parent" else Student.user_id
    return list(session.scalars(select(Student.id).where(column == context.user_id)).all())


def ensure_can_access(session: Session, invoice: Invoice, context: ActorContext) -> None:
    """Reject callers that neither work at the centre nor own the invoice."""

    allowed = payer_student_ids(session, context)
    if allowed is None or invoice.student_id in allowed:
        return
    LOGGER.warning(
        "invoice_access_denied",
        invoice_id=invoice.id,
        user_id=context.user_id,
        role=context.role,
    )
    raise PaymentAuthorizationError()


# --------------------------------------------------------------------------
# Presentation helpers
# --------------------------------------------------------------------------
def describe_invoice(invoice: Invoice, today: date | None = None) -> InvoiceRead:
    """Build the read model with balance and urgency derived in one place."""

    today = today or _today()
    stored = current_status(invoice)
    shown = display_status(invoice.status, invoice.due_date, today)
    urgency = classify_urgency(
        invoice.due_date, stored, today, due_soon_days=get_settings().due_soon_days
    )
    student = invoice.student
    return InvoiceRead(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        amount=to_money(invoice.amount),
        invoice_date=invoice.invoice_date,
        due_date=invoice.due_date,
        paid_date=invoice.paid_date,
        status=stored,
        display_status=shown,
        status_color=status_color(shown),
        description=invoice.description,
        notes=invoice.notes,
        student_id=invoice.student_id,
        student_name=student.full_name if student else None,
        academic_year_id=invoice.academic_year_id,
        curriculum_id=invoice.curriculum_id,
        program_enrollment_id=invoice.program_enrollment_id,
        payment_plan_id=invoice.payment_plan_id,
        total_paid=total_paid(invoice),
        remaining_balance=remaining_balance(invoice),
        urgency=UrgencyRead(level=urgency.level, days=urgency.days),
    )


# --------------------------------------------------------------------------
# Create / edit
# --------------------------------------------------------------------------
def _collect_amount(value: object, errors: dict[str, str]) -> Decimal | None:
    try:
        amount = to_money(value)
    except InvoiceValidationError as exc:
        errors.update(exc.errors)
        return None
    if amount < ZERO:
        errors["amount"] = "Amount cannot be negative."
        return None
    return amount


def _collect_status(value: str, errors: dict[str, str]) -> str | None:
    try:
        return normalize_status(value)
    except InvoiceValidationError as exc:
        errors.update(exc.errors)
        return None


def _collect_invoice_number(
    session: Session,
    value: str,
    errors: dict[str, str],
    *,
    exclude_id: int | None = None,
) -> str | None:
    number = value.strip()
    if not INVOICE_NUMBER_PATTERN.match(number):
        errors["invoice_number"] = (
            "Invoice number must be 1-32 letters, digits or dashes, e.g. INV-202505-0001."
        )
        return None
    query = select(Invoice.id).where(Invoice.invoice_number == number)
    if exclude_id is not None:
        query = query.where(Invoice.id != exclude_id)
    if session.scalar(query) is not None:
        errors["invoice_number"] = DUPLICATE_NUMBER_MESSAGE
        return None
    return number


def next_invoice_number(session: Session, today: date | None = None) -> str:
    """Preview the number the next invoice created today would receive."""

    return generate_invoice_number(session, today or _today())


def _commit_with_generated_number(session: Session, invoice: Invoice, today: date) -> None:
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        invoice.invoice_number = generate_invoice_number(session, today)
        session.add(invoice)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            LOGGER.warning(
                "invoice_number_collision",
                invoice_number=invoice.invoice_number,
                attempt=attempt,
            )
            continue
        return
    raise ConsistencyError("Unable to allocate a unique invoice number")


def create_invoice(
    session: Session,
    payload: InvoiceCreate,
    context: ActorContext,
    *,
    today: date | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Issue an invoice for an enrollment, copying its cross references."""

    settings = get_settings()
    today = today or _today()
    errors: dict[str, str] = {}

    enrollment = session.get(ProgramEnrollment, payload.program_enrollment_id)
    if enrollment is None:
        errors["program_enrollment_id"] = "Selected enrollment does not exist."

    plan: PaymentPlan | None = None
    if payload.payment_plan_id is not None:
        plan = session.get(PaymentPlan, payload.payment_plan_id)
        if plan is None:
            errors["payment_plan_id"] = "Selected payment plan does not exist."
    elif enrollment is not None:
        plan = enrollment.payment_plan

    amount: Decimal | None = None
    if payload.amount is not None:
        amount = _collect_amount(payload.amount, errors)
    elif plan is not None:
        amount = to_money(plan.amount)
    elif "payment_plan_id" not in errors:
        errors["amount"] = "Amount is required when no payment plan is selected."

    initial_status = _collect_status(payload.status, errors)
    if initial_status is not None and initial_status not in CREATABLE_STATUSES:
        errors["status"] = "Partially paid is set by recorded payments."

    manual_number: str | None = None
    if payload.invoice_number is not None:
        manual_number = _collect_invoice_number(session, payload.invoice_number, errors)

    invoice_date = payload.invoice_date or today
    due_date = payload.due_date or invoice_date + timedelta(days=settings.default_due_days)
    if due_date < invoice_date:
        errors["due_date"] = "Due date cannot be before the invoice date."

    if errors:
        LOGGER.info("invoice_create_rejected", errors=errors, user_id=context.user_id)
        raise InvoiceValidationError(errors)

    invoice = Invoice(
        amount=amount,
        invoice_date=invoice_date,
        due_date=due_date,
        status=STATUS_DRAFT,
        description=payload.description,
        notes=payload.notes,
        student_id=enrollment.student_id,
        academic_year_id=enrollment.academic_year_id,
        curriculum_id=enrollment.curriculum_id,
        program_enrollment_id=enrollment.id,
        payment_plan_id=plan.id if plan else None,
        created_by=context.user_id,
    )
    if initial_status != STATUS_DRAFT:
        apply_status(invoice, initial_status, now=now or _now())

    if manual_number is not None:
        invoice.invoice_number = manual_number
        session.add(invoice)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise InvoiceValidationError({"invoice_number": DUPLICATE_NUMBER_MESSAGE}) from exc
    else:
        _commit_with_generated_number(session, invoice, today)

    LOGGER.info(
        "invoice_created",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        amount=str(invoice.amount),
        status=invoice.status,
    )
    record_activity(
        context,
        "create",
        f"Created invoice {invoice.invoice_number}",
        invoice,
        {
            "invoice_number": invoice.invoice_number,
            "amount": str(invoice.amount),
            "program_enrollment_id": invoice.program_enrollment_id,
        },
    )
    return invoice


def _resync_from_payments(invoice: Invoice, now: datetime) -> None:
    """Align paid / partially paid with the completed payments after an amount edit."""

    stored = current_status(invoice)
    if stored not in {STATUS_SENT, STATUS_PENDING, STATUS_PARTIALLY_PAID, STATUS_PAID}:
        return
    paid = total_paid(invoice)
    if paid == ZERO:
        # A paid invoice without portal payments was settled by hand; keep it.
        if stored == STATUS_PARTIALLY_PAID:
            apply_status(invoice, STATUS_PENDING, now=now)
        return
    if paid >= to_money(invoice.amount):
        target = STATUS_PAID
    else:
        target = STATUS_PARTIALLY_PAID
    apply_status(invoice, target, now=now)


def update_invoice(
    session: Session,
    invoice_id: int,
    payload: InvoiceUpdate,
    context: ActorContext,
    *,
    now: datetime | None = None,
) -> Invoice:
    """Apply a staff edit; every field is validated before anything is written."""

    now = now or _now()
    changes = payload.model_dump(exclude_unset=True)
    invoice = get_invoice(session, invoice_id, for_update=True)
    errors: dict[str, str] = {}

    enrollment: ProgramEnrollment | None = None
    enrollment_changed = (
        "program_enrollment_id" in changes
        and changes["program_enrollment_id"] != invoice.program_enrollment_id
    )
    if enrollment_changed and changes["program_enrollment_id"] is not None:
        enrollment = session.get(ProgramEnrollment, changes["program_enrollment_id"])
        if enrollment is None:
            LOGGER.error(
                "invoice_enrollment_missing",
                invoice_id=invoice.id,
                program_enrollment_id=changes["program_enrollment_id"],
            )
            session.rollback()
            raise ConsistencyError("The selected enrollment no longer exists.")

    amount: Decimal | None = None
    if "amount" in changes:
        if changes["amount"] is None:
            errors["amount"] = "Amount is required."
        else:
            amount = _collect_amount(changes["amount"], errors)

    if "due_date" in changes:
        if changes["due_date"] is None:
            errors["due_date"] = "Due date is required."
        elif changes["due_date"] < invoice.invoice_date:
            errors["due_date"] = "Due date cannot be before the invoice date."

    requested_status: str | None = None
    if changes.get("status") is not None:
        requested_status = _collect_status(changes["status"], errors)
    if requested_status == STATUS_PARTIALLY_PAID and "amount" not in errors:
        paid = total_paid(invoice)
        if not ZERO < paid < (amount if amount is not None else to_money(invoice.amount)):
            errors["status"] = "Partially paid requires payments covering part of the amount."

    new_number: str | None = None
    if changes.get("invoice_number") is not None:
        new_number = _collect_invoice_number(
            session, changes["invoice_number"], errors, exclude_id=invoice.id
        )

    if errors:
        session.rollback()
        raise InvoiceValidationError(errors)

    if enrollment_changed:
        if enrollment is not None:
            invoice.student_id = enrollment.student_id
            invoice.academic_year_id = enrollment.academic_year_id
            invoice.curriculum_id = enrollment.curriculum_id
            invoice.payment_plan_id = enrollment.payment_plan_id
            invoice.program_enrollment_id = enrollment.id
        else:
            invoice.program_enrollment_id = None

    amount_changed = amount is not None and amount != to_money(invoice.amount)
    if new_number is not None:
        invoice.invoice_number = new_number
    if amount is not None:
        invoice.amount = amount
    if changes.get("due_date") is not None:
        invoice.due_date = changes["due_date"]
    if "description" in changes:
        invoice.description = changes["description"]
    if "notes" in changes:
        invoice.notes = changes["notes"]

    try:
        if requested_status is not None:
            apply_status(invoice, requested_status, now=now)
        elif amount_changed:
            _resync_from_payments(invoice, now)
    except HTTPException:
        session.rollback()
        raise

    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise InvoiceValidationError({"invoice_number": DUPLICATE_NUMBER_MESSAGE}) from exc
    LOGGER.info("invoice_updated", invoice_id=invoice.id, fields=sorted(changes))
    record_activity(
        context,
        "update",
        f"Updated invoice {invoice.invoice_number}",
        invoice,
        {"fields": sorted(changes), "status": invoice.status},
    )
    return invoice


# --------------------------------------------------------------------------
# Status actions
# --------------------------------------------------------------------------
def _change_status(
    session: Session,
    invoice_id: int,
    target: str,
    context: ActorContext,
    action: str,
    now: datetime | None,
) -> Invoice:
    invoice = get_invoice(session, invoice_id, for_update=True)
    try:
        changed = apply_status(invoice, target, now=now or _now())
    except HTTPException:
        session.rollback()
        raise
    session.commit()
    if changed:
        record_activity(
            context,
            action,
            f"Marked invoice {invoice.invoice_number} as {target}",
            invoice,
            {"invoice_number": invoice.invoice_number, "status": target},
        )
    return invoice


def mark_as_sent(
    session: Session, invoice_id: int, context: ActorContext, *, now: datetime | None = None
) -> Invoice:
    return _change_status(session, invoice_id, STATUS_SENT, context, "send", now)


def mark_as_paid(
    session: Session, invoice_id: int, context: ActorContext, *, now: datetime | None = None
) -> Invoice:
    """Manually settle an invoice (e.g. payment received outside the portal)."""

    return _change_status(session, invoice_id, STATUS_PAID, context, "mark_paid", now)


def cancel_invoice(
    session: Session, invoice_id: int, context: ActorContext, *, now: datetime | None = None
) -> Invoice:
    """Cancel an unpaid invoice; paid or already cancelled invoices are refused."""

    return _change_status(session, invoice_id, STATUS_CANCELLED, context, "cancel", now)


def _bulk_change(
    session: Session,
    invoice_ids: list[int],
    eligible: frozenset[str],
    target: str,
    context: ActorContext,
    action: str,
    now: datetime | None,
) -> list[Invoice]:
    if not invoice_ids:
        raise InvoiceValidationError({"invoice_ids": f"Please select invoices to mark as {target}."})

    invoices = session.scalars(
        select(Invoice)
        .where(Invoice.id.in_(invoice_ids), Invoice.status.in_(sorted(eligible)))
        .order_by(Invoice.id)
        .with_for_update()
    ).all()
    moment = now or _now()
    for invoice in invoices:
        apply_status(invoice, target, now=moment)
    session.commit()

    LOGGER.info(
        "invoices_bulk_updated",
        action=action,
        requested=len(invoice_ids),
        updated=len(invoices),
    )
    record_activity(
        context,
        action,
        f"Marked {len(invoices)} invoice(s) as {target}",
        None,
        {"invoice_ids": [invoice.id for invoice in invoices]},
    )
    return list(invoices)


def bulk_mark_as_sent(
    session: Session, invoice_ids: list[int], context: ActorContext, *, now: datetime | None = None
) -> list[Invoice]:
    """Send every selected draft; other statuses are skipped."""

    return _bulk_change(session, invoice_ids, BULK_SENDABLE, STATUS_SENT, context, "bulk_send", now)


def bulk_mark_as_paid(
    session: Session, invoice_ids: list[int], context: ActorContext, *, now: datetime | None = None
) -> list[Invoice]:
    """Settle every selected unpaid invoice; drafts, paid and cancelled are skipped."""

    return _bulk_change(
        session, invoice_ids, BULK_PAYABLE, STATUS_PAID, context, "bulk_mark_paid", now
    )


# --------------------------------------------------------------------------
# Listings and dashboards
# --------------------------------------------------------------------------
def list_invoices(
    session: Session,
    filters: InvoiceFilters,
    *,
    today: date | None = None,
    student_ids: list[int] | None = None,
) -> InvoicePage:
    """Search, filter, sort and paginate invoices."""

    today = today or _today()
    errors: dict[str, str] = {}
    if filters.per_page not in PER_PAGE_OPTIONS:
        errors["per_page"] = f"Items per page must be one of {list(PER_PAGE_OPTIONS)}."
    sort_column = SORTABLE_COLUMNS.get(filters.sort_by)
    if sort_column is None:
        errors["sort_by"] = f"Cannot sort by {filters.sort_by!r}."
    direction = filters.sort_direction.lower()
    if direction not in {"asc", "desc"}:
        errors["sort_direction"] = "Sort direction must be 'asc' or 'desc'."

    status_value = (filters.status or "").strip().lower()
    status_clause = None
    if status_value == STATUS_OVERDUE:
        status_clause = overdue_clause(today)
    elif status_value:
        normalized = _collect_status(status_value, errors)
        if normalized == STATUS_PENDING:
            # Legacy stored ``overdue`` rows read as pending until they fall due.
            status_clause = and_(
                Invoice.status.in_([STATUS_PENDING, STATUS_OVERDUE]),
                Invoice.due_date >= today,
            )
        elif normalized in UNPAID_STATUSES:
            status_clause = and_(Invoice.status == normalized, Invoice.due_date >= today)
        elif normalized is not None:
            status_clause = Invoice.status == normalized
    if errors:
        raise InvoiceValidationError(errors)

    query = select(Invoice)
    if student_ids is not None:
        query = query.where(Invoice.student_id.in_(student_ids))
    if filters.search:
        term = f"%{filters.search.strip()}%"
        query = query.where(
            or_(
                Invoice.invoice_number.ilike(term),
                Invoice.description.ilike(term),
                Invoice.student.has(
                    or_(Student.first_name.ilike(term), Student.last_name.ilike(term))
                ),
            )
        )
    if status_clause is not None:
        query = query.where(status_clause)
    if filters.academic_year_id is not None:
        query = query.where(Invoice.academic_year_id == filters.academic_year_id)
    if filters.student_id is not None:
        query = query.where(Invoice.student_id == filters.student_id)

    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    ordering = sort_column.asc() if direction == "asc" else sort_column.desc()
    rows = session.scalars(
        query.options(selectinload(Invoice.payments), selectinload(Invoice.student))
        .order_by(ordering, Invoice.id.desc())
        .offset((filters.page - 1) * filters.per_page)
        .limit(filters.per_page)
    ).all()

    return InvoicePage(
        items=[describe_invoice(invoice, today) for invoice in rows],
        total=total,
        page=filters.page,
        per_page=filters.per_page,
        pages=max(1, math.ceil(total / filters.per_page)),
    )


def invoice_stats(session: Session, *, today: date | None = None) -> InvoiceStats:
    """Headline numbers for the invoices screen."""

    today = today or _today()
    total_invoices = session.scalar(select(func.count(Invoice.id))) or 0
    total_amount = to_money(session.scalar(select(func.sum(Invoice.amount))) or 0)
    paid_amount = to_money(
        session.scalar(select(func.sum(Invoice.amount)).where(Invoice.status == STATUS_PAID))
        or 0
    )
    overdue_count = session.scalar(
        select(func.count(Invoice.id)).where(overdue_clause(today))
    ) or 0
    pending_count = session.scalar(
        select(func.count(Invoice.id)).where(
            Invoice.status.in_([STATUS_PENDING, STATUS_SENT, STATUS_OVERDUE]),
            Invoice.due_date >= today,
        )
    ) or 0
    collection_rate = (
        float((paid_amount * 100 / total_amount).quantize(Decimal("0.1")))
        if total_amount > ZERO
        else 0.0
    )
    return InvoiceStats(
        total_invoices=total_invoices,
        total_amount=total_amount,
        paid_amount=paid_amount,
        overdue_count=overdue_count,
        pending_count=pending_count,
        collection_rate=collection_rate,
    )


def invoice_alerts(
    session: Session,
    *,
    today: date | None = None,
    student_ids: list[int] | None = None,
) -> list[InvoiceAlert]:
    """Overdue and due-soon invoices, most pressing first."""

    today = today or _today()
    due_soon_days = get_settings().due_soon_days
    query = (
        select(Invoice)
        .where(
            Invoice.status.in_(sorted(UNPAID_STATUSES)),
            Invoice.due_date <= today + timedelta(days=due_soon_days),
        )
        .options(selectinload(Invoice.payments), selectinload(Invoice.student))
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
    )
    if student_ids is not None:
        query = query.where(Invoice.student_id.in_(student_ids))

    alerts: list[InvoiceAlert] = []
    for invoice in session.scalars(query).all():
        urgency = classify_urgency(
            invoice.due_date, current_status(invoice), today, due_soon_days=due_soon_days
        )
        if urgency.level in (URGENCY_NONE, URGENCY_NORMAL):
            continue
        alerts.append(
            InvoiceAlert(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                student_id=invoice.student_id,
                student_name=invoice.student.full_name if invoice.student else None,
                due_date=invoice.due_date,
                remaining_balance=remaining_balance(invoice),
                urgency=UrgencyRead(level=urgency.level, days=urgency.days),
            )
        )
    return alerts


__all__ = [
    "PER_PAGE_OPTIONS",
    "bulk_mark_as_paid",
    "bulk_mark_as_sent",
    "cancel_invoice",
    "create_invoice",
    "describe_invoice",
    "ensure_can_access",
    "get_invoice",
    "invoice_alerts",
    "invoice_stats",
    "list_invoices",
    "mark_as_paid",
    "mark_as_sent",
    "next_invoice_number",
    "payer_student_ids",
    "update_invoice",
]
