"""Payment recording against invoices through a pluggable gateway."""

from __future__ import annotations

import random
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.backend.src.core.config import get_settings
from app.backend.src.models import Invoice, Payment
from app.backend.src.models.payment import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_METHODS,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
)
from app.backend.src.schemas.payment import PaymentPage, PaymentQuote, PaymentRead
from app.backend.src.services.audit import ActorContext, record_activity
from app.backend.src.services.balance import (
    ZERO,
    minimum_payment,
    processing_fee,
    remaining_balance,
    status_after_payment,
    to_money,
    total_paid,
    validate_payment_amount,
)
from app.backend.src.services.errors import (
    ConsistencyError,
    InvoiceValidationError,
    PaymentDeclinedError,
)
from app.backend.src.services.invoice_status import (
    PAYABLE_STATUSES,
    apply_status,
    current_status,
)
from app.backend.src.services.invoices import ensure_can_access, get_invoice
from app.backend.src.services.metrics import gateway_duration_seconds, payments_total
from app.backend.src.services.notifications import (
    notify_payment_failed,
    notify_payment_received,
)

LOGGER = structlog.get_logger(__name__)

DECLINED_MESSAGE = "Payment was declined by the processor."


@dataclass(frozen=True, slots=True)
class ChargeRequest:
    """What the gateway needs to know to move money."""

    invoice_number: str
    amount: Decimal
    method: str
    payment_id: int
    payer_id: int | None = None


@dataclass(frozen=True, slots=True)
class GatewayResult:
    approved: bool
    transaction_id: str | None = None
    message: str = ""


class GatewayError(RuntimeError):
    """The gateway could not be reached or failed mid-charge."""


class PaymentGateway(Protocol):
    def charge(self, request: ChargeRequest) -> GatewayResult:
        """Attempt the charge and report whether it was approved."""


class SimulatedPaymentGateway:
    """Stand-in processor that approves a configurable share of charges."""

    def __init__(
        self,
        success_rate: float = 1.0,
        latency_seconds: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.latency_seconds = max(0.0, latency_seconds)
        self._rng = rng or random.Random()

    def charge(self, request: ChargeRequest) -> GatewayResult:
        if self.latency_seconds:
            time.sleep(self.latency_seconds)
        if self._rng.random() < self.success_rate:
            return GatewayResult(
                approved=True,
                transaction_id=f"TXN_{uuid.uuid4().hex[:16].upper()}",
                message="Approved",
            )
        return GatewayResult(approved=False, message=DECLINED_MESSAGE)


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Return the process-wide gateway built from settings."""

    settings = get_settings()
    return SimulatedPaymentGateway(
        success_rate=settings.gateway_success_rate,
        latency_seconds=settings.gateway_latency_seconds,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def payment_quote(
    session: Session,
    invoice_id: int,
    context: ActorContext,
    *,
    method: str = "credit_card",
) -> PaymentQuote:
    """Summarise what the caller owes and what a full payment would cost."""

    settings = get_settings()
    invoice = get_invoice(session, invoice_id)
    ensure_can_access(session, invoice, context)

    remaining = remaining_balance(invoice)
    fee = processing_fee(remaining, method, settings.credit_card_fee_rate)
    return PaymentQuote(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        amount=to_money(invoice.amount),
        total_paid=total_paid(invoice),
        remaining_balance=remaining,
        minimum_payment=minimum_payment(remaining, settings.minimum_payment),
        processing_fee=fee,
        total_with_fee=to_money(remaining + fee),
        payable=current_status(invoice) in PAYABLE_STATUSES and remaining > ZERO,
    )


def _record_failed_attempt(
    session: Session,
    invoice_id: int,
    amount: Decimal,
    method: str,
    fee: Decimal,
    context: ActorContext,
    reason: str,
    now: datetime,
) -> Payment:
    payment = Payment(
        invoice_id=invoice_id,
        amount=amount,
        method=method,
        status=PAYMENT_FAILED,
        processing_fee=fee,
        payment_date=now,
        notes=reason,
        created_by=context.user_id,
    )
    session.add(payment)
    session.commit()
    return payment


def record_payment(
    session: Session,
    invoice_id: int,
    amount: object,
    method: str,
    context: ActorContext,
    *,
    gateway: PaymentGateway | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """Charge ``amount`` against an invoice and settle its status.

    The invoice row is locked for the whole attempt. Validation failures write
    nothing; declines and gateway errors leave a failed payment row and the
    invoice untouched.
    """

    settings = get_settings()
    gateway = gateway or get_payment_gateway()
    now = now or _now()

    invoice = get_invoice(session, invoice_id, for_update=True)
    ensure_can_access(session, invoice, context)

    if current_status(invoice) not in PAYABLE_STATUSES:
        session.rollback()
        raise InvoiceValidationError(
            {"invoice": f"Invoice {invoice.invoice_number} is not available for payment."}
        )
    if method not in PAYMENT_METHODS:
        session.rollback()
        raise InvoiceValidationError(
            {"method": f"Payment method must be one of {list(PAYMENT_METHODS)}."}
        )
    try:
        value = validate_payment_amount(invoice, amount, floor=settings.minimum_payment)
    except InvoiceValidationError:
        session.rollback()
        raise

    fee = processing_fee(value, method, settings.credit_card_fee_rate)
    payment = Payment(
        amount=value,
        method=method,
        status=PAYMENT_PENDING,
        processing_fee=fee,
        notes=notes,
        created_by=context.user_id,
    )
    invoice.payments.append(payment)
    session.flush()
    LOGGER.info(
        "payment_started",
        invoice_id=invoice.id,
        payment_id=payment.id,
        amount=str(value),
        method=method,
    )

    invoice_number = invoice.invoice_number
    request = ChargeRequest(
        invoice_number=invoice_number,
        amount=value,
        method=method,
        payment_id=payment.id,
        payer_id=context.user_id,
    )
    started = time.perf_counter()
    try:
        result = gateway.charge(request)
    except Exception as exc:
        session.rollback()
        LOGGER.error(
            "payment_gateway_error",
            invoice_id=invoice_id,
            amount=str(value),
            method=method,
            error=str(exc),
        )
        failed = _record_failed_attempt(
            session, invoice_id, value, method, fee, context, f"Gateway error: {exc}", now
        )
        payments_total.labels(method=method, status=PAYMENT_FAILED).inc()
        notify_payment_failed(
            context.user_id, invoice_number=invoice_number, amount=value, reason=str(exc)
        )
        record_activity(
            context,
            "payment_failed",
            f"Payment of ${value} for invoice {invoice_number} failed",
            failed,
            {"invoice_id": invoice_id, "error": str(exc)},
        )
        raise PaymentDeclinedError(
            "Payment processing failed. Please try again.", payment_id=failed.id
        ) from exc
    finally:
        gateway_duration_seconds.observe(time.perf_counter() - started)

    if not result.approved:
        message = result.message or DECLINED_MESSAGE
        payment.status = PAYMENT_FAILED
        payment.payment_date = now
        payment.transaction_id = result.transaction_id
        payment.notes = f"{notes}\n{message}" if notes else message
        session.commit()
        LOGGER.warning(
            "payment_declined",
            invoice_id=invoice.id,
            payment_id=payment.id,
            amount=str(value),
            reason=message,
        )
        payments_total.labels(method=method, status=PAYMENT_FAILED).inc()
        notify_payment_failed(
            context.user_id, invoice_number=invoice_number, amount=value, reason=message
        )
        record_activity(
            context,
            "payment_failed",
            f"Payment of ${value} for invoice {invoice_number} was declined",
            payment,
            {"invoice_id": invoice.id, "reason": message},
        )
        raise PaymentDeclinedError(message, payment_id=payment.id)

    payment.status = PAYMENT_COMPLETED
    payment.payment_date = now
    payment.transaction_id = result.transaction_id
    payment.reference_number = f"PAY-{invoice_number}-{payment.id:06d}"
    target = status_after_payment(invoice)
    if target != current_status(invoice):
        apply_status(invoice, target, now=now)
    # Always touch the row so the version check guards every settlement.
    invoice.updated_at = now
    try:
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        LOGGER.error("payment_invoice_conflict", invoice_id=invoice_id, payment_id=payment.id)
        raise ConsistencyError(
            "The invoice was modified while the payment was processing. Please retry."
        ) from exc

    payments_total.labels(method=method, status=PAYMENT_COMPLETED).inc()
    LOGGER.info(
        "payment_completed",
        invoice_id=invoice.id,
        payment_id=payment.id,
        reference_number=payment.reference_number,
        invoice_status=invoice.status,
    )
    notify_payment_received(
        context.user_id,
        invoice_number=invoice_number,
        amount=value,
        reference_number=payment.reference_number,
    )
    record_activity(
        context,
        "payment",
        f"Made payment of ${value} for invoice {invoice_number}",
        payment,
        {
            "invoice_id": invoice.id,
            "amount": str(value),
            "method": method,
            "reference_number": payment.reference_number,
        },
    )
    return payment


def list_payments(
    session: Session,
    *,
    invoice_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int = 15,
    student_ids: list[int] | None = None,
) -> PaymentPage:
    """Page through payment attempts, newest first."""

    if status is not None and status not in PAYMENT_STATUSES:
        raise InvoiceValidationError(
            {"status": f"Payment status must be one of {list(PAYMENT_STATUSES)}."}
        )
    page = max(1, page)
    per_page = max(1, min(per_page, 100))

    query = select(Payment)
    if invoice_id is not None:
        query = query.where(Payment.invoice_id == invoice_id)
    if status is not None:
        query = query.where(Payment.status == status)
    if student_ids is not None:
        query = query.join(Invoice, Payment.invoice_id == Invoice.id).where(
            Invoice.student_id.in_(student_ids)
        )

    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = session.scalars(
        query.order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).all()
    return PaymentPage(
        items=[PaymentRead.model_validate(row) for row in rows],
        total=total,
        page=page,
        per_page=per_page,
    )


__all__ = [
    "ChargeRequest",
    "GatewayError",
    "GatewayResult",
    "PaymentGateway",
    "SimulatedPaymentGateway",
    "get_payment_gateway",
    "list_payments",
    "payment_quote",
    "record_payment",
]
