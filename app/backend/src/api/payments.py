"""Payment endpoints shared by payers and staff."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.backend.src.core.security import (
    get_actor_context,
    require_payer_or_staff,
    require_staff_user,
)
from app.backend.src.db import get_session_dependency
from app.backend.src.schemas.payment import (
    PaymentCreate,
    PaymentPage,
    PaymentQuote,
    PaymentRead,
    PaymentResult,
)
from app.backend.src.services import invoices as invoice_service
from app.backend.src.services import payments as payment_service
from app.backend.src.services.audit import ActorContext
from app.backend.src.services.payments import PaymentGateway, get_payment_gateway

router = APIRouter(tags=["Payments"])

SessionDep = Annotated[Session, Depends(get_session_dependency)]
ActorDep = Annotated[ActorContext, Depends(get_actor_context)]


@router.get(
    "/payments",
    response_model=PaymentPage,
    dependencies=[Depends(require_staff_user)],
)
def list_payments(
    session: SessionDep,
    invoice_id: int | None = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=100)] = 15,
) -> PaymentPage:
    """Return payment attempts across all invoices, newest first."""

    return payment_service.list_payments(
        session,
        invoice_id=invoice_id,
        status=status_filter,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/invoices/{invoice_id}/payment-quote",
    response_model=PaymentQuote,
    dependencies=[Depends(require_payer_or_staff)],
)
def payment_quote(
    invoice_id: int,
    session: SessionDep,
    context: ActorDep,
    method: str = "credit_card",
) -> PaymentQuote:
    """Balance, minimum payment and card fee for the payment form."""

    return payment_service.payment_quote(session, invoice_id, context, method=method)


@router.get(
    "/invoices/{invoice_id}/payments",
    response_model=PaymentPage,
    dependencies=[Depends(require_payer_or_staff)],
)
def invoice_payments(
    invoice_id: int,
    session: SessionDep,
    context: ActorDep,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=100)] = 15,
) -> PaymentPage:
    invoice = invoice_service.get_invoice(session, invoice_id)
    invoice_service.ensure_can_access(session, invoice, context)
    return payment_service.list_payments(
        session, invoice_id=invoice.id, page=page, per_page=per_page
    )


@router.post(
    "/invoices/{invoice_id}/payments",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_payer_or_staff)],
)
def make_payment(
    invoice_id: int,
    payload: PaymentCreate,
    session: SessionDep,
    context: ActorDep,
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
) -> PaymentResult:
    """Charge the payer and apply the payment to the invoice."""

    payment = payment_service.record_payment(
        session,
        invoice_id,
        payload.amount,
        payload.method,
        context,
        gateway=gateway,
        notes=payload.notes,
    )
    invoice = invoice_service.get_invoice(session, invoice_id)
    return PaymentResult(
        message="Payment processed successfully!",
        payment=PaymentRead.model_validate(payment),
        invoice=invoice_service.describe_invoice(invoice),
    )


__all__ = ["router"]
