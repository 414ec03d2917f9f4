"""Parent and student portal endpoints scoped to the caller's own invoices."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.backend.src.core.security import get_actor_context, require_payer_or_staff
from app.backend.src.db import get_session_dependency
from app.backend.src.schemas.invoice import InvoiceAlert, InvoiceFilters, InvoicePage, InvoiceRead
from app.backend.src.services import invoices as invoice_service
from app.backend.src.services.audit import ActorContext

router = APIRouter(
    prefix="/portal",
    tags=["Portal"],
    dependencies=[Depends(require_payer_or_staff)],
)

SessionDep = Annotated[Session, Depends(get_session_dependency)]
ActorDep = Annotated[ActorContext, Depends(get_actor_context)]


@router.get("/invoices", response_model=InvoicePage)
def my_invoices(
    session: SessionDep,
    context: ActorDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    academic_year_id: int | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: int = 15,
) -> InvoicePage:
    """Invoices for the caller's children (parents) or themselves (students)."""

    filters = InvoiceFilters(
        status=status_filter,
        academic_year_id=academic_year_id,
        sort_by="due_date",
        sort_direction="desc",
        page=page,
        per_page=per_page,
    )
    return invoice_service.list_invoices(
        session,
        filters,
        student_ids=invoice_service.payer_student_ids(session, context),
    )


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def my_invoice(invoice_id: int, session: SessionDep, context: ActorDep) -> InvoiceRead:
    invoice = invoice_service.get_invoice(session, invoice_id)
    invoice_service.ensure_can_access(session, invoice, context)
    return invoice_service.describe_invoice(invoice)


@router.get("/alerts", response_model=list[InvoiceAlert])
def my_alerts(session: SessionDep, context: ActorDep) -> list[InvoiceAlert]:
    """Overdue and due-soon invoices for the dashboard banner."""

    return invoice_service.invoice_alerts(
        session, student_ids=invoice_service.payer_student_ids(session, context)
    )


__all__ = ["router"]
