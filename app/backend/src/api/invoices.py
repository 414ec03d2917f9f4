"""Staff endpoints for issuing and managing invoices."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.backend.src.core.security import get_actor_context, require_staff_user
from app.backend.src.db import get_session_dependency
from app.backend.src.schemas.invoice import (
    BulkActionRequest,
    BulkActionResult,
    InvoiceActionResponse,
    InvoiceAlert,
    InvoiceCreate,
    InvoiceFilters,
    InvoicePage,
    InvoiceRead,
    InvoiceStats,
    InvoiceUpdate,
    NextInvoiceNumber,
)
from app.backend.src.services import invoices as invoice_service
from app.backend.src.services.audit import ActorContext

router = APIRouter(
    prefix="/invoices",
    tags=["Invoices"],
    dependencies=[Depends(require_staff_user)],
)

SessionDep = Annotated[Session, Depends(get_session_dependency)]
ActorDep = Annotated[ActorContext, Depends(get_actor_context)]


@router.get("", response_model=InvoicePage)
def list_invoices(
    session: SessionDep,
    search: str | None = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    academic_year_id: int | None = None,
    student_id: int | None = None,
    sort_by: str = "created_at",
    sort_direction: str = "desc",
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: int = 15,
) -> InvoicePage:
    """Search, filter and paginate every invoice."""

    filters = InvoiceFilters(
        search=search,
        status=status_filter,
        academic_year_id=academic_year_id,
        student_id=student_id,
        sort_by=sort_by,
        sort_direction=sort_direction,
        page=page,
        per_page=per_page,
    )
    return invoice_service.list_invoices(session, filters)


@router.get("/stats", response_model=InvoiceStats)
def invoice_stats(session: SessionDep) -> InvoiceStats:
    return invoice_service.invoice_stats(session)


@router.get("/alerts", response_model=list[InvoiceAlert])
def invoice_alerts(session: SessionDep) -> list[InvoiceAlert]:
    """Overdue and due-soon invoices across all students."""

    return invoice_service.invoice_alerts(session)


@router.get("/next-number", response_model=NextInvoiceNumber)
def next_invoice_number(session: SessionDep) -> NextInvoiceNumber:
    return NextInvoiceNumber(invoice_number=invoice_service.next_invoice_number(session))


@router.post("/bulk/send", response_model=BulkActionResult)
def bulk_send(
    payload: BulkActionRequest,
    session: SessionDep,
    context: ActorDep,
) -> BulkActionResult:
    """Mark the selected drafts as sent."""

    updated = invoice_service.bulk_mark_as_sent(session, payload.invoice_ids, context)
    return BulkActionResult(
        message=f"{len(updated)} invoice(s) marked as sent.",
        updated=len(updated),
        invoice_ids=[invoice.id for invoice in updated],
    )


@router.post("/bulk/mark-paid", response_model=BulkActionResult)
def bulk_mark_paid(
    payload: BulkActionRequest,
    session: SessionDep,
    context: ActorDep,
) -> BulkActionResult:
    """Mark the selected unpaid invoices as paid."""

    updated = invoice_service.bulk_mark_as_paid(session, payload.invoice_ids, context)
    return BulkActionResult(
        message=f"{len(updated)} invoice(s) marked as paid.",
        updated=len(updated),
        invoice_ids=[invoice.id for invoice in updated],
    )


@router.post("", response_model=InvoiceActionResponse, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    session: SessionDep,
    context: ActorDep,
) -> InvoiceActionResponse:
    invoice = invoice_service.create_invoice(session, payload, context)
    return InvoiceActionResponse(
        message="Invoice created successfully.",
        invoice=invoice_service.describe_invoice(invoice),
    )


@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(invoice_id: int, session: SessionDep) -> InvoiceRead:
    invoice = invoice_service.get_invoice(session, invoice_id)
    return invoice_service.describe_invoice(invoice)


@router.patch("/{invoice_id}", response_model=InvoiceActionResponse)
def update_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    session: SessionDep,
    context: ActorDep,
) -> InvoiceActionResponse:
    invoice = invoice_service.update_invoice(session, invoice_id, payload, context)
    return InvoiceActionResponse(
        message="Invoice updated successfully.",
        invoice=invoice_service.describe_invoice(invoice),
    )


@router.post("/{invoice_id}/send", response_model=InvoiceActionResponse)
def send_invoice(invoice_id: int, session: SessionDep, context: ActorDep) -> InvoiceActionResponse:
    invoice = invoice_service.mark_as_sent(session, invoice_id, context)
    return InvoiceActionResponse(
        message="Invoice marked as sent.",
        invoice=invoice_service.describe_invoice(invoice),
    )


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceActionResponse)
def mark_invoice_paid(
    invoice_id: int, session: SessionDep, context: ActorDep
) -> InvoiceActionResponse:
    invoice = invoice_service.mark_as_paid(session, invoice_id, context)
    return InvoiceActionResponse(
        message="Invoice marked as paid.",
        invoice=invoice_service.describe_invoice(invoice),
    )


@router.post("/{invoice_id}/cancel", response_model=InvoiceActionResponse)
def cancel_invoice(
    invoice_id: int, session: SessionDep, context: ActorDep
) -> InvoiceActionResponse:
    invoice = invoice_service.cancel_invoice(session, invoice_id, context)
    return InvoiceActionResponse(
        message="Invoice cancelled.",
        invoice=invoice_service.describe_invoice(invoice),
    )


__all__ = ["router"]
