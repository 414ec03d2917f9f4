"""Invoice schemas."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class UrgencyRead(BaseModel):
    level: str
    days: int = 0


class InvoiceCreate(BaseModel):
    """Payload for issuing a new invoice against an enrollment."""

    program_enrollment_id: int
    invoice_number: str | None = None
    payment_plan_id: int | None = None
    amount: Decimal | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    status: str = "draft"
    description: str | None = None
    notes: str | None = None


class InvoiceUpdate(BaseModel):
    """Partial edit of an invoice; omitted fields are left untouched."""

    program_enrollment_id: int | None = None
    invoice_number: str | None = None
    amount: Decimal | None = None
    due_date: date | None = None
    status: str | None = None
    description: str | None = None
    notes: str | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    amount: Decimal
    invoice_date: date
    due_date: date
    paid_date: datetime | None
    status: str
    display_status: str
    status_color: str
    description: str | None
    notes: str | None
    student_id: int
    student_name: str | None = None
    academic_year_id: int
    curriculum_id: int
    program_enrollment_id: int | None
    payment_plan_id: int | None
    total_paid: Decimal
    remaining_balance: Decimal
    urgency: UrgencyRead


class InvoiceFilters(BaseModel):
    search: str | None = None
    status: str | None = None
    academic_year_id: int | None = None
    student_id: int | None = None
    sort_by: str = "created_at"
    sort_direction: str = "desc"
    page: int = Field(default=1, ge=1)
    per_page: int = 15


class InvoicePage(BaseModel):
    items: list[InvoiceRead]
    total: int
    page: int
    per_page: int
    pages: int


class InvoiceStats(BaseModel):
    total_invoices: int
    total_amount: Decimal
    paid_amount: Decimal
    overdue_count: int
    pending_count: int
    collection_rate: float


class InvoiceAlert(BaseModel):
    invoice_id: int
    invoice_number: str
    student_id: int
    student_name: str | None
    due_date: date
    remaining_balance: Decimal
    urgency: UrgencyRead


class InvoiceActionResponse(BaseModel):
    message: str
    invoice: InvoiceRead


class BulkActionRequest(BaseModel):
    invoice_ids: list[int]


class BulkActionResult(BaseModel):
    message: str
    updated: int
    invoice_ids: list[int]


class NextInvoiceNumber(BaseModel):
    invoice_number: str
