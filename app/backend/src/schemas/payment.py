"""Payment schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from .invoice import InvoiceRead


class PaymentCreate(BaseModel):
    amount: Decimal
    method: str = "credit_card"
    notes: str | None = None


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    amount: Decimal
    method: str
    status: str
    processing_fee: Decimal
    payment_date: datetime | None
    reference_number: str | None
    transaction_id: str | None
    notes: str | None


class PaymentQuote(BaseModel):
    """What a payer sees before submitting a payment."""

    invoice_id: int
    invoice_number: str
    amount: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    minimum_payment: Decimal
    processing_fee: Decimal
    total_with_fee: Decimal
    payable: bool


class PaymentResult(BaseModel):
    message: str
    payment: PaymentRead
    invoice: InvoiceRead


class PaymentPage(BaseModel):
    items: list[PaymentRead]
    total: int
    page: int
    per_page: int
