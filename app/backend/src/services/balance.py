"""Balance calculations shared by every invoice and payment screen."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.backend.src.models.invoice import (
    STATUS_PAID,
    STATUS_PARTIALLY_PAID,
    Invoice,
)
from app.backend.src.models.payment import PAYMENT_COMPLETED
from app.backend.src.services.errors import InvoiceValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: object) -> Decimal:
    """Coerce ``value`` to a two-place :class:`Decimal`."""

    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise InvoiceValidationError({"amount": "Amount must be a valid number."}) from exc
    if not amount.is_finite():
        raise InvoiceValidationError({"amount": "Amount must be a valid number."})
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def total_paid(invoice: Invoice) -> Decimal:
    """Sum the completed payments recorded against ``invoice``."""

    total = sum(
        (to_money(payment.amount) for payment in invoice.payments if payment.status == PAYMENT_COMPLETED),
        ZERO,
    )
    return to_money(total)


def remaining_balance(invoice: Invoice) -> Decimal:
    """Return what is still owed; never negative, even when overpaid."""

    return max(ZERO, to_money(invoice.amount) - total_paid(invoice))


def minimum_payment(remaining: Decimal, floor: Decimal) -> Decimal:
    """Smallest acceptable payment: the floor, or the whole balance when smaller."""

    return min(to_money(floor), to_money(remaining))


def validate_payment_amount(invoice: Invoice, amount: object, *, floor: Decimal) -> Decimal:
    """Check ``amount`` against the invoice balance and return it as money."""

    value = to_money(amount)
    remaining = remaining_balance(invoice)
    if value <= ZERO:
        raise InvoiceValidationError({"amount": "Payment amount must be greater than zero."})
    if value > remaining:
        raise InvoiceValidationError(
            {"amount": f"Payment amount cannot exceed remaining balance of {remaining}."}
        )
    least = minimum_payment(remaining, floor)
    if value < least:
        raise InvoiceValidationError(
            {"amount": f"Payment amount must be at least {least}."}
        )
    return value


def status_after_payment(invoice: Invoice) -> str:
    """Return the status the invoice should hold given its completed payments."""

    paid = total_paid(invoice)
    if paid >= to_money(invoice.amount):
        return STATUS_PAID
    if paid > ZERO:
        return STATUS_PARTIALLY_PAID
    return invoice.status


def processing_fee(amount: Decimal, method: str, rate: Decimal) -> Decimal:
    """Card surcharge shown to the payer; it never reduces the balance."""

    if method != "credit_card":
        return ZERO
    return to_money(to_money(amount) * Decimal(rate))


__all__ = [
    "minimum_payment",
    "processing_fee",
    "remaining_balance",
    "status_after_payment",
    "to_money",
    "total_paid",
    "validate_payment_amount",
]
