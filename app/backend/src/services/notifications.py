"""Notification service stubs."""

from __future__ import annotations

from decimal import Decimal

import structlog

LOGGER = structlog.get_logger(__name__)


def notify_payment_received(
    recipient_id: int | None,
    *,
    invoice_number: str,
    amount: Decimal,
    reference_number: str | None,
) -> None:
    """Log that a payment receipt would have been sent."""

    LOGGER.info(
        "payment_received_notification",
        recipient_id=recipient_id,
        invoice_number=invoice_number,
        amount=str(amount),
        reference_number=reference_number,
    )


def notify_payment_failed(
    recipient_id: int | None,
    *,
    invoice_number: str,
    amount: Decimal,
    reason: str,
) -> None:
    """Log that a payment failure notice would have been sent."""

    LOGGER.info(
        "payment_failed_notification",
        recipient_id=recipient_id,
        invoice_number=invoice_number,
        amount=str(amount),
        reason=reason,
    )
