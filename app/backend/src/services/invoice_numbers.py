"""Invoice number generation (``INV-YYYYMM-NNNN``)."""

from __future__ import annotations

from datetime import date, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.models import Invoice

LOGGER = structlog.get_logger(__name__)

SEQUENCE_WIDTH = 4


def invoice_number_prefix(when: date | datetime, prefix: str | None = None) -> str:
    """Return the month prefix, e.g. ``INV-202505-``."""

    label = prefix or get_settings().invoice_number_prefix
    return f"{label}-{when.year:04d}{when.month:02d}-"


def format_invoice_number(when: date | datetime, sequence: int, prefix: str | None = None) -> str:
    return f"{invoice_number_prefix(when, prefix)}{sequence:0{SEQUENCE_WIDTH}d}"


def _parse_sequence(invoice_number: str) -> int:
    try:
        return int(invoice_number.rsplit("-", 1)[-1])
    except ValueError:
        return 0


def generate_invoice_number(session: Session, when: date | datetime) -> str:
    """Return the next free number for the month containing ``when``."""

    month_prefix = invoice_number_prefix(when)
    numbers = session.scalars(
        select(Invoice.invoice_number).where(Invoice.invoice_number.like(f"{month_prefix}%"))
    ).all()
    last_sequence = max((_parse_sequence(number) for number in numbers), default=0)
    invoice_number = f"{month_prefix}{last_sequence + 1:0{SEQUENCE_WIDTH}d}"
    LOGGER.debug(
        "invoice_number_generated",
        invoice_number=invoice_number,
        previous_sequence=last_sequence,
    )
    return invoice_number


__all__ = [
    "format_invoice_number",
    "generate_invoice_number",
    "invoice_number_prefix",
]
