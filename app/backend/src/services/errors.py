"""Exceptions raised by the billing service layer.

Each error is an :class:`~fastapi.HTTPException` so routers can let it
propagate unchanged while scripts and tests can catch the specific subclass.
"""

from __future__ import annotations

from collections.abc import Mapping

from fastapi import HTTPException, status


class InvoiceValidationError(HTTPException):
    """Bad input; reported field by field, nothing written."""

    def __init__(self, errors: Mapping[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[
                {"field": field, "message": message}
                for field, message in self.errors.items()
            ],
        )


class InvalidTransitionError(HTTPException):
    """The requested status change is not allowed."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot change invoice status from {current} to {requested}",
        )


class PaymentAuthorizationError(HTTPException):
    """The caller may not pay or inspect this invoice."""

    def __init__(self, detail: str = "You do not have permission to pay this invoice.") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class PaymentDeclinedError(HTTPException):
    """The gateway declined or failed; the failed attempt is kept for audit."""

    def __init__(self, message: str, *, payment_id: int | None = None) -> None:
        self.payment_id = payment_id
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": message, "payment_id": payment_id},
        )


class ConsistencyError(HTTPException):
    """A referenced record is missing; the enclosing transaction is abandoned."""

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


__all__ = [
    "ConsistencyError",
    "InvalidTransitionError",
    "InvoiceValidationError",
    "PaymentAuthorizationError",
    "PaymentDeclinedError",
]
