"""Public API routers exposed by the FastAPI application."""

from . import health, invoices, payments, portal

__all__ = [
    "health",
    "invoices",
    "payments",
    "portal",
]
