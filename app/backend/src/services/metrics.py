"""Prometheus metric definitions for invoice and payment processing."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

payments_total = Counter(
    "payments_total",
    "Payment attempts by method and outcome.",
    labelnames=["method", "status"],
)

gateway_duration_seconds = Histogram(
    "payment_gateway_duration_seconds",
    "Time spent waiting on the payment gateway.",
)

invoice_transitions_total = Counter(
    "invoice_status_transitions_total",
    "Invoice status changes by source and target status.",
    labelnames=["from_status", "to_status"],
)

__all__ = [
    "gateway_duration_seconds",
    "invoice_transitions_total",
    "payments_total",
]
