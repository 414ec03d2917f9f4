"""Unit tests for overdue and due-soon classification."""

from __future__ import annotations

import os
import sys
from datetime import date, timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_billing.db")

from app.backend.src.services.urgency import (
    classify_urgency,
    display_status,
    status_color,
)

TODAY = date(2025, 6, 15)


def test_past_due_unpaid_invoice_is_overdue() -> None:
    urgency = classify_urgency(date(2025, 6, 10), "pending", TODAY)

    assert urgency.level == "overdue"
    assert urgency.days == 5
    assert urgency.is_overdue


def test_due_within_window_is_urgent() -> None:
    urgency = classify_urgency(date(2025, 6, 20), "sent", TODAY)

    assert urgency.level == "urgent"
    assert urgency.days == 5


def test_due_today_is_urgent_not_overdue() -> None:
    urgency = classify_urgency(TODAY, "pending", TODAY)

    assert urgency.level == "urgent"
    assert urgency.days == 0


def test_far_due_date_is_normal() -> None:
    assert classify_urgency(date(2025, 7, 30), "pending", TODAY).level == "normal"


def test_window_is_configurable() -> None:
    assert classify_urgency(date(2025, 6, 25), "pending", TODAY, due_soon_days=14).level == "urgent"


def test_settled_invoices_have_no_urgency() -> None:
    assert classify_urgency(date(2025, 1, 1), "paid", TODAY).level == "none"
    assert classify_urgency(date(2025, 1, 1), "cancelled", TODAY).level == "none"


def test_display_status_derives_overdue() -> None:
    assert display_status("partially_paid", date(2025, 6, 1), TODAY) == "overdue"
    assert display_status("pending", date(2025, 7, 1), TODAY) == "pending"
    assert display_status("paid", date(2025, 6, 1), TODAY) == "paid"
    assert display_status("draft", date(2025, 6, 1), TODAY) == "draft"
    assert display_status("overdue", date(2025, 7, 1), TODAY) == "pending"
    assert display_status("overdue", date(2025, 6, 1), TODAY) == "overdue"


def test_status_color_falls_back_to_gray() -> None:
    assert status_color("overdue") == "bg-red-100 text-red-800"
    assert status_color("mystery") == "bg-gray-100 text-gray-600"


def test_due_yesterday_is_one_day_overdue() -> None:
    urgency = classify_urgency(date(2025, 6, 14), "pending", TODAY)

    assert urgency.level == "overdue"
    assert urgency.days == 1


def test_draft_past_due_has_no_urgency() -> None:
    urgency = classify_urgency(date(2025, 5, 20), "draft", TODAY)

    assert urgency.level == "none"
    assert display_status("draft", date(2025, 5, 20), TODAY) == "draft"


def test_levels_only_escalate_as_days_pass() -> None:
    due = date(2025, 7, 1)
    order = {"normal": 0, "urgent": 1, "overdue": 2}
    levels = [
        classify_urgency(due, "sent", due - timedelta(days=offset)).level
        for offset in range(20, -20, -1)
    ]

    ranks = [order[level] for level in levels]
    assert ranks == sorted(ranks)
    assert levels[0] == "normal"
    assert levels[-1] == "overdue"
    assert "urgent" in levels
    assert levels.index("overdue") == 21
