from __future__ import annotations

from typing import Literal


NormalizedTransactionStatus = Literal["completed", "pending", "failed", "unknown"]

COMPLETED_TRANSACTION_STATUSES = frozenset(
    {
        "completed",
        "closed",
        "transaction_closed",
        "transaction.closed",
    }
)

COMPLETED_EVENT_TYPES = frozenset(
    {
        "transaction.completed",
        "transaction_completed",
    }
)


def normalize_transaction_status(value: str | None) -> NormalizedTransactionStatus:
    if not value:
        return "unknown"
    key = str(value).strip().lower()
    if key in COMPLETED_TRANSACTION_STATUSES:
        return "completed"
    mapping = {
        "draft": "pending",
        "ready": "pending",
        "billed": "pending",
        "paid": "pending",
        "past_due": "pending",
        "canceled": "failed",
        "cancelled": "failed",
        "failed": "failed",
        "payment_failed": "failed",
    }
    return mapping.get(key, "unknown")


def is_completed_status(value: str | None) -> bool:
    return normalize_transaction_status(value) == "completed"


def normalize_event_type(value: str | None) -> str:
    if not value:
        return ""
    return str(value).strip().lower()


def is_completed_event_type(value: str | None) -> bool:
    return normalize_event_type(value) in COMPLETED_EVENT_TYPES
