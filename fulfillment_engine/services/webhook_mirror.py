"""Event Mirror: append-only log of raw payment webhook deliveries."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fulfillment_engine.db import execute, is_unique_violation, supabase
from fulfillment_engine.domain.errors import DatastoreError
from fulfillment_engine.observability import incr_metric, log_event

EVENTS_TABLE = "payment_webhook_events"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_event(
    *,
    event_id: str | None,
    event_type: str,
    payload: Any,
    request_id: str | None = None,
) -> bool:
    """Append a delivery. Returns False when the event id was already mirrored."""
    try:
        execute(
            supabase.table(EVENTS_TABLE).insert(
                {
                    "event_id": event_id,
                    "event_type": event_type,
                    "payload": payload,
                    "processed_at": _now_iso(),
                }
            ),
            operation="webhook mirror insert",
        )
    except DatastoreError as exc:
        if event_id and is_unique_violation(exc):
            incr_metric("webhook.events.duplicate")
            log_event(
                "webhook_duplicate_ignored",
                request_id=request_id,
                event_id=event_id,
                event_type=event_type,
            )
            return False
        raise
    return True


def read_recent_events(limit: int, *, request_id: str | None = None) -> list[dict[str, Any]]:
    """Newest deliveries first. An unreadable mirror reads as empty."""
    try:
        result = execute(
            supabase.table(EVENTS_TABLE).select("*").order("processed_at", desc=True).limit(limit),
            operation="webhook mirror ordered read",
        )
        return result.data or []
    except DatastoreError as exc:
        log_event(
            "webhook_mirror_ordered_read_failed",
            level=logging.WARNING,
            request_id=request_id,
            error=str(exc),
        )

    try:
        result = execute(
            supabase.table(EVENTS_TABLE).select("*").limit(limit),
            operation="webhook mirror read",
        )
        return result.data or []
    except DatastoreError as exc:
        incr_metric("webhook.mirror.unreadable")
        log_event(
            "webhook_mirror_unreadable",
            level=logging.WARNING,
            request_id=request_id,
            error=str(exc),
        )
        return []
