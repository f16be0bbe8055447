"""Structured event logging and in-process counters.

Counters live in memory until an operator or a batch run persists them to
``observability_metric_snapshots``; when an export URL is configured the
same snapshot is also pushed to an external sink.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from threading import Lock
from typing import Any

import httpx

from fulfillment_engine.config import settings
from fulfillment_engine.db import execute, supabase
from fulfillment_engine.domain.errors import DatastoreError


logger = logging.getLogger("lead_fulfillment")

SNAPSHOTS_TABLE = "observability_metric_snapshots"

_metrics_lock = Lock()
_metrics_counter: Counter[str] = Counter()


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize(v) for v in value]
    return str(value)


def log_event(
    event: str,
    *,
    level: int = logging.INFO,
    request_id: str | None = None,
    **fields: Any,
) -> None:
    payload = {"event": event}
    if request_id:
        payload["request_id"] = request_id
    for key, value in fields.items():
        payload[key] = _normalize(value)
    logger.log(level, json.dumps(payload, sort_keys=True))


def metric_key(name: str, **labels: Any) -> str:
    """``name|label=value,...`` with labels sorted, so one counter per label set."""
    if not labels:
        return name
    ordered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}|{ordered}"


def incr_metric(name: str, value: int = 1, **labels: Any) -> None:
    key = metric_key(name, **{k: _normalize(v) for k, v in labels.items()})
    with _metrics_lock:
        _metrics_counter[key] += value


def metrics_snapshot() -> dict[str, int]:
    with _metrics_lock:
        return dict(_metrics_counter)


def reset_metrics() -> None:
    with _metrics_lock:
        _metrics_counter.clear()


def _export_snapshot(payload: dict[str, Any]) -> None:
    url = settings.observability_export_url
    if not url:
        return
    headers = {"Content-Type": "application/json"}
    if settings.observability_export_bearer_token:
        headers["Authorization"] = f"Bearer {settings.observability_export_bearer_token}"
    try:
        with httpx.Client(timeout=settings.observability_export_timeout_seconds) as client:
            response = client.post(url, headers=headers, json=payload)
    except httpx.HTTPError as exc:
        log_event(
            "metrics_snapshot_export_failed",
            level=logging.WARNING,
            request_id=payload["request_id"],
            source=payload["source"],
            error=str(exc),
        )
        return
    if response.status_code >= 400:
        log_event(
            "metrics_snapshot_export_failed",
            level=logging.WARNING,
            request_id=payload["request_id"],
            source=payload["source"],
            status_code=response.status_code,
            response_text=response.text[:200],
        )
        return
    log_event(
        "metrics_snapshot_exported",
        request_id=payload["request_id"],
        source=payload["source"],
        status_code=response.status_code,
    )


def persist_metrics_snapshot(
    source: str,
    *,
    request_id: str | None = None,
    reset_after_persist: bool = False,
) -> bool:
    """Store the current counters, then export them if a sink is configured.

    Returns False when the snapshot row could not be written; counters are
    left untouched in that case so the next flush still carries them.
    """
    payload = {"source": source, "request_id": request_id, "counters": metrics_snapshot()}
    try:
        execute(supabase.table(SNAPSHOTS_TABLE).insert(payload), operation="metrics snapshot insert")
    except DatastoreError as exc:
        log_event(
            "metrics_snapshot_persist_failed",
            level=logging.WARNING,
            request_id=request_id,
            source=source,
            error=str(exc),
        )
        return False

    _export_snapshot(payload)
    log_event(
        "metrics_snapshot_persisted",
        request_id=request_id,
        source=source,
        counter_count=len(payload["counters"]),
    )
    if reset_after_persist:
        reset_metrics()
    return True
