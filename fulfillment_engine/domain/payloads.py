"""Field extraction from webhook payloads whose shape varies by event version.

A logical field (transaction id, customer id, ...) can live at several
places depending on who wrote the row: the webhook mirror stores the raw
event under ``payload`` while older rows were flattened. Each field is an
ordered list of rules; the first rule that yields a non-empty string wins.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class PathRule:
    """Read a string at a nested dict path."""

    path: tuple[str, ...]

    def apply(self, row: dict[str, Any]) -> Any:
        current: Any = row
        for key in self.path:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current


@dataclass(frozen=True)
class PrefixedIdRule:
    """Read a string at a path, only if it carries a processor id prefix (e.g. ``ctm_``)."""

    path: tuple[str, ...]
    prefix: str

    def apply(self, row: dict[str, Any]) -> Any:
        value = PathRule(self.path).apply(row)
        if isinstance(value, str) and value.startswith(self.prefix):
            return value
        return None


ExtractionRule = Union[PathRule, PrefixedIdRule]


def _clean(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _decoded(row: dict[str, Any]) -> dict[str, Any]:
    # The mirror may hold the raw body as text rather than JSONB.
    payload = row.get("payload")
    if not isinstance(payload, str):
        return row
    try:
        parsed = json.loads(payload)
    except ValueError:
        return row
    if not isinstance(parsed, dict):
        return row
    return {**row, "payload": parsed}


@dataclass(frozen=True)
class FieldExtractor:
    name: str
    rules: tuple[ExtractionRule, ...]

    def first(self, row: dict[str, Any]) -> str | None:
        decoded = _decoded(row)
        for rule in self.rules:
            value = _clean(rule.apply(decoded))
            if value is not None:
                return value
        return None

    def all(self, row: dict[str, Any]) -> list[str]:
        decoded = _decoded(row)
        values: list[str] = []
        for rule in self.rules:
            value = _clean(rule.apply(decoded))
            if value is not None and value not in values:
                values.append(value)
        return values


def _paths(*paths: str) -> tuple[PathRule, ...]:
    return tuple(PathRule(tuple(path.split("."))) for path in paths)


EVENT_TYPE = FieldExtractor(
    "event_type",
    _paths(
        "event_type",
        "type",
        "eventType",
        "name",
        "payload.event_type",
        "payload.type",
        "payload.eventType",
        "payload.name",
    ),
)

EVENT_ID = FieldExtractor(
    "event_id",
    _paths("event_id", "notification_id", "payload.event_id", "payload.notification_id"),
)

TRANSACTION_ID = FieldExtractor(
    "transaction_id",
    _paths(
        "transaction_id",
        "payload.transaction_id",
        "payload.data.id",
        "data.id",
        "payload.id",
    ),
)

CUSTOMER_ID = FieldExtractor(
    "customer_id",
    _paths(
        "customer_id",
        "payload.customer_id",
        "payload.data.customer_id",
        "payload.data.customer.id",
        "data.customer_id",
        "data.customer.id",
    ),
)

OCCURRED_AT = FieldExtractor(
    "occurred_at",
    _paths("occurred_at", "payload.occurred_at", "payload.data.updated_at", "processed_at"),
)

# Customer map rows: several column names have held the processor customer id.
LINKED_CUSTOMER_IDS = FieldExtractor(
    "linked_customer_id",
    _paths("customer_id", "paddle_customer_id", "processor_customer_id")
    + (PrefixedIdRule(("id",), "ctm_"),),
)
