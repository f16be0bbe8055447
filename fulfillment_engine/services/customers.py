"""Customer Map: local user id -> processor customer ids."""
from __future__ import annotations

import logging
from typing import Any

from fulfillment_engine.auth.context import AuthContext
from fulfillment_engine.db import execute, is_missing_column_error, supabase
from fulfillment_engine.domain.errors import CustomerMappingError, DatastoreError
from fulfillment_engine.domain.payloads import LINKED_CUSTOMER_IDS
from fulfillment_engine.observability import incr_metric, log_event

CUSTOMERS_TABLE = "payment_customers"


def extract_customer_ids(rows: list[dict[str, Any]]) -> list[str]:
    ids: list[str] = []
    for row in rows:
        for value in LINKED_CUSTOMER_IDS.all(row):
            if value not in ids:
                ids.append(value)
    return ids


def _rows_by(column: str, value: str) -> list[dict[str, Any]]:
    result = execute(
        supabase.table(CUSTOMERS_TABLE).select("*").eq(column, value),
        operation=f"customer lookup by {column}",
    )
    return result.data or []


def resolve_customer_ids(auth: AuthContext, *, request_id: str | None = None) -> list[str]:
    """All processor customer ids linked to the user, by user id and by verified email.

    Raises CustomerMappingError when nothing resolves.
    """
    rows: list[dict[str, Any]] = []
    primary_available = True
    try:
        rows.extend(_rows_by("user_id", auth.user_id))
    except DatastoreError as exc:
        if not is_missing_column_error(exc, "user_id"):
            raise
        primary_available = False
        incr_metric("customers.lookup.user_id_unavailable")
        log_event(
            "customer_lookup_user_id_unavailable",
            level=logging.WARNING,
            request_id=request_id,
            user_id=auth.user_id,
        )

    if not primary_available and not auth.email:
        raise CustomerMappingError("Unable to map payment customer: user email missing")

    if auth.email:
        try:
            rows.extend(_rows_by("email", auth.email))
        except DatastoreError as exc:
            # The email link only supplements a working user id lookup.
            if not primary_available:
                raise
            log_event(
                "customer_lookup_email_failed",
                level=logging.WARNING,
                request_id=request_id,
                user_id=auth.user_id,
                error=str(exc),
            )

    customer_ids = extract_customer_ids(rows)
    if not customer_ids:
        incr_metric("customers.lookup.unmapped")
        raise CustomerMappingError("No payment customer mapping found for this user")
    return customer_ids
