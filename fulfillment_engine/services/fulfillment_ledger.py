"""Fulfillment Ledger: one row per fulfilled transaction; existence is the idempotency gate."""
from __future__ import annotations

from typing import Any

from fulfillment_engine.db import execute, is_unique_violation, supabase
from fulfillment_engine.domain.errors import DatastoreError

FULFILLMENTS_TABLE = "payment_fulfillments"


def fulfilled_transaction_ids(transaction_ids: list[str]) -> set[str]:
    if not transaction_ids:
        return set()
    result = execute(
        supabase.table(FULFILLMENTS_TABLE)
        .select("transaction_id")
        .in_("transaction_id", transaction_ids),
        operation="fulfillment lookup",
    )
    return {row["transaction_id"] for row in result.data or [] if row.get("transaction_id")}


def get_fulfillment(transaction_id: str) -> dict[str, Any] | None:
    result = execute(
        supabase.table(FULFILLMENTS_TABLE)
        .select("id, transaction_id, user_id, lead_count, package_id, created_at")
        .eq("transaction_id", transaction_id)
        .limit(1),
        operation="fulfillment lookup",
    )
    rows = result.data or []
    return rows[0] if rows else None


def insert_fulfillment(
    *,
    transaction_id: str,
    user_id: str,
    lead_count: int,
    package_id: str | None,
) -> bool:
    """Write the ledger row. Returns False if another writer recorded it first."""
    try:
        execute(
            supabase.table(FULFILLMENTS_TABLE).insert(
                {
                    "transaction_id": transaction_id,
                    "user_id": user_id,
                    "lead_count": lead_count,
                    "package_id": package_id,
                }
            ),
            operation="fulfillment insert",
        )
    except DatastoreError as exc:
        if is_unique_violation(exc):
            return False
        raise
    return True
