"""Inventory Pool allocation.

Units move ``available -> reserved -> assigned``. Reservation is a
conditional update that only succeeds for rows still available, so two
allocators racing over the pool can never both win a unit. Every reserved
or assigned unit carries the ``allocation_ref`` of the purchase or grant
it belongs to; a retry for the same ref resumes from those units instead
of drawing new ones.

An allocation ref is also guarded by a row in ``allocation_claims`` so
that only one caller at a time works on a given ref.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator
from uuid import uuid4

from fulfillment_engine.config import settings
from fulfillment_engine.db import execute, is_unique_violation, supabase
from fulfillment_engine.domain.errors import (
    AllocationInProgressError,
    DatastoreError,
    InsufficientInventoryError,
)
from fulfillment_engine.observability import incr_metric, log_event

POOL_TABLE = "marketplace_leads"
OWNED_TABLE = "leads"
DISPENSED_TABLE = "dispensed_leads"
CLAIMS_TABLE = "allocation_claims"

STATUS_AVAILABLE = "available"
STATUS_RESERVED = "reserved"
STATUS_ASSIGNED = "assigned"

COPIED_ATTRIBUTES = (
    "business_name",
    "contact_name",
    "email",
    "phone",
    "address",
    "website",
    "business_type",
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(ts: Any) -> datetime | None:
    if not isinstance(ts, str) or not ts:
        return None
    try:
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def fulfillment_ref(transaction_id: str) -> str:
    return f"txn:{transaction_id}"


def signup_ref(user_id: str) -> str:
    return f"signup:{user_id}"


# -- claims -----------------------------------------------------------------


def acquire_claim(ref: str, user_id: str) -> str | None:
    """Become the single holder of ``ref``. Returns the holder token, or None if held."""
    token = uuid4().hex
    expires_at = (_now_utc() + timedelta(seconds=settings.allocation_claim_ttl_seconds)).isoformat()
    try:
        execute(
            supabase.table(CLAIMS_TABLE).insert(
                {"ref": ref, "holder": token, "user_id": user_id, "expires_at": expires_at}
            ),
            operation="allocation claim insert",
        )
        return token
    except DatastoreError as exc:
        if not is_unique_violation(exc):
            raise

    rows = execute(
        supabase.table(CLAIMS_TABLE).select("ref, holder, expires_at").eq("ref", ref).limit(1),
        operation="allocation claim lookup",
    ).data or []
    if not rows:
        return None
    current = rows[0]
    current_expiry = _parse_ts(current.get("expires_at"))
    if current_expiry is not None and current_expiry > _now_utc():
        return None

    # Expired claim: take it over only if nobody else did first.
    taken = execute(
        supabase.table(CLAIMS_TABLE)
        .update({"holder": token, "user_id": user_id, "expires_at": expires_at})
        .eq("ref", ref)
        .eq("holder", current["holder"]),
        operation="allocation claim takeover",
    ).data or []
    if not taken:
        return None
    incr_metric("inventory.claim.taken_over")
    return token


def release_claim(ref: str, token: str) -> None:
    try:
        execute(
            supabase.table(CLAIMS_TABLE).delete().eq("ref", ref).eq("holder", token),
            operation="allocation claim release",
        )
    except DatastoreError as exc:
        # The claim expires on its own; a stuck row only delays the next retry.
        log_event("allocation_claim_release_failed", level=logging.WARNING, ref=ref, error=str(exc))


@contextmanager
def allocation_claim(ref: str, user_id: str) -> Iterator[str]:
    token = acquire_claim(ref, user_id)
    if token is None:
        incr_metric("inventory.claim.contended")
        raise AllocationInProgressError(ref)
    try:
        yield token
    finally:
        release_claim(ref, token)


# -- pool -------------------------------------------------------------------


def count_available() -> int:
    result = execute(
        supabase.table(POOL_TABLE)
        .select("id", count="exact")
        .eq("status", STATUS_AVAILABLE)
        .is_("assigned_to", "null"),
        operation="inventory count",
    )
    if result.count is not None:
        return int(result.count)
    return len(result.data or [])


def units_for_ref(ref: str) -> list[dict[str, Any]]:
    result = execute(
        supabase.table(POOL_TABLE)
        .select("*")
        .eq("allocation_ref", ref)
        .in_("status", [STATUS_RESERVED, STATUS_ASSIGNED])
        .order("created_at")
        .order("id"),
        operation="inventory lookup by allocation ref",
    )
    return result.data or []


def _select_available(limit: int) -> list[dict[str, Any]]:
    result = execute(
        supabase.table(POOL_TABLE)
        .select("*")
        .eq("status", STATUS_AVAILABLE)
        .is_("assigned_to", "null")
        .order("created_at")
        .order("id")
        .limit(limit),
        operation="inventory selection",
    )
    return result.data or []


def _reserve(unit_ids: list[str], ref: str) -> list[dict[str, Any]]:
    # Re-checks availability at write time; only rows actually changed are won.
    result = execute(
        supabase.table(POOL_TABLE)
        .update({"status": STATUS_RESERVED, "allocation_ref": ref, "reserved_at": _now_utc().isoformat()})
        .in_("id", unit_ids)
        .eq("status", STATUS_AVAILABLE)
        .is_("assigned_to", "null"),
        operation="inventory reservation",
    )
    return result.data or []


def _release(ref: str, unit_ids: list[str]) -> None:
    if not unit_ids:
        return
    execute(
        supabase.table(POOL_TABLE)
        .update({"status": STATUS_AVAILABLE, "allocation_ref": None, "reserved_at": None})
        .in_("id", unit_ids)
        .eq("allocation_ref", ref)
        .eq("status", STATUS_RESERVED),
        operation="inventory reservation release",
    )


def reserve_units(ref: str, count: int, user_id: str | None = None) -> list[dict[str, Any]]:
    """Hold exactly ``count`` units under ``ref`` or raise InsufficientInventoryError.

    Units already held by ``ref`` from an earlier interrupted attempt count
    towards the total, the ones ``user_id`` already has copies of first. A
    unit the user has a copy of is never handed back to the pool: it stays
    reserved under ``ref`` for the next retry.
    """
    existing = units_for_ref(ref)
    owned = {row["source_lead_id"] for row in _owned_rows(user_id, [unit["id"] for unit in existing])}
    existing.sort(key=lambda unit: unit["id"] not in owned)
    held = existing[:count]

    surplus = [unit["id"] for unit in existing[count:]]
    if surplus:
        _release(ref, [unit_id for unit_id in surplus if unit_id not in owned])
        kept = [unit_id for unit_id in surplus if unit_id in owned]
        if kept:
            log_event(
                "inventory_surplus_kept",
                level=logging.WARNING,
                allocation_ref=ref,
                user_id=user_id,
                unit_ids=kept,
            )

    attempts = 0
    while len(held) < count and attempts < max(1, settings.allocation_max_attempts):
        attempts += 1
        needed = count - len(held)
        candidates = _select_available(needed)
        if len(candidates) < needed:
            break
        won = _reserve([unit["id"] for unit in candidates], ref)
        held.extend(won)
        if len(won) < needed:
            incr_metric("inventory.reservation.contended")

    if len(held) < count:
        _release(ref, [unit["id"] for unit in held if unit["id"] not in owned])
        incr_metric("inventory.insufficient")
        raise InsufficientInventoryError(requested=count, available=len(_select_available(count)))
    return held


# -- owned copies -----------------------------------------------------------


def _owned_copy(unit: dict[str, Any], user_id: str) -> dict[str, Any]:
    row = {attr: unit.get(attr) for attr in COPIED_ATTRIBUTES}
    row.update(
        {
            "user_id": user_id,
            "source_lead_id": unit["id"],
            "lead_status": "new",
            "status": "New",
            "last_contact": "Never",
            "scheduled_date": "-",
        }
    )
    return row


def _owned_rows(user_id: str | None, unit_ids: list[str]) -> list[dict[str, Any]]:
    if not user_id or not unit_ids:
        return []
    result = execute(
        supabase.table(OWNED_TABLE)
        .select("id, source_lead_id")
        .eq("user_id", user_id)
        .in_("source_lead_id", unit_ids),
        operation="owned lead lookup",
    )
    return result.data or []


def copy_to_owned(user_id: str, units: list[dict[str, Any]]) -> list[str]:
    """Copy units into the user's lead collection, skipping ones already copied."""
    existing = _owned_rows(user_id, [unit["id"] for unit in units])
    already = {row["source_lead_id"] for row in existing}
    owned_ids = [row["id"] for row in existing]

    pending = [_owned_copy(unit, user_id) for unit in units if unit["id"] not in already]
    if pending:
        inserted = execute(
            supabase.table(OWNED_TABLE).insert(pending),
            operation="owned lead insert",
        ).data or []
        new_ids = [row["id"] for row in inserted]
        if new_ids:
            execute(
                supabase.table(DISPENSED_TABLE).insert(
                    [{"user_id": user_id, "lead_id": lead_id} for lead_id in new_ids]
                ),
                operation="dispensed lead insert",
            )
        owned_ids.extend(new_ids)
    return owned_ids


def user_has_leads(user_id: str) -> bool:
    result = execute(
        supabase.table(OWNED_TABLE).select("id").eq("user_id", user_id).limit(1),
        operation="owned lead lookup",
    )
    return bool(result.data)


def _finalize(ref: str, user_id: str, unit_ids: list[str]) -> None:
    execute(
        supabase.table(POOL_TABLE)
        .update({"status": STATUS_ASSIGNED, "assigned_to": user_id, "assigned_at": _now_utc().isoformat()})
        .in_("id", unit_ids)
        .eq("allocation_ref", ref)
        .eq("status", STATUS_RESERVED),
        operation="inventory assignment",
    )


def allocate(
    *,
    user_id: str,
    ref: str,
    count: int,
    request_id: str | None = None,
) -> list[dict[str, Any]]:
    """Reserve, copy into the user's leads, then mark assigned. All or nothing.

    The caller must hold the allocation claim for ``ref``.
    """
    units = reserve_units(ref, count, user_id)
    copy_to_owned(user_id, units)
    _finalize(ref, user_id, [unit["id"] for unit in units])
    incr_metric("inventory.units.assigned", value=len(units))
    log_event(
        "inventory_allocated",
        request_id=request_id,
        user_id=user_id,
        allocation_ref=ref,
        unit_count=len(units),
    )
    return units
