"""Signup Grant Allocator: a one-time free inventory slice for new users.

Guards run in a fixed order and the first one that trips ends the request
without a grant. The grant ledger (``signup_grants``) is authoritative; the
``user_profiles.starter_grant_claimed`` flag is a cache that is honoured
when set and repaired when it lags behind the ledger.

A grant that stopped after taking units but before writing its ledger row
is completed by the next call for that user, ahead of the guards.

The per-IP throttle is a coarse deterrent against farming accounts from one
network origin. It is not an identity check.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fulfillment_engine.config import settings
from fulfillment_engine.db import execute, is_unique_violation, supabase
from fulfillment_engine.domain.errors import (
    AllocationInProgressError,
    DatastoreError,
    InsufficientInventoryError,
)
from fulfillment_engine.observability import incr_metric, log_event
from fulfillment_engine.services import inventory

GRANTS_TABLE = "signup_grants"
PROFILES_TABLE = "user_profiles"


@dataclass
class GrantOutcome:
    granted: bool
    lead_count: int = 0
    reason: str | None = None


@dataclass
class BackfillResult:
    processed: int = 0
    granted: int = 0
    skipped: int = 0
    stopped_reason: str | None = None


def hash_ip(ip: str, salt: str | None = None) -> str:
    salt = settings.ip_hash_salt if salt is None else salt
    return hashlib.sha256(f"{ip}:{salt}".encode("utf-8")).hexdigest()


def backfill_ip_hash(user_id: str) -> str:
    # Unique per user, so backfilled grants never trip the per-IP throttle.
    return hashlib.sha256(f"backfill:{user_id}".encode("utf-8")).hexdigest()


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _grant_exists(user_id: str) -> bool:
    result = execute(
        supabase.table(GRANTS_TABLE).select("id").eq("user_id", user_id).limit(1),
        operation="signup grant lookup",
    )
    return bool(result.data)


def _profile_claimed(user_id: str) -> bool:
    result = execute(
        supabase.table(PROFILES_TABLE).select("starter_grant_claimed").eq("user_id", user_id).limit(1),
        operation="user profile lookup",
    )
    rows = result.data or []
    return bool(rows and rows[0].get("starter_grant_claimed"))


def _mark_profile_claimed(user_id: str, *, request_id: str | None) -> None:
    try:
        execute(
            supabase.table(PROFILES_TABLE).upsert(
                {"user_id": user_id, "starter_grant_claimed": True},
                on_conflict="user_id",
            ),
            operation="user profile upsert",
        )
    except DatastoreError as exc:
        # The grant row already records the claim; the flag catches up on the next read.
        incr_metric("signup_grant.profile_flag.write_failed")
        log_event(
            "signup_grant_profile_flag_failed",
            level=logging.WARNING,
            request_id=request_id,
            user_id=user_id,
            error=str(exc),
        )


def is_claimed(user_id: str, *, request_id: str | None = None) -> bool:
    """Ledger row OR profile flag means claimed. Repairs a lagging flag."""
    if _grant_exists(user_id):
        if not _profile_claimed(user_id):
            incr_metric("signup_grant.profile_flag.repaired")
            _mark_profile_claimed(user_id, request_id=request_id)
        return True
    return _profile_claimed(user_id)


def _has_unfinished_grant(user_id: str) -> bool:
    # Units held under the signup ref with no grant row: an earlier attempt stopped midway.
    if not inventory.units_for_ref(inventory.signup_ref(user_id)):
        return False
    return not _grant_exists(user_id)


def _recent_grant_for_ip(ip_hash: str) -> bool:
    window_start = (_now_utc() - timedelta(hours=settings.signup_ip_window_hours)).isoformat()
    result = execute(
        supabase.table(GRANTS_TABLE)
        .select("id")
        .eq("ip_hash", ip_hash)
        .gte("created_at", window_start)
        .order("created_at", desc=True)
        .limit(1),
        operation="signup grant ip lookup",
    )
    return bool(result.data)


def _issue_grant(user_id: str, ip_hash: str, *, request_id: str | None) -> GrantOutcome:
    ref = inventory.signup_ref(user_id)
    with inventory.allocation_claim(ref, user_id):
        if _grant_exists(user_id):
            return GrantOutcome(granted=False, reason="already_granted")
        try:
            units = inventory.allocate(
                user_id=user_id,
                ref=ref,
                count=settings.free_signup_leads,
                request_id=request_id,
            )
        except InsufficientInventoryError:
            return GrantOutcome(granted=False, reason="no_inventory")
        try:
            execute(
                supabase.table(GRANTS_TABLE).insert(
                    {"user_id": user_id, "ip_hash": ip_hash, "lead_count": len(units)}
                ),
                operation="signup grant insert",
            )
        except DatastoreError as exc:
            if not is_unique_violation(exc):
                raise
            return GrantOutcome(granted=False, reason="already_granted")
        _mark_profile_claimed(user_id, request_id=request_id)
    return GrantOutcome(granted=True, lead_count=len(units))


def _finish(outcome: GrantOutcome, *, user_id: str, request_id: str | None) -> GrantOutcome:
    if outcome.granted:
        incr_metric("signup_grant.granted")
    else:
        incr_metric("signup_grant.denied", reason=outcome.reason)
    log_event(
        "signup_grant_evaluated",
        request_id=request_id,
        user_id=user_id,
        granted=outcome.granted,
        lead_count=outcome.lead_count,
        reason=outcome.reason,
    )
    return outcome


def grant_signup_bonus(user_id: str, client_ip: str, *, request_id: str | None = None) -> GrantOutcome:
    if _has_unfinished_grant(user_id):
        incr_metric("signup_grant.resumed")
        outcome = _issue_grant(user_id, hash_ip(client_ip), request_id=request_id)
        return _finish(outcome, user_id=user_id, request_id=request_id)
    if inventory.user_has_leads(user_id):
        return _finish(GrantOutcome(granted=False, reason="already_has_leads"), user_id=user_id, request_id=request_id)
    if is_claimed(user_id, request_id=request_id):
        return _finish(GrantOutcome(granted=False, reason="already_granted"), user_id=user_id, request_id=request_id)
    if _recent_grant_for_ip(hash_ip(client_ip)):
        return _finish(GrantOutcome(granted=False, reason="ip_recent"), user_id=user_id, request_id=request_id)
    outcome = _issue_grant(user_id, hash_ip(client_ip), request_id=request_id)
    return _finish(outcome, user_id=user_id, request_id=request_id)


def _user_id(user: Any) -> str | None:
    value = getattr(user, "id", None)
    if value is None and isinstance(user, dict):
        value = user.get("id")
    return str(value) if value else None


def _list_users(page: int, per_page: int) -> list[Any]:
    try:
        users = supabase.auth.admin.list_users(page=page, per_page=per_page)
    except Exception as exc:
        raise DatastoreError("user listing", exc) from exc
    return list(users or [])


def backfill_starter_grants(*, request_id: str | None = None) -> BackfillResult:
    """Grant the starter slice to every user who has not claimed one.

    Halts with ``insufficient_inventory`` as soon as the pool cannot cover one
    more full grant; the last user is never partially granted.
    """
    result = BackfillResult()
    per_page = max(1, settings.backfill_page_size)
    page = 1
    while True:
        users = _list_users(page, per_page)
        if not users:
            break
        for user in users:
            user_id = _user_id(user)
            if not user_id:
                continue
            result.processed += 1
            resume = _has_unfinished_grant(user_id)
            if not resume and (inventory.user_has_leads(user_id) or is_claimed(user_id, request_id=request_id)):
                result.skipped += 1
                continue
            try:
                outcome = _issue_grant(user_id, backfill_ip_hash(user_id), request_id=request_id)
            except AllocationInProgressError:
                result.skipped += 1
                continue
            if outcome.reason == "no_inventory":
                result.stopped_reason = "insufficient_inventory"
                incr_metric("backfill.stopped", reason=result.stopped_reason)
                log_event(
                    "backfill_stopped",
                    level=logging.WARNING,
                    request_id=request_id,
                    reason=result.stopped_reason,
                    processed=result.processed,
                    granted=result.granted,
                )
                return result
            if outcome.granted:
                result.granted += 1
                incr_metric("backfill.granted")
            else:
                result.skipped += 1
        if len(users) < per_page:
            break
        page += 1
    return result
