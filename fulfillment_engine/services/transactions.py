"""Transaction reconciliation across the Transaction Ledger and the Event Mirror.

Evidence sources are consulted in priority order; the first one that yields
any completed candidate wins. The ledger is authoritative; the mirror is a
fallback for replication lag or ledger outages and is written back into the
ledger on a best-effort basis.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Protocol

from fulfillment_engine.auth.context import AuthContext
from fulfillment_engine.config import settings
from fulfillment_engine.db import execute, supabase
from fulfillment_engine.domain.errors import DatastoreError, NoTransactionError
from fulfillment_engine.domain.normalization import is_completed_event_type, is_completed_status
from fulfillment_engine.domain.payloads import CUSTOMER_ID, EVENT_TYPE, OCCURRED_AT, TRANSACTION_ID
from fulfillment_engine.observability import incr_metric, log_event
from fulfillment_engine.services.customers import resolve_customer_ids
from fulfillment_engine.services.fulfillment_ledger import fulfilled_transaction_ids
from fulfillment_engine.services.webhook_mirror import read_recent_events

TRANSACTIONS_TABLE = "payment_transactions"


@dataclass
class TransactionCandidate:
    id: str
    customer_id: str | None
    status: str
    source: Literal["ledger", "mirror"]
    created_at: str | None = None
    updated_at: str | None = None
    fulfilled: bool = False


@dataclass
class ReconciliationQuery:
    user_id: str
    customer_ids: list[str]
    transaction_id: str | None = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: str | None = None
    # Completed ledger rows dropped by the lookback window; the ledger is authoritative for them.
    stale_ledger_ids: set[str] = field(default_factory=set)

    @property
    def explicit(self) -> bool:
        return bool(self.transaction_id)


class EvidenceSource(Protocol):
    name: str

    def collect(self, query: ReconciliationQuery) -> list[TransactionCandidate]: ...


def _parse_ts(ts: Any) -> datetime | None:
    if not isinstance(ts, str) or not ts.strip():
        return None
    try:
        parsed = datetime.fromisoformat(ts.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_recent_enough(row: dict[str, Any], now: datetime, lookback_hours: int) -> bool:
    stamps = [ts for ts in (_parse_ts(row.get("updated_at")), _parse_ts(row.get("created_at"))) if ts]
    if not stamps:
        return False
    return now - max(stamps) <= timedelta(hours=lookback_hours)


class LedgerSource:
    name = "ledger"

    def collect(self, query: ReconciliationQuery) -> list[TransactionCandidate]:
        builder = (
            supabase.table(TRANSACTIONS_TABLE)
            .select("id, status, customer_id, created_at, updated_at")
            .in_("customer_id", query.customer_ids)
            .order("updated_at", desc=True)
            .limit(settings.transaction_page_size)
        )
        if query.transaction_id:
            builder = builder.eq("id", query.transaction_id)
        rows = execute(builder, operation="transaction lookup").data or []

        candidates: list[TransactionCandidate] = []
        for row in rows:
            if query.transaction_id and row.get("id") != query.transaction_id:
                continue
            if not is_completed_status(row.get("status")):
                continue
            if not query.explicit and not is_recent_enough(
                row, query.now, settings.auto_fulfill_lookback_hours
            ):
                query.stale_ledger_ids.add(str(row["id"]))
                continue
            candidates.append(
                TransactionCandidate(
                    id=str(row["id"]),
                    customer_id=row.get("customer_id"),
                    status="completed",
                    source=self.name,
                    created_at=row.get("created_at"),
                    updated_at=row.get("updated_at"),
                )
            )
        return candidates


class MirrorSource:
    name = "mirror"

    def collect(self, query: ReconciliationQuery) -> list[TransactionCandidate]:
        rows = read_recent_events(settings.webhook_mirror_scan_limit, request_id=query.request_id)
        candidates: list[TransactionCandidate] = []
        seen: set[str] = set()
        for row in rows:
            if not is_completed_event_type(EVENT_TYPE.first(row)):
                continue
            transaction_id = TRANSACTION_ID.first(row)
            if not transaction_id or transaction_id in seen:
                continue
            if query.transaction_id and transaction_id != query.transaction_id:
                continue
            if transaction_id in query.stale_ledger_ids:
                continue
            occurred_at = OCCURRED_AT.first(row)
            if not query.explicit and not is_recent_enough(
                {"created_at": occurred_at}, query.now, settings.auto_fulfill_lookback_hours
            ):
                continue
            customer_id = CUSTOMER_ID.first(row)
            if customer_id and customer_id not in query.customer_ids:
                continue
            seen.add(transaction_id)
            candidates.append(
                TransactionCandidate(
                    id=transaction_id,
                    customer_id=customer_id,
                    status="completed",
                    source=self.name,
                    created_at=occurred_at,
                )
            )

        for candidate in candidates:
            _mirror_into_ledger(candidate, request_id=query.request_id)
        if candidates:
            incr_metric("reconciliation.mirror_fallback.matched")
        return candidates


def _mirror_into_ledger(candidate: TransactionCandidate, *, request_id: str | None) -> None:
    if not candidate.customer_id:
        return
    row = {"id": candidate.id, "customer_id": candidate.customer_id, "status": "completed"}
    if candidate.created_at:
        row["created_at"] = candidate.created_at
    try:
        execute(
            supabase.table(TRANSACTIONS_TABLE).upsert(row, on_conflict="id"),
            operation="transaction backfill upsert",
        )
    except DatastoreError as exc:
        incr_metric("reconciliation.mirror_backfill.failed")
        log_event(
            "transaction_backfill_failed",
            level=logging.WARNING,
            request_id=request_id,
            transaction_id=candidate.id,
            error=str(exc),
        )
        return
    incr_metric("reconciliation.mirror_backfill.written")


EVIDENCE_PIPELINE: tuple[EvidenceSource, ...] = (LedgerSource(), MirrorSource())


def collect_candidates(query: ReconciliationQuery) -> list[TransactionCandidate]:
    for source in EVIDENCE_PIPELINE:
        candidates = source.collect(query)
        if candidates:
            log_event(
                "reconciliation_candidates_found",
                request_id=query.request_id,
                user_id=query.user_id,
                source=source.name,
                count=len(candidates),
                explicit=query.explicit,
            )
            return candidates
    return []


def find_completed_transaction(
    auth: AuthContext,
    transaction_id: str | None = None,
    *,
    request_id: str | None = None,
) -> TransactionCandidate:
    """Pick the completed transaction to fulfill for this user.

    The first unfulfilled candidate in ranking order is preferred. If every
    candidate is already fulfilled the first one is returned with
    ``fulfilled=True`` so callers can answer "already fulfilled".
    """
    customer_ids = resolve_customer_ids(auth, request_id=request_id)
    query = ReconciliationQuery(
        user_id=auth.user_id,
        customer_ids=customer_ids,
        transaction_id=transaction_id or None,
        request_id=request_id,
    )
    candidates = collect_candidates(query)
    if not candidates:
        incr_metric("reconciliation.not_found")
        raise NoTransactionError("No completed transaction found yet for this account")

    fulfilled = fulfilled_transaction_ids([candidate.id for candidate in candidates])
    for candidate in candidates:
        candidate.fulfilled = candidate.id in fulfilled
    return next((c for c in candidates if not c.fulfilled), candidates[0])
