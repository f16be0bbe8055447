"""Fulfillment Allocator: turn a completed payment into owned leads, exactly once."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from fulfillment_engine.auth.context import AuthContext
from fulfillment_engine.domain.errors import InvalidLeadCountError
from fulfillment_engine.domain.packages import is_valid_lead_count
from fulfillment_engine.observability import incr_metric, log_event
from fulfillment_engine.services import fulfillment_ledger, inventory
from fulfillment_engine.services.transactions import find_completed_transaction


@dataclass
class FulfillmentOutcome:
    granted: bool
    transaction_id: str
    lead_count: int = 0
    reason: str | None = None


def _already_fulfilled(transaction_id: str, *, user_id: str, request_id: str | None) -> FulfillmentOutcome:
    incr_metric("fulfillment.already_fulfilled")
    log_event(
        "fulfillment_already_fulfilled",
        request_id=request_id,
        user_id=user_id,
        transaction_id=transaction_id,
    )
    return FulfillmentOutcome(granted=False, transaction_id=transaction_id, reason="already_fulfilled")


def fulfill(
    auth: AuthContext,
    requested_lead_count: int,
    transaction_id: str | None = None,
    package_id: str | None = None,
    *,
    request_id: str | None = None,
) -> FulfillmentOutcome:
    """Allocate ``requested_lead_count`` units for the caller's completed transaction.

    Raises NoTransactionError, CustomerMappingError, InsufficientInventoryError,
    AllocationInProgressError or DatastoreError. An already-fulfilled
    transaction is a normal outcome, not an error.
    """
    if not is_valid_lead_count(requested_lead_count):
        raise InvalidLeadCountError(f"Invalid lead count: {requested_lead_count}")

    candidate = find_completed_transaction(auth, transaction_id, request_id=request_id)
    if candidate.fulfilled:
        return _already_fulfilled(candidate.id, user_id=auth.user_id, request_id=request_id)

    ref = inventory.fulfillment_ref(candidate.id)
    with inventory.allocation_claim(ref, auth.user_id):
        # The ledger is the gate; re-read it now that no one else can act on this ref.
        if fulfillment_ledger.get_fulfillment(candidate.id):
            return _already_fulfilled(candidate.id, user_id=auth.user_id, request_id=request_id)

        units = inventory.allocate(
            user_id=auth.user_id,
            ref=ref,
            count=requested_lead_count,
            request_id=request_id,
        )
        recorded = fulfillment_ledger.insert_fulfillment(
            transaction_id=candidate.id,
            user_id=auth.user_id,
            lead_count=len(units),
            package_id=package_id,
        )
        if not recorded:
            log_event(
                "fulfillment_recorded_concurrently",
                level=logging.WARNING,
                request_id=request_id,
                user_id=auth.user_id,
                transaction_id=candidate.id,
            )
            return _already_fulfilled(candidate.id, user_id=auth.user_id, request_id=request_id)

    incr_metric("fulfillment.granted", source=candidate.source)
    log_event(
        "fulfillment_granted",
        request_id=request_id,
        user_id=auth.user_id,
        transaction_id=candidate.id,
        source=candidate.source,
        lead_count=len(units),
        package_id=package_id,
    )
    return FulfillmentOutcome(granted=True, transaction_id=candidate.id, lead_count=len(units))
