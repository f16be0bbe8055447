from __future__ import annotations

from typing import Any


class FulfillmentEngineError(Exception):
    """Base class for outcomes the HTTP layer maps to a status code."""

    status_code: int = 500
    reason: str = "internal_error"

    def detail(self) -> dict[str, Any]:
        return {
            "type": "fulfillment_error",
            "reason": self.reason,
            "message": str(self),
        }


class CustomerMappingError(FulfillmentEngineError):
    status_code = 409
    reason = "customer_mapping_missing"


class NoTransactionError(FulfillmentEngineError):
    status_code = 409
    reason = "no_completed_transaction"


class InsufficientInventoryError(FulfillmentEngineError):
    status_code = 409
    reason = "insufficient_inventory"

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Not enough available inventory: requested {requested}, available {available}"
        )
        self.requested = requested
        self.available = available


class AllocationInProgressError(FulfillmentEngineError):
    status_code = 409
    reason = "allocation_in_progress"

    def __init__(self, ref: str):
        super().__init__(f"Another allocation for {ref} is in progress")
        self.ref = ref


class DatastoreError(FulfillmentEngineError):
    status_code = 500
    reason = "datastore_error"

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation


class InvalidLeadCountError(FulfillmentEngineError):
    status_code = 400
    reason = "invalid_lead_count"
