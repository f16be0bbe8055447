from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class FulfillmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str | None = Field(default=None, alias="transactionId")
    package_id: str | None = Field(default=None, alias="packageId")
    # Coerced by the router so that junk values answer 400 rather than 422.
    requested_leads: Any = Field(default=None, alias="requestedLeads")


class FulfillmentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    granted: bool
    transaction_id: str = Field(alias="transactionId")
    lead_count: int | None = Field(default=None, alias="leadCount")
    reason: Literal["already_fulfilled"] | None = None
