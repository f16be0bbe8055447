from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


GrantDenialReason = Literal["already_has_leads", "already_granted", "ip_recent", "no_inventory"]


class SignupGrantResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    granted: bool
    lead_count: int | None = Field(default=None, alias="leadCount")
    reason: GrantDenialReason | None = None


class BackfillResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    processed: int
    granted: int
    skipped: int
    stopped_reason: Literal["insufficient_inventory"] | None = Field(default=None, alias="stoppedReason")
