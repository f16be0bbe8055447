from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class WebhookAcceptedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["accepted"] = "accepted"
    event_type: str = Field(alias="eventType")
    transaction_id: str | None = Field(default=None, alias="transactionId")
    duplicate: bool = False
