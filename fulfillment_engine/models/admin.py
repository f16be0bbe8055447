from __future__ import annotations

from pydantic import BaseModel, Field


class MetricsSnapshotResponse(BaseModel):
    counters: dict[str, int]


class MetricsSnapshotFlushRequest(BaseModel):
    source: str = Field(default="manual_flush", min_length=1, max_length=100)
    reset_after_persist: bool = False


class MetricsSnapshotFlushResponse(BaseModel):
    persisted: bool
    source: str
    counter_count: int


class AvailabilityResponse(BaseModel):
    available: int
