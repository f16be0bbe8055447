from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from fulfillment_engine.auth import require_admin_secret
from fulfillment_engine.models.admin import (
    MetricsSnapshotFlushRequest,
    MetricsSnapshotFlushResponse,
    MetricsSnapshotResponse,
)
from fulfillment_engine.models.signup_grants import BackfillResponse
from fulfillment_engine.observability import log_event, metrics_snapshot, persist_metrics_snapshot
from fulfillment_engine.services.signup_grants import backfill_starter_grants


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_secret)])


@router.post("/backfill-starter", response_model=BackfillResponse, response_model_exclude_none=True)
async def backfill_starter(request: Request):
    request_id = getattr(request.state, "request_id", None)
    result = backfill_starter_grants(request_id=request_id)
    log_event(
        "backfill_completed",
        request_id=request_id,
        processed=result.processed,
        granted=result.granted,
        skipped=result.skipped,
        stopped_reason=result.stopped_reason,
    )
    persist_metrics_snapshot("backfill_starter", request_id=request_id)
    return BackfillResponse(
        processed=result.processed,
        granted=result.granted,
        skipped=result.skipped,
        stopped_reason=result.stopped_reason,
    )


@router.get("/metrics", response_model=MetricsSnapshotResponse)
async def get_metrics():
    return MetricsSnapshotResponse(counters=metrics_snapshot())


@router.post("/metrics/flush", response_model=MetricsSnapshotFlushResponse)
async def flush_metrics(data: MetricsSnapshotFlushRequest, request: Request):
    counter_count = len(metrics_snapshot())
    persisted = persist_metrics_snapshot(
        data.source,
        request_id=getattr(request.state, "request_id", None),
        reset_after_persist=data.reset_after_persist,
    )
    return MetricsSnapshotFlushResponse(
        persisted=persisted,
        source=data.source,
        counter_count=counter_count,
    )
