from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status

from fulfillment_engine.auth import AuthContext, get_current_user
from fulfillment_engine.config import settings
from fulfillment_engine.domain.packages import is_valid_lead_count, parse_requested_leads, resolve_lead_count
from fulfillment_engine.models.fulfillment import FulfillmentRequest, FulfillmentResponse
from fulfillment_engine.observability import incr_metric
from fulfillment_engine.services.fulfillment import fulfill


router = APIRouter(tags=["fulfillment"])


def _invalid_lead_count(message: str) -> HTTPException:
    incr_metric("fulfillment.rejected", reason="invalid_lead_count")
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"type": "validation_error", "reason": "invalid_lead_count", "message": message},
    )


@router.post("/fulfillment", response_model=FulfillmentResponse, response_model_exclude_none=True)
async def fulfill_payment(
    request: Request,
    data: FulfillmentRequest | None = Body(default=None),
    auth: AuthContext = Depends(get_current_user),
):
    data = data or FulfillmentRequest()
    try:
        requested = parse_requested_leads(data.requested_leads)
    except ValueError as exc:
        raise _invalid_lead_count(str(exc)) from exc
    lead_count = resolve_lead_count(requested, data.package_id, settings.leads_per_completed_payment)
    if not is_valid_lead_count(lead_count):
        raise _invalid_lead_count(f"Invalid lead count: {lead_count}")

    outcome = fulfill(
        auth,
        lead_count,
        transaction_id=(data.transaction_id or "").strip() or None,
        package_id=data.package_id,
        request_id=getattr(request.state, "request_id", None),
    )
    return FulfillmentResponse(
        granted=outcome.granted,
        transaction_id=outcome.transaction_id,
        lead_count=outcome.lead_count if outcome.granted else None,
        reason=outcome.reason,
    )
