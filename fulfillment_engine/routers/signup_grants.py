from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from fulfillment_engine.auth import AuthContext, get_current_user
from fulfillment_engine.models.signup_grants import SignupGrantResponse
from fulfillment_engine.services.signup_grants import grant_signup_bonus


router = APIRouter(tags=["signup-grants"])


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (request.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@router.post("/signup-grant", response_model=SignupGrantResponse, response_model_exclude_none=True)
async def claim_signup_grant(
    request: Request,
    auth: AuthContext = Depends(get_current_user),
):
    outcome = grant_signup_bonus(
        auth.user_id,
        client_ip(request),
        request_id=getattr(request.state, "request_id", None),
    )
    return SignupGrantResponse(
        granted=outcome.granted,
        lead_count=outcome.lead_count if outcome.granted else None,
        reason=outcome.reason,
    )
