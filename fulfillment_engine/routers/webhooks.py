from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from fulfillment_engine.config import settings
from fulfillment_engine.domain.normalization import normalize_event_type
from fulfillment_engine.domain.payloads import EVENT_ID, EVENT_TYPE, TRANSACTION_ID
from fulfillment_engine.domain.signatures import signature_age_seconds, verify_any
from fulfillment_engine.models.webhooks import WebhookAcceptedResponse
from fulfillment_engine.observability import incr_metric, log_event
from fulfillment_engine.services import webhook_mirror


router = APIRouter(prefix="/webhook", tags=["webhooks"])
SIGNATURE_HEADER = "Paddle-Signature"


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _reject(reason: str, request_id: str | None) -> HTTPException:
    incr_metric("webhook.events.rejected", reason=reason)
    log_event("webhook_signature_rejected", level=logging.WARNING, request_id=request_id, reason=reason)
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")


def _verify_signature_or_raise(raw_body: bytes, signature_header: str | None, request_id: str | None) -> None:
    secrets = [settings.payment_webhook_secret, settings.payment_webhook_secret_previous]
    if not any(secrets):
        log_event(
            "webhook_signature_secret_not_configured",
            level=logging.ERROR,
            request_id=request_id,
        )
        raise _reject("secret_not_configured", request_id)
    if not signature_header:
        raise _reject("missing_signature", request_id)
    if not verify_any(raw_body, signature_header, secrets):
        raise _reject("invalid_signature", request_id)

    tolerance = max(0, settings.payment_webhook_tolerance_seconds)
    if tolerance:
        age = signature_age_seconds(signature_header)
        if age is None or age > tolerance:
            raise _reject("stale_timestamp", request_id)


def _decode_payload(raw_body: bytes) -> Any:
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


@router.post("/payment", response_model=WebhookAcceptedResponse)
async def ingest_payment_webhook(request: Request):
    req_id = _request_id(request)
    raw_body = await request.body()
    incr_metric("webhook.events.received")
    _verify_signature_or_raise(raw_body, request.headers.get(SIGNATURE_HEADER), req_id)

    payload = _decode_payload(raw_body)
    if isinstance(payload, dict):
        event_type = normalize_event_type(EVENT_TYPE.first(payload)) or "unknown"
        event_id = EVENT_ID.first(payload)
        transaction_id = TRANSACTION_ID.first({"payload": payload})
        stored_payload: Any = payload
    else:
        # Signed but unreadable: keep the raw text so nothing the processor sent is lost.
        event_type = "unparseable"
        event_id = None
        transaction_id = None
        stored_payload = raw_body.decode("utf-8", errors="replace")

    stored = webhook_mirror.record_event(
        event_id=event_id,
        event_type=event_type,
        payload=stored_payload,
        request_id=req_id,
    )
    if stored:
        incr_metric("webhook.events.accepted", event_type=event_type)
    log_event(
        "webhook_accepted",
        request_id=req_id,
        event_type=event_type,
        event_id=event_id,
        transaction_id=transaction_id,
        duplicate=not stored,
    )
    return WebhookAcceptedResponse(
        event_type=event_type,
        transaction_id=transaction_id,
        duplicate=not stored,
    )
