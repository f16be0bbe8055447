"""Verification of payment processor webhook signatures.

The processor sends a header of the form ``ts=1700000000;h1=<hex>`` where
``h1`` is HMAC-SHA256 over ``"{ts}:{raw body}"`` keyed with the endpoint
secret.
"""
from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Iterable


def parse_signature_header(signature_header: str | None) -> dict[str, str]:
    if not signature_header:
        return {}
    parts: dict[str, str] = {}
    for segment in signature_header.split(";"):
        key, sep, value = segment.partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key and value:
            parts[key] = value
    return parts


def compute_signature(raw_body: bytes, ts: str, secret: str) -> str:
    signed_payload = f"{ts}:".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def constant_time_equal(a: str, b: str) -> bool:
    if len(a) != len(b):
        return False
    acc = 0
    for x, y in zip(a.encode("utf-8"), b.encode("utf-8")):
        acc |= x ^ y
    return acc == 0


def verify(raw_body: bytes, signature_header: str | None, secret: str | None) -> bool:
    if not secret:
        return False
    parts = parse_signature_header(signature_header)
    ts = parts.get("ts")
    h1 = parts.get("h1")
    if not ts or not h1:
        return False
    expected = compute_signature(raw_body, ts, secret)
    return constant_time_equal(expected, h1.lower())


def verify_any(raw_body: bytes, signature_header: str | None, secrets: Iterable[str | None]) -> bool:
    """Accept the delivery if any configured secret verifies it (key rotation)."""
    return any(verify(raw_body, signature_header, secret) for secret in secrets if secret)


def signature_age_seconds(signature_header: str | None, now: datetime | None = None) -> float | None:
    ts = parse_signature_header(signature_header).get("ts")
    if not ts or not ts.isdigit():
        return None
    current = now or datetime.now(timezone.utc)
    return abs(current.timestamp() - int(ts))
