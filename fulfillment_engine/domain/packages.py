from __future__ import annotations

import math
from typing import Any, Final

MIN_LEADS_PER_REQUEST: Final[int] = 1
MAX_LEADS_PER_REQUEST: Final[int] = 1000

PACKAGE_LEAD_COUNTS: Final[dict[str, int]] = {
    "standard": 30,
    "growth": 90,
    "pro": 180,
    "enterprise": 280,
}


def parse_requested_leads(value: Any) -> int | None:
    """Coerce a client-supplied lead count; fractional values are floored.

    Returns None when the value is absent, raises ValueError when it is not a number.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("lead count must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("lead count must be a number") from exc
    if not math.isfinite(parsed):
        raise ValueError("lead count must be finite")
    return math.floor(parsed)


def resolve_lead_count(requested: int | None, package_id: str | None, default: int) -> int:
    if requested is not None:
        return requested
    if package_id and package_id in PACKAGE_LEAD_COUNTS:
        return PACKAGE_LEAD_COUNTS[package_id]
    return default


def is_valid_lead_count(count: int) -> bool:
    return MIN_LEADS_PER_REQUEST <= count <= MAX_LEADS_PER_REQUEST
