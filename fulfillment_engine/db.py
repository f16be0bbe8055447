from __future__ import annotations

from typing import Any

from supabase import Client, create_client

from fulfillment_engine.config import settings
from fulfillment_engine.domain.errors import DatastoreError


supabase: Client = create_client(settings.supabase_url, settings.supabase_service_role_key)


def execute(query: Any, *, operation: str) -> Any:
    """Run a PostgREST query, wrapping driver failures in DatastoreError."""
    try:
        return query.execute()
    except Exception as exc:
        raise DatastoreError(operation, exc) from exc


def is_unique_violation(exc: BaseException) -> bool:
    # PostgREST reports unique violations as 23505 / "duplicate key value".
    cause = exc.__cause__ or exc
    if str(getattr(cause, "code", "") or "") == "23505":
        return True
    text = str(exc).lower()
    return "duplicate" in text or "unique" in text


def is_missing_column_error(exc: BaseException, column: str) -> bool:
    cause = exc.__cause__ or exc
    col = column.lower()
    combined = " ".join(
        str(getattr(cause, attr, "") or "").lower() for attr in ("message", "details", "hint")
    )
    combined = f"{combined} {str(cause).lower()}"
    if f'column "{col}"' in combined or f".{col} does not exist" in combined:
        return True
    return str(getattr(cause, "code", "") or "") == "42703" and col in combined
