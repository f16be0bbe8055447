import hmac
from fastapi import Header, HTTPException, Request, status
from fulfillment_engine.auth.context import AuthContext
from fulfillment_engine.auth.jwt import decode_access_token
from fulfillment_engine.config import settings
from fulfillment_engine.observability import incr_metric, log_event


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def get_current_user(authorization: str | None = Header(None)) -> AuthContext:
    """Bearer access token auth for customer-facing endpoints."""
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    return AuthContext(user_id=str(payload["sub"]), email=payload.get("email"))


async def require_admin_secret(
    request: Request,
    x_admin_secret: str | None = Header(default=None),
) -> None:
    """Shared-secret gate for administrative batch endpoints."""
    request_id = getattr(request.state, "request_id", None)
    configured_secret = settings.admin_backfill_secret
    if not configured_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="admin secret is not configured",
        )
    if not x_admin_secret or not hmac.compare_digest(
        x_admin_secret.encode("utf-8"), configured_secret.encode("utf-8")
    ):
        incr_metric("admin.auth_failed")
        log_event("admin_auth_failed", request_id=request_id, path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid admin secret",
        )
