from jose import jwt, JWTError
from fulfillment_engine.config import settings


def decode_access_token(token: str) -> dict | None:
    """Decode and validate an access token. Returns payload or None if invalid."""
    options = {} if settings.jwt_audience else {"verify_aud": False}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload
