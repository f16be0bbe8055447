from fulfillment_engine.auth.context import AuthContext
from fulfillment_engine.auth.dependencies import get_current_user, require_admin_secret

__all__ = [
    "AuthContext",
    "get_current_user",
    "require_admin_secret",
]
