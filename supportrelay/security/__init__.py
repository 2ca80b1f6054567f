"""Security utilities exposed for convenience."""

from .auth import get_chat_claims, get_db_session, require_admin, require_thread_access
from .passwords import hash_password, needs_rehash, verify_password
from .tokens import (
    JWTSettings,
    TokenError,
    create_admin_token,
    create_chat_token,
    decode_admin_token,
    decode_chat_token,
    get_jwt_settings,
    reset_jwt_settings_cache,
)

__all__ = [
    "JWTSettings",
    "TokenError",
    "create_admin_token",
    "create_chat_token",
    "decode_admin_token",
    "decode_chat_token",
    "get_chat_claims",
    "get_db_session",
    "get_jwt_settings",
    "hash_password",
    "needs_rehash",
    "require_admin",
    "require_thread_access",
    "reset_jwt_settings_cache",
    "verify_password",
]
