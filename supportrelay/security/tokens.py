"""Helpers for issuing and verifying widget and admin JWTs."""

from __future__ import annotations

import dataclasses
import datetime as dt
from functools import lru_cache
from typing import Any, TypedDict

import jwt

from ..config import get_settings

ISSUER = "supportrelay"


class TokenError(ValueError):
    """Raised when a token is malformed, expired or of the wrong type."""


@dataclasses.dataclass(frozen=True)
class JWTSettings:
    """Runtime configuration for issuing tokens."""

    secret: str
    algorithm: str = "HS256"
    chat_token_ttl_seconds: int = 60 * 60 * 24
    admin_token_ttl_seconds: int = 60 * 60 * 24 * 7


class ChatTokenClaims(TypedDict):
    sub: str
    thread_id: str
    username: str
    type: str


class AdminTokenClaims(TypedDict):
    sub: str
    email: str
    role: str
    type: str


@lru_cache(maxsize=1)
def get_jwt_settings() -> JWTSettings:
    settings = get_settings()
    return JWTSettings(
        secret=settings.jwt_secret,
        chat_token_ttl_seconds=settings.chat_token_ttl_seconds,
        admin_token_ttl_seconds=settings.admin_token_ttl_seconds,
    )


def reset_jwt_settings_cache() -> None:
    """Clear cached JWT settings; useful in tests when env vars change."""

    get_jwt_settings.cache_clear()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _encode(
    claims: dict[str, Any], ttl_seconds: int, settings: JWTSettings
) -> tuple[str, dt.datetime]:
    now = _utcnow()
    expires_at = now + dt.timedelta(seconds=ttl_seconds)
    payload = {
        **claims,
        "iss": ISSUER,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, settings.secret, algorithm=settings.algorithm)
    return str(token), expires_at


def create_chat_token(
    customer_id: str,
    thread_id: str,
    username: str | None,
    *,
    settings: JWTSettings | None = None,
) -> str:
    """Issue the ``ws_token`` handed to the widget when a chat starts."""

    settings = settings or get_jwt_settings()
    token, _ = _encode(
        {
            "sub": customer_id,
            "thread_id": thread_id,
            "username": username or "Customer",
            "type": "chat",
        },
        settings.chat_token_ttl_seconds,
        settings,
    )
    return token


def create_admin_token(
    admin_id: str, email: str, *, settings: JWTSettings | None = None
) -> tuple[str, dt.datetime]:
    settings = settings or get_jwt_settings()
    return _encode(
        {"sub": admin_id, "email": email, "role": "admin", "type": "admin"},
        settings.admin_token_ttl_seconds,
        settings,
    )


def decode_token(
    token: str, expected_type: str, *, settings: JWTSettings | None = None
) -> dict[str, Any]:
    """Validate ``token`` and return its claims.

    Raises:
        TokenError: If the signature, expiry, issuer or token type is invalid.
    """

    settings = settings or get_jwt_settings()
    try:
        claims = jwt.decode(
            token,
            settings.secret,
            algorithms=[settings.algorithm],
            issuer=ISSUER,
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token.") from exc
    if claims.get("type") != expected_type:
        raise TokenError(f"A {expected_type} token is required.")
    return claims


def decode_chat_token(token: str, *, settings: JWTSettings | None = None) -> ChatTokenClaims:
    claims = decode_token(token, "chat", settings=settings)
    if not claims.get("thread_id"):
        raise TokenError("Chat token is not bound to a thread.")
    return ChatTokenClaims(
        sub=claims["sub"],
        thread_id=claims["thread_id"],
        username=claims.get("username", "Customer"),
        type="chat",
    )


def decode_admin_token(token: str, *, settings: JWTSettings | None = None) -> AdminTokenClaims:
    claims = decode_token(token, "admin", settings=settings)
    return AdminTokenClaims(
        sub=claims["sub"],
        email=claims.get("email", ""),
        role=claims.get("role", "admin"),
        type="admin",
    )


__all__ = [
    "AdminTokenClaims",
    "ChatTokenClaims",
    "JWTSettings",
    "TokenError",
    "create_admin_token",
    "create_chat_token",
    "decode_admin_token",
    "decode_chat_token",
    "decode_token",
    "get_jwt_settings",
    "reset_jwt_settings_cache",
]
