"""JWT-backed authentication dependencies for FastAPI routers."""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from .tokens import (
    AdminTokenClaims,
    ChatTokenClaims,
    TokenError,
    decode_admin_token,
    decode_chat_token,
)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token.strip()


async def get_chat_claims(request: Request) -> ChatTokenClaims:
    """Decode the widget's chat token from the ``Authorization`` header."""

    try:
        return decode_chat_token(_bearer_token(request))
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc


async def require_thread_access(
    thread_id: str, claims: ChatTokenClaims = Depends(get_chat_claims)
) -> ChatTokenClaims:
    """Ensure the chat token was issued for the ``thread_id`` path parameter."""

    if claims["thread_id"] != thread_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this thread",
        )
    return claims


async def require_admin(request: Request) -> AdminTokenClaims:
    try:
        claims = decode_admin_token(_bearer_token(request))
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc
    if claims["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role."
        )
    return claims


def get_db_session(request: Request) -> Iterator[Session]:
    """Yield a SQLAlchemy session from the factory stored on ``app.state``."""

    factory: sessionmaker[Session] | None = getattr(
        request.app.state, "session_factory", None
    )
    if factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="DATABASE_URL not configured",
        )
    session = factory()
    try:
        yield session
    finally:
        session.close()


__all__ = [
    "get_chat_claims",
    "get_db_session",
    "require_admin",
    "require_thread_access",
]
