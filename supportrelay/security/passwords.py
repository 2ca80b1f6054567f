"""Admin password hashing backed by Passlib (Argon2)."""

from __future__ import annotations

from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Return an Argon2 hash for ``password``."""

    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    return _pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    if not password or not hashed_password:
        return False
    return _pwd_context.verify(password, hashed_password)


def needs_rehash(hashed_password: str) -> bool:
    """Whether ``hashed_password`` was produced with outdated parameters."""

    return _pwd_context.needs_update(hashed_password)


__all__ = ["hash_password", "needs_rehash", "verify_password"]
