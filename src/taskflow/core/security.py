"""Bearer token helpers.

Token issuance lives with the identity provider; the API only needs to decode
access tokens and map their subject onto a ``User``. ``create_access_token``
is provided for local tooling and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt

from .config import Settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    *,
    subject: str | int,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Return a signed access token for ``subject``."""

    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    payload: dict[str, Any] = {
        "sub": str(subject),
        "iat": now,
        "exp": now + expires_delta,
        "jti": str(uuid4()),
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict[str, Any]:
    """Decode and verify an access token, raising ``jose.JWTError`` on failure."""

    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError("Invalid token type.")
    return payload


__all__ = ["ACCESS_TOKEN_TYPE", "create_access_token", "decode_access_token"]
