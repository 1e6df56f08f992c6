"""
Verification of access tokens issued by the hosted auth provider.

The provider signs session tokens with a shared HS256 secret. The subject
claim is the user's UUID and the audience is ``authenticated``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from coachreflect.config import get_settings


def create_access_token(user_id: uuid.UUID, email: str | None = None, *, expires_minutes: int = 60) -> str:
    """
    Mint a token in the provider's format.

    Used by local tooling and tests; production tokens come from the provider.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "aud": settings.auth_jwt_audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def verify_provider_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a provider access token.

    Args:
        token: The encoded JWT string.

    Returns:
        Decoded payload dictionary; ``sub`` is guaranteed to be a UUID string.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no usable subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    try:
        uuid.UUID(str(payload["sub"]))
    except ValueError:
        msg = "Token subject is not a user id"
        raise jwt.InvalidTokenError(msg) from None

    return payload
