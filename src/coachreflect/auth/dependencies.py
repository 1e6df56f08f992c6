"""FastAPI authentication dependencies."""

from __future__ import annotations

import secrets
import uuid

import jwt
from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.auth.jwt import verify_provider_token
from coachreflect.auth.service import ensure_profile
from coachreflect.config import get_settings
from coachreflect.database import get_session
from coachreflect.db.models import Profile

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Profile:
    """
    Verify the provider token and return the caller's profile.

    Raises 401 when the token is missing or invalid.
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = verify_provider_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"}) from e

    return await ensure_profile(db, uuid.UUID(payload["sub"]), payload.get("email"))


def is_valid_internal_token(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of the internal service token."""
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


async def require_internal_token(x_internal_token: str | None = Header(default=None)) -> None:
    """
    Guard for service-to-service routes.

    Returns 404 while no token is configured so the surface is invisible,
    and 403 for a wrong or missing token.
    """
    expected = get_settings().internal_api_token
    if not expected:
        raise HTTPException(status_code=404, detail="Not Found")
    if not is_valid_internal_token(x_internal_token, expected):
        raise HTTPException(status_code=403, detail="Invalid internal token")
