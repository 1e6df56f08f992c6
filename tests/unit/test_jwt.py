"""Tests for auth provider token verification."""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from coachreflect.auth.jwt import create_access_token, verify_provider_token
from coachreflect.config import get_settings

USER_ID = uuid.UUID("5f0c6d1e-8a7b-4c3d-9e2f-0a1b2c3d4e5f")


def _encode(payload: dict, secret: str | None = None) -> str:
    settings = get_settings()
    return jwt.encode(payload, secret or settings.auth_jwt_secret, algorithm="HS256")


def _claims(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(USER_ID),
        "aud": "authenticated",
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(overrides)
    return claims


class TestVerifyProviderToken:
    def test_create_and_verify(self):
        token = create_access_token(USER_ID, email="coach@example.com")
        payload = verify_provider_token(token)
        assert payload["sub"] == str(USER_ID)
        assert payload["email"] == "coach@example.com"

    def test_expired_rejected(self):
        token = _encode(_claims(exp=datetime.now(timezone.utc) - timedelta(seconds=30)))
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_provider_token(token)

    def test_wrong_secret_rejected(self):
        with pytest.raises(jwt.InvalidTokenError):
            verify_provider_token(_encode(_claims(), secret="not-the-secret-at-all-0123456789"))

    def test_wrong_audience_rejected(self):
        with pytest.raises(jwt.InvalidTokenError):
            verify_provider_token(_encode(_claims(aud="anon")))

    def test_missing_subject_rejected(self):
        claims = _claims()
        del claims["sub"]
        with pytest.raises(jwt.InvalidTokenError):
            verify_provider_token(_encode(claims))

    def test_non_uuid_subject_rejected(self):
        with pytest.raises(jwt.InvalidTokenError, match="not a user id"):
            verify_provider_token(_encode(_claims(sub="12345")))

    def test_garbage_rejected(self):
        with pytest.raises(jwt.InvalidTokenError):
            verify_provider_token("not.a.jwt")
