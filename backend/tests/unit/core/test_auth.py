"""
Tests for JWT token utilities.

WHY: Billing endpoints trust the user_id inside the bearer token, so:
1. Tokens must carry the user data and standard claims
2. Expired tokens must be distinguishable from forged ones
3. Tokens signed with another secret or algorithm must be rejected
"""

import pytest
from datetime import datetime, timedelta, timezone
from jose import jwt

from formbuilder.core.auth import create_access_token, verify_token
from formbuilder.core.config import settings
from formbuilder.core.exceptions import TokenExpiredError, TokenInvalidError


def _decode(token: str) -> dict:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


class TestTokenCreation:
    """Test JWT token creation."""

    def test_create_access_token_with_user_data(self):
        token = create_access_token({"user_id": 7, "email": "owner@example.com"})

        assert isinstance(token, str)
        decoded = _decode(token)
        assert decoded["user_id"] == 7
        assert decoded["email"] == "owner@example.com"

    def test_create_access_token_includes_standard_claims(self):
        decoded = _decode(create_access_token({"user_id": 1}))

        assert "exp" in decoded
        assert "iat" in decoded
        assert "nbf" in decoded

    def test_create_access_token_expiration_time(self):
        decoded = _decode(create_access_token({"user_id": 1}))

        expected_exp = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)
        actual_exp = datetime.fromtimestamp(decoded["exp"], tz=timezone.utc)

        # Allow 10 second tolerance for test execution time
        assert abs((expected_exp - actual_exp).total_seconds()) < 10

    def test_create_access_token_custom_expiration(self):
        expires_delta = timedelta(minutes=30)
        decoded = _decode(create_access_token({"user_id": 1}, expires_delta=expires_delta))

        expected_exp = datetime.now(timezone.utc) + expires_delta
        actual_exp = datetime.fromtimestamp(decoded["exp"], tz=timezone.utc)

        assert abs((expected_exp - actual_exp).total_seconds()) < 10

    def test_input_dict_not_mutated(self):
        data = {"user_id": 1}
        create_access_token(data)

        assert data == {"user_id": 1}


class TestTokenVerification:
    """Test JWT token verification."""

    def test_verify_token_valid(self):
        payload = verify_token(create_access_token({"user_id": 1}))

        assert payload["user_id"] == 1

    def test_verify_token_expired(self):
        token = create_access_token({"user_id": 1}, expires_delta=timedelta(seconds=-1))

        with pytest.raises(TokenExpiredError) as exc_info:
            verify_token(token)

        assert "expired" in str(exc_info.value).lower()
        assert exc_info.value.status_code == 401

    def test_verify_token_invalid_signature(self):
        token = jwt.encode({"user_id": 1}, "wrong-secret", algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(TokenInvalidError) as exc_info:
            verify_token(token)

        assert "invalid" in str(exc_info.value).lower()

    def test_verify_token_malformed(self):
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.valid.jwt.token")

    def test_verify_token_wrong_algorithm(self):
        token = jwt.encode({"user_id": 1}, settings.JWT_SECRET, algorithm="HS512")

        with pytest.raises(TokenInvalidError):
            verify_token(token)

    def test_token_signature_prevents_tampering(self):
        """A payload edited after signing must not verify."""
        header, _, signature = create_access_token({"user_id": 1}).split(".")
        forged_payload = jwt.encode({"user_id": 2}, "other", algorithm="HS256").split(".")[1]

        with pytest.raises(TokenInvalidError):
            verify_token(f"{header}.{forged_payload}.{signature}")
