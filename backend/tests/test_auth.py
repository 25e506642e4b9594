"""
Tests for bearer-token authentication.

Tests: token issue/decode, require_user, require_admin.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from config import settings
from domain.errors import PermissionDeniedError, UnauthorizedError
from middleware.auth import decode_access_token, issue_access_token, require_admin, require_user


def _token(**overrides) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": "1",
        "role": "customer",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=5)).timestamp()),
    }
    payload.update(overrides)
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


class TestAccessTokens:

    @pytest.mark.unit
    def test_issued_token_decodes(self):
        payload = decode_access_token(issue_access_token(user_id=42, role="admin"))
        assert payload["sub"] == "42"
        assert payload["role"] == "admin"

    @pytest.mark.unit
    def test_expired_token(self):
        past = int((datetime.now(timezone.utc) - timedelta(minutes=1)).timestamp())
        with pytest.raises(UnauthorizedError) as exc_info:
            decode_access_token(_token(exp=past))
        assert "expired" in exc_info.value.message

    @pytest.mark.unit
    def test_wrong_issuer(self):
        with pytest.raises(UnauthorizedError):
            decode_access_token(_token(iss="someone-else"))

    @pytest.mark.unit
    def test_wrong_signature(self):
        forged = jwt.encode({"sub": "1", "iss": settings.jwt_issuer}, "not-the-real-secret-but-long-enough-for-hs256", algorithm="HS256")
        with pytest.raises(UnauthorizedError):
            decode_access_token(forged)


class TestRequireUser:

    @pytest.mark.integration
    async def test_resolves_user(self, session_factory, customer):
        token = issue_access_token(user_id=customer.id, role=customer.role)
        user = await require_user(authorization=f"Bearer {token}", session_factory=session_factory)
        assert user.id == customer.id

    @pytest.mark.integration
    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer "])
    async def test_missing_or_malformed_header(self, session_factory, header):
        with pytest.raises(UnauthorizedError) as exc_info:
            await require_user(authorization=header, session_factory=session_factory)
        assert exc_info.value.status_code == 401

    @pytest.mark.integration
    async def test_non_numeric_subject(self, session_factory):
        with pytest.raises(UnauthorizedError):
            await require_user(authorization=f"Bearer {_token(sub='ana')}", session_factory=session_factory)

    @pytest.mark.integration
    async def test_unknown_user(self, session_factory):
        token = issue_access_token(user_id=9999, role="customer")
        with pytest.raises(UnauthorizedError):
            await require_user(authorization=f"Bearer {token}", session_factory=session_factory)


class TestRequireAdmin:

    @pytest.mark.unit
    async def test_admin_passes(self, admin):
        assert await require_admin(user=admin) is admin

    @pytest.mark.unit
    async def test_customer_is_forbidden(self, customer):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await require_admin(user=customer)
        assert exc_info.value.status_code == 403
