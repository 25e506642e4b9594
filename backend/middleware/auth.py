"""
Bearer-token authentication.

Access tokens are short-lived HS256 JWTs:
    sub  - user id (string)
    role - "customer" | "admin"

Issuing tokens (login/OTP) lives outside this service; issue_access_token()
is kept for operators and tests.
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header

from config import settings
from database import get_session_factory
from db_models import User
from domain.enums import UserRole
from domain.errors import DomainError, PermissionDeniedError, UnauthorizedError

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require_secret() -> str:
    if not settings.jwt_secret:
        raise DomainError("Server auth misconfigured (JWT secret missing).", status_code=500)
    return settings.jwt_secret


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            _require_secret(),
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Access token expired.")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid access token.")


def issue_access_token(*, user_id: int, role: str) -> str:
    now = _now_utc()
    exp = now.replace(microsecond=0) + timedelta(minutes=settings.jwt_access_ttl_minutes)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, _require_secret(), algorithm="HS256")


async def require_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    session_factory=Depends(get_session_factory),
) -> User:
    """Resolve the bearer token to an existing user."""
    token = _parse_bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Authentication required. Provide Authorization: Bearer <token>.")

    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid access token subject.")

    async with session_factory() as db:
        user = await db.get(User, user_id)
    if user is None:
        logger.warning(f"Token for unknown user {user_id}")
        raise UnauthorizedError("User not found for access token.")
    return user


async def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("Admin role required for this endpoint.")
    return user
