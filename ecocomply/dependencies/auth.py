"""
Authentication dependencies for FastAPI routes.

Access tokens are HS256 JWTs read from ``Authorization: Bearer <token>``,
falling back to the ``access_token`` cookie set by /api/v1/auth/login.
Roles are re-read from the users table on every request so revocations
take effect before the token expires.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import bcrypt
import jwt as pyjwt
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.config import settings
from ecocomply.database import get_db
from ecocomply.models.database_models import User, UserRole
from ecocomply.services.rate_limiter import rate_limiter
from ecocomply.utils.helpers import utcnow

logger = logging.getLogger(__name__)

ALL_ROLES = (UserRole.OWNER.value, UserRole.ADMIN.value, UserRole.STAFF.value)
MANAGER_ROLES = (UserRole.OWNER.value, UserRole.ADMIN.value)

ACCESS_COOKIE = "access_token"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def _encode(user: User, token_type: str, lifetime: timedelta) -> str:
    now = utcnow()
    payload = {
        "sub": user.id,
        "email": user.email,
        "company_id": user.company_id,
        "roles": list(user.roles or []),
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
    }
    return pyjwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user: User) -> str:
    return _encode(user, "access", timedelta(minutes=settings.JWT_EXPIRY_MINUTES))


def create_refresh_token(user: User) -> str:
    return _encode(user, "refresh", timedelta(days=settings.REFRESH_TOKEN_EXPIRY_DAYS))


def decode_token(token: str, expected_type: str = "access") -> Dict[str, Any]:
    """Decode and validate a JWT.  Raises 401 on any failure."""
    try:
        payload = pyjwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
    except pyjwt.InvalidTokenError:
        # ExpiredSignatureError is a subclass
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class CurrentUser:
    id: str
    email: str
    company_id: str
    roles: List[str]
    full_name: Optional[str] = None

    def has_any_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)


def _token_from_request(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_COOKIE) or None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Authenticate the request.  Raises 401 if the token is missing or invalid."""
    token = _token_from_request(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    payload = decode_token(token, expected_type="access")

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    await rate_limiter.check(f"user:{user.id}")

    current = CurrentUser(
        id=user.id,
        email=user.email,
        company_id=user.company_id,
        roles=list(user.roles or []),
        full_name=user.full_name,
    )
    request.state.user = current
    return current


def require_role(*roles: str) -> Callable:
    """
    Dependency factory: the caller must hold at least one of *roles*.

    Usage:
        user: CurrentUser = Depends(require_role(*MANAGER_ROLES))
    """

    async def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.has_any_role(*roles):
            logger.info(
                "Forbidden: user=%s roles=%s required=%s", user.id, user.roles, roles
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker
