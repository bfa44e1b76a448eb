"""
Authentication endpoints.

POST /signup   — create company + OWNER user, return tokens
POST /login    — email/password → tokens (also sets the access_token cookie)
POST /refresh  — refresh token → new access token
POST /logout   — clear the cookie
GET  /me       — current user
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.config import settings
from ecocomply.database import get_db
from ecocomply.dependencies.auth import (
    ACCESS_COOKIE,
    CurrentUser,
    client_ip,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    hash_password,
    verify_password,
)
from ecocomply.models.database_models import Company, User, UserRole
from ecocomply.models.schemas import LoginRequest, RefreshRequest, SignupRequest, UserOut
from ecocomply.services.rate_limiter import rate_limiter
from ecocomply.utils.api_response import ApiError, success_response

logger = logging.getLogger(__name__)

router = APIRouter()


def _token_payload(user: User) -> dict:
    return {
        "access_token": create_access_token(user),
        "refresh_token": create_refresh_token(user),
        "token_type": "bearer",
        "expires_in": settings.JWT_EXPIRY_MINUTES * 60,
        "user": UserOut.model_validate(user).model_dump(),
    }


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    request: Request,
    body: SignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a company and its first (OWNER) user."""
    await rate_limiter.check(f"ip:{client_ip(request)}")
    email = body.email.lower()

    existing = await db.execute(select(User.id).where(func.lower(User.email) == email))
    if existing.scalar_one_or_none() is not None:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "An account with this email already exists",
            details={"field": "email"},
        )

    company = Company(name=body.company_name.strip())
    db.add(company)
    await db.flush()

    user = User(
        company_id=company.id,
        email=email,
        full_name=body.full_name.strip(),
        password_hash=hash_password(body.password),
        roles=[UserRole.OWNER.value],
        is_active=True,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("Signup: user=%s company=%s", user.id, company.id)
    return success_response(request, _token_payload(user), status.HTTP_201_CREATED)


@router.post("/login")
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    await rate_limiter.check(f"ip:{client_ip(request)}")

    result = await db.execute(select(User).where(func.lower(User.email) == body.email.lower()))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active or not verify_password(body.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    payload = _token_payload(user)
    response = success_response(request, payload)
    response.set_cookie(
        ACCESS_COOKIE,
        payload["access_token"],
        max_age=settings.JWT_EXPIRY_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=settings.APP_URL.startswith("https://"),
    )
    return response


@router.post("/refresh")
async def refresh(
    request: Request,
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    claims = decode_token(body.refresh_token, expected_type="refresh")
    user = await db.get(User, claims["sub"])
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return success_response(request, {
        "access_token": create_access_token(user),
        "token_type": "bearer",
        "expires_in": settings.JWT_EXPIRY_MINUTES * 60,
    })


@router.post("/logout")
async def logout(request: Request, user: CurrentUser = Depends(get_current_user)):
    response = success_response(request, {"message": "Logged out"})
    response.delete_cookie(ACCESS_COOKIE)
    return response


@router.get("/me")
async def me(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    row = await db.get(User, user.id)
    return success_response(request, UserOut.model_validate(row).model_dump())
