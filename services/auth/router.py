"""
services/auth/router.py
Admin authentication: credential login → JWT issue → verify → logout.
The admin identity comes from settings (ADMIN_EMAIL / ADMIN_PASSWORD_HASH).
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.middleware.auth import ADMIN_ROLE, TokenData, require_admin
from shared.schemas.schemas import LoginRequest, MessageResponse, TokenResponse, TokenVerifyResponse
from shared.utils.security import create_access_token, get_token_remaining_ttl, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=TokenResponse, summary="Admin login")
async def login(data: LoginRequest):
    email = str(data.email).lower()
    if email != settings.ADMIN_EMAIL.lower() or not verify_password(data.password, settings.ADMIN_PASSWORD_HASH):
        logger.warning(f"Failed admin login for {email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    access_token, _ = create_access_token(subject=email, role=ADMIN_ROLE, email=email)
    logger.info(f"Admin {email} logged in")
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/verify", response_model=TokenVerifyResponse, summary="Verify admin token")
async def verify(token_data: TokenData = Depends(require_admin)):
    return TokenVerifyResponse(
        email=token_data.email,
        role=token_data.role,
        expires_at=datetime.fromtimestamp(token_data.exp, tz=timezone.utc),
    )


@router.post("/logout", response_model=MessageResponse, summary="Logout admin")
async def logout(
    token_data: TokenData = Depends(require_admin),
    redis=Depends(get_redis),
):
    """Add the current token's JTI to the Redis deny-list until it expires."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)
    return MessageResponse(message="Logged out successfully")
