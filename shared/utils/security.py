"""
shared/utils/security.py
Admin session tokens and password checks.

Tokens are HS256 JWTs carrying a jti so logout can deny-list them in
Redis for whatever lifetime they have left.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_TYPE = "access"


def create_access_token(
    subject: str,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """Sign an admin session token. Returns ``(token, jti)``."""
    issued = datetime.now(timezone.utc)
    jti = uuid.uuid4().hex
    claims = {
        "sub": str(subject),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": TOKEN_TYPE,
    }
    claims.update(extra or {})
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM), jti


def verify_access_token(token: str) -> dict:
    """Decode a session token; raises JWTError when it is bad, expired or not a session token."""
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if claims.get("type") != TOKEN_TYPE:
        raise JWTError("Invalid token type")
    return claims


def get_token_remaining_ttl(payload: dict) -> int:
    """Seconds left before the token expires, never negative."""
    left = payload.get("exp", 0) - datetime.now(timezone.utc).timestamp()
    return max(0, int(left))


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    # An unset ADMIN_PASSWORD_HASH disables login
    return bool(hashed_password) and pwd_context.verify(plain_password, hashed_password)
