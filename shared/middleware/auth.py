"""
shared/middleware/auth.py
Route dependencies guarding the admin endpoints.

Clients book, pay and write in anonymously; everything else needs the
admin's bearer token.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from config.redis_client import RedisCache, get_redis
from shared.utils.security import verify_access_token

bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class TokenData:
    """Claims of a verified admin session."""

    def __init__(self, payload: dict):
        self.payload = payload
        self.subject: str = payload["sub"]
        self.role: str = payload["role"]
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.exp: int = payload["exp"]


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    redis=Depends(get_redis),
) -> TokenData:
    if credentials is None:
        raise _unauthorized("Authentication required")
    try:
        claims = verify_access_token(credentials.credentials)
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    jti = claims.get("jti")
    if jti and await RedisCache(redis).is_token_revoked(jti):
        raise _unauthorized("Token has been revoked")
    return TokenData(claims)


class RoleRequired:
    def __init__(self, *roles: str):
        self.roles = roles

    async def __call__(self, token_data: TokenData = Depends(get_token_data)) -> TokenData:
        if token_data.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This action is restricted to clinic staff",
            )
        return token_data


require_admin = RoleRequired(ADMIN_ROLE)
