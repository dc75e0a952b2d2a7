"""
Authentication dependencies for FastAPI.

Resolves the acting user from the bearer token. Users live in the identity
service, so the token payload is trusted once its signature and expiry check
out.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from backend.app.core.exceptions import AuthenticationError
from backend.app.core.jwt import decode_access_token
from backend.app.services.audit import Actor

# HTTP Bearer security scheme; missing credentials are reported as ERR_AUTH_001
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Returns:
        Decoded token payload containing user information

    Raises:
        AuthenticationError: token missing, invalid, expired or without a user id
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    if not payload.get("user_id"):
        raise AuthenticationError("Invalid token payload")

    return payload


def actor_from(current_user: dict) -> Actor:
    return Actor.from_token(current_user)
