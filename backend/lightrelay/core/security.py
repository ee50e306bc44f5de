"""
Security utilities for authenticating relay callers.

Callers present a JWT bearer token; the `sub` claim is the caller id that
gets stamped on every command as `createdBy`.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .config import settings
from .errors import AuthError

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Authenticated identity of a command producer"""
    uid: str
    name: Optional[str] = None


# ==================== JWT Token Generation ====================

def create_access_token(
    uid: str,
    expires_delta: Optional[timedelta] = None,
    secret_key: Optional[str] = None,
    extra_claims: Optional[Dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token for a caller.

    Args:
        uid: Caller id, stored in the `sub` claim
        expires_delta: Optional custom expiration time
        secret_key: Optional custom secret key (defaults to settings.JWT_SECRET_KEY)
        extra_claims: Additional claims such as `name`

    Returns:
        Encoded JWT token string

    Example:
        >>> token = create_access_token("host-1")
        >>> decode_token(token)["sub"]
        'host-1'
    """
    to_encode: Dict[str, Any] = dict(extra_claims or {})

    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta

    to_encode.update({"sub": uid, "exp": expire, "type": "access"})

    secret = secret_key or settings.JWT_SECRET_KEY
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


# ==================== JWT Token Validation ====================

def decode_token(token: str, secret_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload dictionary if valid, None if invalid or expired
    """
    try:
        secret = secret_key or settings.JWT_SECRET_KEY
        return jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def caller_from_token(token: Optional[str], secret_key: Optional[str] = None) -> Caller:
    """
    Resolve a bearer token to a Caller.

    Raises:
        AuthError: Token missing, invalid, expired, or without a subject
    """
    if not token:
        raise AuthError("User must be authenticated")

    payload = decode_token(token, secret_key)
    if payload is None or payload.get("type") != "access":
        raise AuthError("Invalid or expired token")

    uid = payload.get("sub")
    if not uid:
        raise AuthError("Token has no subject")

    return Caller(uid=uid, name=payload.get("name"))


async def get_current_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Caller:
    """FastAPI dependency resolving the authenticated caller"""
    app_settings = getattr(request.app.state, "settings", settings)
    token = credentials.credentials if credentials else None
    return caller_from_token(token, secret_key=app_settings.JWT_SECRET_KEY)


__all__ = [
    "Caller",
    "create_access_token",
    "decode_token",
    "caller_from_token",
    "get_current_caller",
]
