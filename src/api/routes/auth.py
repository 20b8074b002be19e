"""Authentication helpers and routes.

Tokens are issued by the external identity service. This module verifies the
bearer JWT on each request and exposes the caller's uid to the routes.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import pytz
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY
from schemas.user import AuthenticatedUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

# HTTP Bearer token security
security = HTTPBearer()


def create_access_token(
    uid: str, email: Optional[str] = None, expires_delta: Optional[timedelta] = None
) -> str:
    """Create a JWT access token.

    Args:
        uid: Subject of the token.
        email: Optional email claim.
        expires_delta: Optional expiration time delta.

    Returns:
        Encoded JWT token string.
    """
    expire = datetime.now(pytz.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": uid, "exp": expire}
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Verify JWT token from Authorization header.

    Args:
        credentials: HTTP Bearer token credentials.

    Returns:
        Decoded token payload.

    Raises:
        HTTPException: If token is invalid or expired.
    """
    try:
        payload = jwt.decode(
            credentials.credentials, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM]
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return payload


def get_current_user(token_payload: dict = Depends(verify_token)) -> AuthenticatedUser:
    """Get the authenticated caller from the token payload."""
    return AuthenticatedUser(uid=token_payload["sub"], email=token_payload.get("email"))


@router.get("/me", response_model=AuthenticatedUser, summary="Current identity")
def me(current_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    return current_user
