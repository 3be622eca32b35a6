"""JWT verification for API requests.

Tokens carry the Firebase user id in ``sub`` and the tenant in
``tenant_id``. They are issued by the identity layer in front of this
service; this module only verifies them.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.crm.config import get_settings

logger = logging.getLogger(__name__)


def decode_token(token: str) -> dict | None:
    """Decode a JWT without raising. Returns None when it does not verify."""
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        return None


def verify_token(token: str) -> dict:
    """Decode and validate a JWT access token.

    Args:
        token: The JWT string.

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401): If the token is invalid, expired, or has no subject.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_token(token)
    if payload is None or not payload.get("sub"):
        raise credentials_exception
    return payload


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None
