"""Shopper identity tokens.

The storefront issues HS256 tokens whose ``sub`` claim is the shopper id
(usually the shopper's e-mail). The review API only reads the identity;
issuing tokens here exists for the storefront stub and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError

from reviews_ratings.lib.settings import settings


TOKEN_EXPIRY_HOURS = 24


def create_access_token(
    shopper_id: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed identity token for a shopper.

    Args:
        shopper_id: Shopper identity (stored in 'sub' claim)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=TOKEN_EXPIRY_HOURS)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": shopper_id,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode an identity token.

    Raises:
        InvalidTokenError: If token is invalid, expired, or signature doesn't match
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


def get_shopper_from_token(token: str) -> str:
    """Return the shopper id carried by a token.

    Raises:
        InvalidTokenError: If the token is invalid or has no subject
    """
    payload = verify_token(token)
    shopper_id = payload.get("sub")
    if not shopper_id:
        raise InvalidTokenError("Token has no subject")
    return shopper_id
