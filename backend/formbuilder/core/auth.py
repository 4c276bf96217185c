"""
JWT token utilities.

WHY: Billing endpoints act on the authenticated user's own subscription, so
every request carries a signed bearer token identifying the user. Login and
registration live elsewhere; this module only issues and verifies tokens.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
from jose import jwt, JWTError

from formbuilder.core.config import settings
from formbuilder.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Token includes:
    - User data (user_id)
    - exp: Expiration time (default: JWT_EXPIRATION_MINUTES)
    - iat: Issued at time (for audit)
    - nbf: Not before time (prevents premature use)

    Args:
        data: User data to encode in token
        expires_delta: Optional custom expiration time

    Returns:
        JWT token string
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    to_encode.update(
        {
            "exp": expire,
            "iat": now,
            "nbf": now,
        }
    )

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload with user data

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is malformed or signature invalid
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )

    except jwt.ExpiredSignatureError:
        # WHY: Separate exception for expired tokens allows frontend
        # to trigger token refresh without full re-authentication
        raise TokenExpiredError(message="Token has expired")

    except JWTError as e:
        raise TokenInvalidError(
            message="Invalid token",
            error=str(e),
        )
