"""
FastAPI dependencies for authentication and service wiring.

WHY: Dependencies provide reusable authentication logic that can be
injected into route handlers, ensuring consistent security across the API.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from formbuilder.core.auth import verify_token
from formbuilder.core.exceptions import (
    AuthenticationError,
    TokenExpiredError,
    TokenInvalidError,
)
from formbuilder.db.session import get_db
from formbuilder.models.user import User
from formbuilder.dao.user import UserDAO
from formbuilder.services.subscription_service import SubscriptionService


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user from JWT token.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Fetches user from database
    4. Ensures user still exists and is active

    Raises:
        AuthenticationError: If token is invalid, expired, or user not found
    """
    try:
        payload = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        raise AuthenticationError(
            message=e.message,
            status_code=e.status_code,
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError(message="Invalid token: missing user_id")

    # WHY: User data in token might be stale; always fetch current data
    user = await UserDAO(User, db).get_by_id(user_id)

    if not user:
        raise AuthenticationError(message="User not found", user_id=user_id)

    if not user.is_active:
        raise AuthenticationError(message="User account is inactive", user_id=user_id)

    return user


async def get_subscription_service(
    db: AsyncSession = Depends(get_db),
) -> SubscriptionService:
    """
    Build the subscription facade for one request.

    WHY: The facade needs the request's DB session to read the customer's
    billing pointer; the Stripe gateway and catalog are process singletons.
    """
    return SubscriptionService(db)
