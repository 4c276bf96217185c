"""
User Data Access Object.

WHY: UserDAO is the only place the customer -> Stripe customer pointer is
read or written. The billing services never query the users table directly.
"""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formbuilder.dao.base import BaseDAO
from formbuilder.models.user import User
from formbuilder.core.exceptions import ResourceNotFoundError


class UserDAO(BaseDAO[User]):
    """Data Access Object for User model."""

    def __init__(self, model: type[User], session: AsyncSession):
        """Initialize UserDAO with model and session."""
        super().__init__(model, session)

    async def get_customer_billing_ref(self, user_id: int) -> Optional[str]:
        """
        Get the Stripe customer ID for a user.

        WHY: A missing user and a user who never checked out are treated the
        same way by callers (free plan), so both return None.

        Args:
            user_id: User ID

        Returns:
            Stripe customer ID, or None if the user has none
        """
        result = await self.session.execute(
            select(User.stripe_customer_id).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def set_customer_billing_ref(self, user_id: int, stripe_customer_id: str) -> User:
        """
        Attach a Stripe customer ID to a user.

        Args:
            user_id: User ID
            stripe_customer_id: Stripe customer ID (cus_xxx)

        Returns:
            Updated user

        Raises:
            ResourceNotFoundError: If the user doesn't exist
        """
        user = await self.update(user_id, stripe_customer_id=stripe_customer_id)
        if user is None:
            raise ResourceNotFoundError(
                message="User not found",
                resource_type="User",
                resource_id=user_id,
            )
        return user
