"""
User model.

WHY: Users own forms and a paid plan. The only billing state kept locally is
the pointer to the Stripe customer; everything else about the subscription
is read from Stripe on each request.
"""

from sqlalchemy import Column, String, Boolean

from formbuilder.models.base import Base, TimestampMixin, PrimaryKeyMixin


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """User account with its Stripe customer reference."""

    __tablename__ = "users"

    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)

    # Billing
    # WHY: Nullable because the Stripe customer is created lazily at first
    # checkout. Users without one are on the free plan.
    stripe_customer_id = Column(String(255), nullable=True, index=True)

    # WHY: is_active allows soft-deletion of users without losing audit trail
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
