"""
Stripe billing gateway for subscription lifecycle operations.

WHAT: Thin wrapper around the Stripe SDK exposing the subscription and
subscription-schedule calls the billing services need, returning immutable
snapshots instead of raw StripeObjects.

WHY: Stripe is the source of truth for subscription state. Keeping every SDK
call in one class gives the services:
1. A single place where Stripe errors are translated into our exceptions
2. Typed snapshots (aware UTC datetimes, "" metadata read as absent)
3. A seam tests can replace with an in-memory fake

HOW: Uses the Stripe Python SDK's module-level resources
(stripe.Subscription, stripe.SubscriptionSchedule). Transient failures
(connection errors, rate limiting, Stripe 5xx) become
BillingPlatformUnavailableError so callers can ask the client to retry;
everything else becomes StripeError.

Design decisions:
- API version pinned in settings: period boundaries live on the subscription
- SDK-level retries (max_network_retries) are the only retry mechanism
- Snapshots are re-read on every request; nothing is cached in-process
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import stripe

from formbuilder.core.config import settings
from formbuilder.core.exceptions import BillingPlatformUnavailableError, StripeError

logger = logging.getLogger(__name__)


# ============================================================================
# Stripe Configuration
# ============================================================================


def configure_stripe() -> None:
    """
    Configure Stripe SDK with API key from settings.

    WHY: Must be called before any Stripe API operations.
    Centralized configuration ensures consistent setup.
    """
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES


# Initialize Stripe on module load
configure_stripe()


# Statuses that count as a subscription the customer still has
LIVE_STATUSES = ("active", "trialing", "past_due")

# Schedule statuses that still control the subscription
ATTACHED_SCHEDULE_STATUSES = ("not_started", "active")

# Metadata keys the billing services read and write
META_CUSTOMER_ID = "customerId"
META_PLAN = "planId"
META_INTERVAL = "interval"
META_SCHEDULED_PLAN = "scheduledPlanId"
META_SCHEDULED_INTERVAL = "scheduledInterval"
META_SCHEDULED_DATE = "scheduledChangeDate"


# ============================================================================
# Helpers
# ============================================================================


def _value(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a StripeObject (or plain dict), treating null as missing."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _ref(obj: Any) -> Optional[str]:
    """ID of a field that is either an ID string or an expanded object."""
    if obj is None or isinstance(obj, str):
        return obj
    return _value(obj, "id")


def _as_dict(obj: Any) -> Dict[str, str]:
    if obj is None:
        return {}
    return {str(k): "" if v is None else str(v) for k, v in dict(obj).items()}


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Unix seconds from Stripe -> aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def to_timestamp(value: datetime) -> int:
    """Aware datetime -> Unix seconds for Stripe."""
    return int(value.timestamp())


# ============================================================================
# Data Classes
# ============================================================================


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """
    Represents a Stripe subscription at the moment it was read.

    WHAT: Immutable view of the fields the lifecycle logic depends on.

    WHY: Stripe state changes asynchronously; services make every decision
    against one consistent snapshot and re-read after mutating.
    """

    id: str
    """Stripe subscription ID (sub_xxx)."""

    customer_id: str
    """Stripe customer ID (cus_xxx)."""

    status: str
    """trialing, active, past_due, canceled, or any other Stripe status."""

    current_period_start: datetime
    current_period_end: datetime

    price_id: Optional[str] = None
    """Price of the first (only) subscription item."""

    item_id: Optional[str] = None
    """Subscription item ID (si_xxx), needed to swap the price."""

    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    schedule_id: Optional[str] = None
    """Attached subscription schedule (sub_sched_xxx), if any."""

    metadata: Dict[str, str] = field(default_factory=dict)

    def meta(self, key: str) -> Optional[str]:
        """Metadata value, with Stripe's "" unset convention read as None."""
        value = self.metadata.get(key)
        return value or None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def has_scheduled_change(self) -> bool:
        return bool(self.meta(META_SCHEDULED_PLAN) or self.meta(META_SCHEDULED_INTERVAL))


@dataclass(frozen=True)
class SchedulePhase:
    """One phase of a subscription schedule."""

    price_id: Optional[str]
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    trial_end: Optional[datetime] = None

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"items": [{"price": self.price_id, "quantity": 1}]}
        if self.start_date is not None:
            params["start_date"] = to_timestamp(self.start_date)
        if self.end_date is not None:
            params["end_date"] = to_timestamp(self.end_date)
        if self.trial_end is not None:
            params["trial_end"] = to_timestamp(self.trial_end)
        return params


@dataclass(frozen=True)
class ScheduleSnapshot:
    """
    Represents a Stripe subscription schedule.

    WHY: A deferred change is a two-phase schedule; the first phase boundary
    is the pivot date and the second phase carries the target price.
    """

    id: str
    subscription_id: Optional[str]
    status: str
    phases: Tuple[SchedulePhase, ...] = ()
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_attached(self) -> bool:
        return self.status in ATTACHED_SCHEDULE_STATUSES

    @property
    def trial_end(self) -> Optional[datetime]:
        """trial_end carried on the first phase."""
        return self.phases[0].trial_end if self.phases else None

    @property
    def pivot(self) -> Optional[datetime]:
        """Date the second phase takes over, if the schedule has one."""
        if len(self.phases) < 2:
            return None
        return self.phases[1].start_date or self.phases[0].end_date

    @property
    def target_price_id(self) -> Optional[str]:
        return self.phases[1].price_id if len(self.phases) >= 2 else None


@dataclass(frozen=True)
class SubscriptionUpdate:
    """
    A single subscription update request.

    WHY: Price item, metadata, trial_end, and cancellation flag are always
    sent in one Stripe call so a failure can't leave metadata contradicting
    the live price.
    """

    price_id: Optional[str] = None
    item_id: Optional[str] = None
    proration_behavior: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    reset_billing_anchor: bool = False

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.price_id is not None:
            params["items"] = [{"id": self.item_id, "price": self.price_id}]
        if self.proration_behavior is not None:
            params["proration_behavior"] = self.proration_behavior
        if self.metadata is not None:
            params["metadata"] = dict(self.metadata)
        if self.trial_end is not None:
            params["trial_end"] = to_timestamp(self.trial_end)
        if self.cancel_at_period_end is not None:
            params["cancel_at_period_end"] = self.cancel_at_period_end
        if self.reset_billing_anchor:
            params["billing_cycle_anchor"] = "now"
        return params


def subscription_from_stripe(sub: Any) -> SubscriptionSnapshot:
    """Build a snapshot from a Stripe Subscription object."""
    items = _value(_value(sub, "items"), "data", [])
    item = items[0] if items else None
    price = _value(item, "price")

    return SubscriptionSnapshot(
        id=sub["id"],
        customer_id=_ref(_value(sub, "customer")),
        status=_value(sub, "status", ""),
        current_period_start=from_timestamp(_value(sub, "current_period_start")),
        current_period_end=from_timestamp(_value(sub, "current_period_end")),
        price_id=_ref(price),
        item_id=_value(item, "id"),
        trial_end=from_timestamp(_value(sub, "trial_end")),
        cancel_at_period_end=bool(_value(sub, "cancel_at_period_end", False)),
        schedule_id=_ref(_value(sub, "schedule")),
        metadata=_as_dict(_value(sub, "metadata")),
    )


def schedule_from_stripe(schedule: Any) -> ScheduleSnapshot:
    """Build a snapshot from a Stripe SubscriptionSchedule object."""
    phases = []
    for phase in _value(schedule, "phases", []):
        phase_items = _value(phase, "items", [])
        price = _value(phase_items[0], "price") if phase_items else None
        phases.append(
            SchedulePhase(
                price_id=_ref(price),
                start_date=from_timestamp(_value(phase, "start_date")),
                end_date=from_timestamp(_value(phase, "end_date")),
                trial_end=from_timestamp(_value(phase, "trial_end")),
            )
        )

    return ScheduleSnapshot(
        id=schedule["id"],
        subscription_id=_ref(_value(schedule, "subscription")),
        status=_value(schedule, "status", ""),
        phases=tuple(phases),
        metadata=_as_dict(_value(schedule, "metadata")),
    )


# ============================================================================
# Gateway
# ============================================================================


class StripeBillingGateway:
    """
    Gateway for Stripe subscription and schedule operations.

    WHAT: Every Stripe call the billing services make goes through here.

    HOW: Uses Stripe Python SDK with error translation and structured
    logging for all billing operations.
    """

    def __init__(self, api_key: Optional[str] = None):
        """
        Initialize the gateway.

        Args:
            api_key: Optional Stripe API key (defaults to settings)
        """
        if api_key:
            stripe.api_key = api_key

    def _translate(self, e: stripe.StripeError, message: str, **context: Any) -> StripeError:
        """
        Map an SDK error onto our exception hierarchy.

        WHY: Connection failures, rate limiting, and Stripe-side 5xx are
        retryable and must not be reported as a permanent payment error.
        """
        if isinstance(e, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
            logger.error(f"Stripe unavailable: {e}", extra=context)
            return BillingPlatformUnavailableError(stripe_error=str(e), **context)

        logger.error(f"{message}: {e}", extra=context)
        return StripeError(message=message, stripe_error=str(e), **context)

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def list_subscriptions(self, customer_id: str) -> List[SubscriptionSnapshot]:
        """
        List a customer's subscriptions in every status.

        Raises:
            StripeError: If Stripe API call fails
        """
        try:
            result = stripe.Subscription.list(
                customer=customer_id,
                status="all",
                limit=settings.STRIPE_SUBSCRIPTION_LOOKUP_LIMIT,
            )
        except stripe.StripeError as e:
            raise self._translate(
                e, "Failed to list subscriptions", stripe_customer_id=customer_id
            )

        return [subscription_from_stripe(sub) for sub in _value(result, "data", [])]

    async def find_live_subscription(self, customer_id: str) -> Optional[SubscriptionSnapshot]:
        """
        Find the customer's live subscription.

        WHY: Stripe lists newest first, so the first active, trialing, or
        past_due entry is the one the customer is currently on. Canceled
        and incomplete subscriptions are ignored.

        Returns:
            The live subscription, or None
        """
        for subscription in await self.list_subscriptions(customer_id):
            if subscription.is_live:
                return subscription
        return None

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Re-read a subscription by ID."""
        try:
            sub = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise self._translate(
                e, "Failed to retrieve subscription", subscription_id=subscription_id
            )
        return subscription_from_stripe(sub)

    async def update_subscription(
        self,
        subscription_id: str,
        update: SubscriptionUpdate,
    ) -> SubscriptionSnapshot:
        """
        Apply one update to a subscription.

        Args:
            subscription_id: Stripe subscription ID
            update: Fields to change, sent in a single Stripe call

        Returns:
            The subscription as Stripe reports it after the update

        Raises:
            BillingPlatformUnavailableError: If Stripe is unreachable
            StripeError: If Stripe rejects the update
        """
        params = update.to_params()
        try:
            sub = stripe.Subscription.modify(subscription_id, **params)
        except stripe.StripeError as e:
            raise self._translate(
                e, "Failed to update subscription", subscription_id=subscription_id
            )

        logger.info(
            f"Updated subscription {subscription_id}",
            extra={
                "subscription_id": subscription_id,
                "fields": sorted(params),
                "proration_behavior": update.proration_behavior,
            },
        )
        return subscription_from_stripe(sub)

    # ========================================================================
    # Subscription Schedules
    # ========================================================================

    async def retrieve_schedule(self, schedule_id: str) -> ScheduleSnapshot:
        try:
            schedule = stripe.SubscriptionSchedule.retrieve(schedule_id)
        except stripe.StripeError as e:
            raise self._translate(e, "Failed to retrieve schedule", schedule_id=schedule_id)
        return schedule_from_stripe(schedule)

    async def list_schedules(self, customer_id: str) -> List[ScheduleSnapshot]:
        try:
            result = stripe.SubscriptionSchedule.list(
                customer=customer_id,
                limit=settings.STRIPE_SUBSCRIPTION_LOOKUP_LIMIT,
            )
        except stripe.StripeError as e:
            raise self._translate(
                e, "Failed to list schedules", stripe_customer_id=customer_id
            )
        return [schedule_from_stripe(s) for s in _value(result, "data", [])]

    async def create_schedule_from_subscription(self, subscription_id: str) -> ScheduleSnapshot:
        """
        Create a schedule that adopts the subscription's current state.

        WHY: Stripe rejects phases and metadata alongside from_subscription,
        so creation and phase setup are two separate calls.
        """
        try:
            schedule = stripe.SubscriptionSchedule.create(from_subscription=subscription_id)
        except stripe.StripeError as e:
            raise self._translate(
                e, "Failed to create schedule", subscription_id=subscription_id
            )

        logger.info(
            f"Created schedule {schedule['id']} for subscription {subscription_id}",
            extra={"schedule_id": schedule["id"], "subscription_id": subscription_id},
        )
        return schedule_from_stripe(schedule)

    async def update_schedule(
        self,
        schedule_id: str,
        phases: Sequence[SchedulePhase],
        metadata: Dict[str, str],
    ) -> ScheduleSnapshot:
        """Replace a schedule's phases and metadata."""
        try:
            schedule = stripe.SubscriptionSchedule.modify(
                schedule_id,
                phases=[phase.to_params() for phase in phases],
                metadata=dict(metadata),
            )
        except stripe.StripeError as e:
            raise self._translate(e, "Failed to update schedule", schedule_id=schedule_id)
        return schedule_from_stripe(schedule)

    async def release_schedule(self, schedule_id: str) -> None:
        """
        Release a schedule, leaving the subscription in place.

        WHY: Cancelling a schedule would cancel the subscription too;
        releasing detaches it and keeps the subscription running.
        """
        try:
            stripe.SubscriptionSchedule.release(schedule_id)
        except stripe.StripeError as e:
            raise self._translate(e, "Failed to release schedule", schedule_id=schedule_id)

        logger.info(f"Released schedule {schedule_id}", extra={"schedule_id": schedule_id})


# ============================================================================
# Module-level convenience functions
# ============================================================================


_billing_gateway: Optional[StripeBillingGateway] = None


def get_billing_gateway() -> StripeBillingGateway:
    """
    Get or create the global billing gateway instance.

    WHY: Singleton pattern ensures consistent configuration
    and resource sharing across the application.
    """
    global _billing_gateway

    if _billing_gateway is None:
        _billing_gateway = StripeBillingGateway()

    return _billing_gateway
