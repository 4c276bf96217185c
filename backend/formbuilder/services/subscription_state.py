"""
Effective-state resolver.

WHAT: Turns a raw Stripe subscription (plus any attached schedule) into the
state the product acts on: trial status, the plan the customer currently
has, the plan they should be granted, and any change waiting to take effect.

WHY: Stripe's own fields don't answer these questions directly:
1. status can read "active" while a schedule is attached even though the
   trial is still running, so trial_end is the authority, not status
2. During a deferred downgrade the live price is still the old one and the
   target lives only in metadata or in the schedule's second phase
3. Metadata writes can fail or be skipped by out-of-band dashboard edits,
   so a live price that disagrees with metadata is itself a signal

HOW: Pure functions over snapshots; no Stripe calls are made here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from formbuilder.core.config import settings
from formbuilder.core.exceptions import CatalogConfigurationError, UnknownPlanOrIntervalError
from formbuilder.services.plan_catalog import (
    BillingInterval,
    PlanCatalog,
    PlanTier,
    parse_interval,
    parse_plan,
    tier_index,
)
from formbuilder.services.stripe_gateway import (
    META_INTERVAL,
    META_PLAN,
    META_SCHEDULED_DATE,
    META_SCHEDULED_INTERVAL,
    META_SCHEDULED_PLAN,
    ScheduleSnapshot,
    SubscriptionSnapshot,
    from_timestamp,
)

logger = logging.getLogger(__name__)


# Where a pending change was discovered
SOURCE_METADATA = "metadata"
SOURCE_SCHEDULE = "schedule"
SOURCE_PRICE_MISMATCH = "price_mismatch"


@dataclass(frozen=True)
class PendingChange:
    """A plan/interval change that takes effect at a future date."""

    plan: PlanTier
    interval: BillingInterval
    effective_date: Optional[datetime]
    interval_only: bool = False
    source: str = SOURCE_METADATA


@dataclass(frozen=True)
class ResolvedState:
    """
    Product-facing view of a subscription.

    current_* is what the customer is billed for now (metadata, falling back
    to the live price). effective_* is what the product should grant.
    """

    subscription_id: str
    status: str
    is_trial: bool
    has_trial_ended: bool
    trial_end: Optional[datetime]
    trial_ending_soon: bool
    current_plan: PlanTier
    current_interval: BillingInterval
    effective_plan: PlanTier
    effective_interval: BillingInterval
    cancel_at_period_end: bool
    current_period_end: Optional[datetime]
    pending_change: Optional[PendingChange] = None

    @property
    def has_pending_change(self) -> bool:
        return self.pending_change is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _try_plan(value: Optional[str]) -> Optional[PlanTier]:
    if not value:
        return None
    try:
        return parse_plan(value)
    except UnknownPlanOrIntervalError:
        return None


def _try_interval(value: Optional[str]) -> Optional[BillingInterval]:
    if not value:
        return None
    try:
        return parse_interval(value)
    except UnknownPlanOrIntervalError:
        return None


def resolve_trial_end(
    subscription: SubscriptionSnapshot,
    schedule: Optional[ScheduleSnapshot] = None,
) -> Optional[datetime]:
    """
    Trial end for a subscription.

    WHY: When a schedule is attached, its first phase carries the trial
    boundary and is the more reliable value; Stripe may have rewritten the
    subscription's own field when the schedule adopted it.
    """
    if schedule is not None and schedule.is_attached and schedule.trial_end is not None:
        return schedule.trial_end
    return subscription.trial_end


def trial_flags(
    subscription: SubscriptionSnapshot,
    trial_end: Optional[datetime],
    now: datetime,
) -> Tuple[bool, bool]:
    """
    Compute (is_trial, has_trial_ended).

    WHY: Stripe can keep trial_end set after the trial is over (and test
    clocks can run ahead of server time), so a billing period that ends
    after trial_end means the trial has ended whatever the clock says.
    """
    period_end = subscription.current_period_end
    has_trial_ended = (
        trial_end is not None and period_end is not None and period_end > trial_end
    )
    is_trial = not has_trial_ended and (
        subscription.status == "trialing" or (trial_end is not None and trial_end > now)
    )
    return is_trial, has_trial_ended


def resolve_current_plan(
    subscription: SubscriptionSnapshot,
    catalog: PlanCatalog,
) -> Tuple[PlanTier, BillingInterval]:
    """
    Plan/interval the customer believes they have.

    Metadata first; a missing or unparseable value falls back to the live
    price's catalog entry.

    Raises:
        CatalogConfigurationError: If neither source identifies a plan
    """
    plan = _try_plan(subscription.meta(META_PLAN))
    interval = _try_interval(subscription.meta(META_INTERVAL))

    if plan is None or interval is None:
        live = catalog.lookup_price(subscription.price_id)
        if live is None:
            raise CatalogConfigurationError(
                message="Subscription price is not in the plan catalog",
                subscription_id=subscription.id,
                price_id=subscription.price_id,
            )
        plan = plan or live[0]
        interval = interval or live[1]

    return plan, interval


def detect_unrecorded_change(
    subscription: SubscriptionSnapshot,
    schedule: Optional[ScheduleSnapshot],
    catalog: PlanCatalog,
    recorded_plan: PlanTier,
    recorded_interval: BillingInterval,
) -> Optional[PendingChange]:
    """
    Recover a pending change that metadata doesn't record.

    WHY: A metadata write can fail after the schedule was built, and
    dashboard edits never touch our metadata. Two signals are checked:
    1. An attached schedule whose second phase moves to a different price
    2. A live price that differs from the price metadata implies

    Unknown prices are logged and ignored rather than guessed at.

    Returns:
        The synthesized pending change, or None
    """
    if schedule is not None and schedule.is_attached:
        target_price = schedule.target_price_id
        if target_price and target_price != subscription.price_id:
            target = catalog.lookup_price(target_price)
            if target is not None:
                return PendingChange(
                    plan=target[0],
                    interval=target[1],
                    effective_date=schedule.pivot or subscription.current_period_end,
                    interval_only=target[0] == recorded_plan,
                    source=SOURCE_SCHEDULE,
                )
            logger.warning(
                f"Schedule {schedule.id} targets unknown price {target_price}",
                extra={"schedule_id": schedule.id, "price_id": target_price},
            )

    if not catalog.has_price(recorded_plan, recorded_interval):
        return None

    expected_price = catalog.price_id(recorded_plan, recorded_interval)
    live_price = subscription.price_id
    if not live_price or live_price == expected_price:
        return None

    live = catalog.lookup_price(live_price)
    if live is None:
        logger.warning(
            f"Subscription {subscription.id} is on unknown price {live_price}",
            extra={"subscription_id": subscription.id, "price_id": live_price},
        )
        return None

    return PendingChange(
        plan=live[0],
        interval=live[1],
        effective_date=subscription.current_period_end,
        interval_only=live[0] == recorded_plan,
        source=SOURCE_PRICE_MISMATCH,
    )


def _scheduled_change_date(
    subscription: SubscriptionSnapshot,
    schedule: Optional[ScheduleSnapshot],
) -> Optional[datetime]:
    raw = subscription.meta(META_SCHEDULED_DATE)
    if raw:
        try:
            return from_timestamp(int(raw))
        except ValueError:
            logger.warning(
                f"Ignoring malformed scheduledChangeDate {raw!r}",
                extra={"subscription_id": subscription.id},
            )
    if schedule is not None and schedule.is_attached and schedule.pivot is not None:
        return schedule.pivot
    return subscription.current_period_end


def _recorded_change(
    subscription: SubscriptionSnapshot,
    schedule: Optional[ScheduleSnapshot],
    current_plan: PlanTier,
    current_interval: BillingInterval,
) -> Optional[PendingChange]:
    """Pending change recorded in scheduledPlanId/scheduledInterval metadata."""
    raw_plan = subscription.meta(META_SCHEDULED_PLAN)
    raw_interval = subscription.meta(META_SCHEDULED_INTERVAL)

    plan = _try_plan(raw_plan) if raw_plan else current_plan
    interval = _try_interval(raw_interval) if raw_interval else current_interval
    if plan is None or interval is None:
        logger.warning(
            "Ignoring unparseable scheduled change metadata",
            extra={
                "subscription_id": subscription.id,
                "scheduled_plan": raw_plan,
                "scheduled_interval": raw_interval,
            },
        )
        return None

    if plan == current_plan and interval == current_interval:
        return None

    return PendingChange(
        plan=plan,
        interval=interval,
        effective_date=_scheduled_change_date(subscription, schedule),
        interval_only=plan == current_plan,
        source=SOURCE_METADATA,
    )


def resolve_state(
    subscription: SubscriptionSnapshot,
    catalog: PlanCatalog,
    schedule: Optional[ScheduleSnapshot] = None,
    now: Optional[datetime] = None,
) -> ResolvedState:
    """
    Resolve the product-facing state of a subscription.

    Effective plan rules:
    - Interval-only pending change: effective stays current (interval
      changes are only ever deferred for annual -> monthly)
    - Pending downgrade: effective stays current until the pivot
    - Pending upgrade: the target is surfaced early as effective

    Args:
        subscription: Live subscription snapshot
        catalog: Plan catalog
        schedule: Attached schedule, if any
        now: Current time (defaults to UTC now)

    Returns:
        ResolvedState
    """
    now = now or _utcnow()
    trial_end = resolve_trial_end(subscription, schedule)
    is_trial, has_trial_ended = trial_flags(subscription, trial_end, now)

    trial_ending_soon = bool(
        trial_end is not None
        and not has_trial_ended
        and trial_end - now < timedelta(days=settings.TRIAL_ENDING_SOON_DAYS)
    )

    current_plan, current_interval = resolve_current_plan(subscription, catalog)

    if subscription.has_scheduled_change:
        pending = _recorded_change(subscription, schedule, current_plan, current_interval)
    elif is_trial:
        # Trial price changes are intentionally not mirrored into a schedule
        pending = None
    else:
        pending = detect_unrecorded_change(
            subscription, schedule, catalog, current_plan, current_interval
        )

    effective_plan, effective_interval = current_plan, current_interval
    if (
        pending is not None
        and not pending.interval_only
        and tier_index(pending.plan) > tier_index(current_plan)
    ):
        effective_plan, effective_interval = pending.plan, pending.interval

    return ResolvedState(
        subscription_id=subscription.id,
        status=subscription.status,
        is_trial=is_trial,
        has_trial_ended=has_trial_ended,
        trial_end=trial_end,
        trial_ending_soon=trial_ending_soon,
        current_plan=current_plan,
        current_interval=current_interval,
        effective_plan=effective_plan,
        effective_interval=effective_interval,
        cancel_at_period_end=subscription.cancel_at_period_end,
        current_period_end=subscription.current_period_end,
        pending_change=pending,
    )
