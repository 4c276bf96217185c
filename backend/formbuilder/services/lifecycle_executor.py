"""
Lifecycle executor.

WHAT: Carries out a classified change against Stripe and reports what the
customer now has, when the change takes effect, and whether they were
billed for it.

WHY: Each branch has its own billing rules:
- TRIAL_CHANGE: swap the price now, never charge, keep trial_end exactly
- IMMEDIATE_UPGRADE: swap the price now and invoice the prorated difference
- DEFERRED_DOWNGRADE: keep the live price, schedule the target for period end
- CANCEL_PENDING_CHANGE: drop the schedule and the scheduled metadata, and
  adopt the live price when the pending change was only a price mismatch

HOW: Schedules are released before any price swap so proration runs against
the true current price and no stale schedule survives. Metadata is written
in the same Stripe call as the price swap, so a failed call leaves neither.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from formbuilder.core.exceptions import SchedulingFailedError
from formbuilder.services.change_classifier import ChangeDecision, ChangeKind
from formbuilder.services.plan_catalog import BillingInterval, PlanCatalog, PlanTier
from formbuilder.services.schedule_service import ScheduleService
from formbuilder.services.stripe_gateway import (
    META_INTERVAL,
    META_PLAN,
    META_SCHEDULED_DATE,
    META_SCHEDULED_INTERVAL,
    META_SCHEDULED_PLAN,
    ScheduleSnapshot,
    StripeBillingGateway,
    SubscriptionSnapshot,
    SubscriptionUpdate,
    to_timestamp,
)
from formbuilder.services.subscription_state import SOURCE_PRICE_MISMATCH, ResolvedState

logger = logging.getLogger(__name__)


# Stripe proration modes
PRORATION_NONE = "none"
PRORATION_ALWAYS_INVOICE = "always_invoice"

# Stripe unsets a metadata key when it is written as ""
CLEARED_SCHEDULED_METADATA = {
    META_SCHEDULED_PLAN: "",
    META_SCHEDULED_INTERVAL: "",
    META_SCHEDULED_DATE: "",
}


@dataclass(frozen=True)
class ChangeResult:
    """Outcome of a plan or interval change."""

    kind: ChangeKind
    effective_plan: PlanTier
    effective_interval: BillingInterval
    billed_now: bool
    effective_date: Optional[datetime]
    next_billing_date: Optional[datetime]
    message: str
    degraded: bool = False
    """True when the schedule couldn't be built and only metadata records the change."""
    schedule_id: Optional[str] = None


def plan_metadata(plan: PlanTier, interval: BillingInterval) -> Dict[str, str]:
    return {META_PLAN: plan.value, META_INTERVAL: interval.value}


class LifecycleExecutor:
    """Applies ChangeDecisions to a live subscription."""

    def __init__(
        self,
        gateway: StripeBillingGateway,
        schedules: ScheduleService,
        catalog: PlanCatalog,
    ):
        self.gateway = gateway
        self.schedules = schedules
        self.catalog = catalog

    async def execute(
        self,
        subscription: SubscriptionSnapshot,
        schedule: Optional[ScheduleSnapshot],
        state: ResolvedState,
        decision: ChangeDecision,
        now: Optional[datetime] = None,
    ) -> ChangeResult:
        """
        Execute a classified change.

        Args:
            subscription: Live subscription, freshly read
            schedule: Attached schedule, if any
            state: Resolved state of the subscription
            decision: Branch and target chosen by the classifier
            now: Current time (defaults to UTC now)

        Returns:
            ChangeResult

        Raises:
            UnknownPlanOrIntervalError: If the target has no price (before any Stripe call)
            BillingPlatformUnavailableError: If Stripe is unreachable
            StripeError: If Stripe rejects the change
        """
        now = now or datetime.now(timezone.utc)
        log_extra = {
            "subscription_id": subscription.id,
            "branch": decision.kind.value,
            "target_plan": decision.target_plan.value,
            "target_interval": decision.target_interval.value,
        }
        logger.info(f"Executing {decision.kind.value} on {subscription.id}", extra=log_extra)

        if decision.kind == ChangeKind.CANCEL_PENDING_CHANGE:
            return await self._cancel_pending_change(subscription, schedule, state, decision, now)

        target_price = self.catalog.price_id(decision.target_plan, decision.target_interval)

        if decision.kind == ChangeKind.TRIAL_CHANGE:
            return await self._trial_change(subscription, schedule, state, decision, target_price, now)
        if decision.kind == ChangeKind.IMMEDIATE_UPGRADE:
            return await self._immediate_upgrade(subscription, schedule, state, decision, target_price, now)
        return await self._deferred_downgrade(subscription, state, decision, target_price)

    # ========================================================================
    # Branches
    # ========================================================================

    async def _trial_change(
        self,
        subscription: SubscriptionSnapshot,
        schedule: Optional[ScheduleSnapshot],
        state: ResolvedState,
        decision: ChangeDecision,
        target_price: str,
        now: datetime,
    ) -> ChangeResult:
        trial_end = state.trial_end
        # Stripe rejects a trial_end in the past
        keep_trial_end = trial_end if trial_end is not None and trial_end > now else None

        subscription = await self.schedules.release_if_attached(subscription, schedule, keep_trial_end)

        await self.gateway.update_subscription(
            subscription.id,
            SubscriptionUpdate(
                price_id=target_price,
                item_id=subscription.item_id,
                proration_behavior=PRORATION_NONE,
                trial_end=keep_trial_end,
                metadata={
                    **plan_metadata(decision.target_plan, decision.target_interval),
                    **CLEARED_SCHEDULED_METADATA,
                },
                cancel_at_period_end=False if subscription.cancel_at_period_end else None,
            ),
        )

        if decision.target_plan != state.current_plan:
            message = "Plan changed successfully. New plan features are now active."
        else:
            interval = decision.target_interval.value
            message = (
                f"Billing interval changed to {interval}. "
                f"Full {interval} amount will be charged at trial end."
            )

        return ChangeResult(
            kind=decision.kind,
            effective_plan=decision.target_plan,
            effective_interval=decision.target_interval,
            billed_now=False,
            effective_date=now,
            next_billing_date=trial_end,
            message=message,
        )

    async def _immediate_upgrade(
        self,
        subscription: SubscriptionSnapshot,
        schedule: Optional[ScheduleSnapshot],
        state: ResolvedState,
        decision: ChangeDecision,
        target_price: str,
        now: datetime,
    ) -> ChangeResult:
        subscription = await self.schedules.release_if_attached(subscription, schedule)
        was_cancelling = subscription.cancel_at_period_end

        # Monthly -> annual starts a fresh annual period today
        reset_anchor = (
            state.current_interval == BillingInterval.MONTHLY
            and decision.target_interval == BillingInterval.ANNUAL
        )

        updated = await self.gateway.update_subscription(
            subscription.id,
            SubscriptionUpdate(
                price_id=target_price,
                item_id=subscription.item_id,
                proration_behavior=PRORATION_ALWAYS_INVOICE,
                metadata={
                    **plan_metadata(decision.target_plan, decision.target_interval),
                    **CLEARED_SCHEDULED_METADATA,
                },
                cancel_at_period_end=False if was_cancelling else None,
                reset_billing_anchor=reset_anchor,
            ),
        )

        if decision.target_plan != state.current_plan:
            message = "Plan upgraded successfully"
        else:
            message = "Billing interval upgraded to annual immediately"
        if was_cancelling:
            message += " and cancellation canceled"

        return ChangeResult(
            kind=decision.kind,
            effective_plan=decision.target_plan,
            effective_interval=decision.target_interval,
            billed_now=True,
            effective_date=now,
            next_billing_date=updated.current_period_end,
            message=message,
        )

    async def _deferred_downgrade(
        self,
        subscription: SubscriptionSnapshot,
        state: ResolvedState,
        decision: ChangeDecision,
        target_price: str,
    ) -> ChangeResult:
        pivot = subscription.current_period_end
        metadata = {
            **plan_metadata(state.current_plan, state.current_interval),
            META_SCHEDULED_PLAN: decision.target_plan.value,
            META_SCHEDULED_INTERVAL: decision.target_interval.value,
            META_SCHEDULED_DATE: str(to_timestamp(pivot)),
        }

        schedule_id = None
        degraded = False
        try:
            schedule_id = await self.schedules.upsert_schedule(
                subscription,
                current_price=subscription.price_id,
                target_price=target_price,
                pivot=pivot,
                metadata=metadata,
            )
        except SchedulingFailedError as e:
            degraded = True
            logger.warning(
                f"Scheduling failed for {subscription.id}; recording change in metadata only",
                extra={"subscription_id": subscription.id, **e.context},
            )

        # Live price item is left alone; only the scheduled change is recorded
        await self.gateway.update_subscription(subscription.id, SubscriptionUpdate(metadata=metadata))

        if decision.target_plan != state.current_plan:
            message = "Plan change scheduled for end of current period"
        else:
            message = "Billing interval change to monthly scheduled for end of period"

        return ChangeResult(
            kind=decision.kind,
            effective_plan=state.current_plan,
            effective_interval=state.current_interval,
            billed_now=False,
            effective_date=pivot,
            next_billing_date=pivot,
            message=message,
            degraded=degraded,
            schedule_id=schedule_id,
        )

    async def _cancel_pending_change(
        self,
        subscription: SubscriptionSnapshot,
        schedule: Optional[ScheduleSnapshot],
        state: ResolvedState,
        decision: ChangeDecision,
        now: datetime,
    ) -> ChangeResult:
        trial_end = state.trial_end if state.is_trial else None
        subscription = await self.schedules.release_if_attached(subscription, schedule, trial_end)

        metadata = dict(CLEARED_SCHEDULED_METADATA)
        plan, interval = state.current_plan, state.current_interval

        pending = state.pending_change
        if (
            pending is not None
            and pending.source == SOURCE_PRICE_MISMATCH
            and (pending.plan, pending.interval) == (decision.target_plan, decision.target_interval)
        ):
            # Keeping the live price: metadata catches up with what Stripe bills
            plan, interval = pending.plan, pending.interval
            metadata.update(plan_metadata(plan, interval))
            logger.info(
                f"Adopting live price as recorded plan on {subscription.id}",
                extra={
                    "subscription_id": subscription.id,
                    "plan": plan.value,
                    "interval": interval.value,
                },
            )

        await self.gateway.update_subscription(
            subscription.id,
            SubscriptionUpdate(metadata=metadata),
        )

        return ChangeResult(
            kind=ChangeKind.CANCEL_PENDING_CHANGE,
            effective_plan=plan,
            effective_interval=interval,
            billed_now=False,
            effective_date=now,
            next_billing_date=trial_end or subscription.current_period_end,
            message=(
                "Scheduled change canceled. Your subscription will remain on "
                f"{plan.value} {interval.value} billing."
            ),
        )
