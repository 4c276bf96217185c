"""
Deferred-change scheduler.

WHAT: Builds, updates, and releases the two-phase Stripe subscription
schedules that carry a downgrade to the end of the billing period.

WHY: A subscription may have at most one schedule. Every code path that
would add one first looks for an existing schedule and updates it in place,
and every immediate change releases the schedule before touching the price.

HOW: Phase 1 keeps the live price from the period start to the pivot date;
phase 2 switches to the target price from the pivot with no end. Stripe
forbids phases alongside from_subscription, so a new schedule is created
first and then given its phases in a second call. If that second call fails
the fresh schedule is released again so nothing half-built stays attached.
An existing schedule that cannot be retargeted is released too, so it never
switches the customer to a price the caller no longer wants.

Releasing (not cancelling) a schedule keeps the subscription alive, but
Stripe may rewrite trial_end while doing it; callers pass the trial end
they expect and it is re-asserted if it drifted.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from formbuilder.core.exceptions import SchedulingFailedError, StripeError
from formbuilder.services.stripe_gateway import (
    SchedulePhase,
    ScheduleSnapshot,
    StripeBillingGateway,
    SubscriptionSnapshot,
    SubscriptionUpdate,
)

logger = logging.getLogger(__name__)


class ScheduleService:
    """Manages the single deferred-change schedule of a subscription."""

    def __init__(self, gateway: StripeBillingGateway):
        self.gateway = gateway

    async def find_schedule(self, subscription: SubscriptionSnapshot) -> Optional[ScheduleSnapshot]:
        """
        Find the schedule controlling a subscription.

        WHY: The subscription's schedule reference is authoritative but can
        lag right after creation, so the customer's schedules are listed and
        matched by subscription ID as a fallback.

        Returns:
            The attached schedule, or None
        """
        if subscription.schedule_id:
            schedule = await self.gateway.retrieve_schedule(subscription.schedule_id)
            return schedule if schedule.is_attached else None

        for schedule in await self.gateway.list_schedules(subscription.customer_id):
            if schedule.subscription_id == subscription.id and schedule.is_attached:
                return schedule
        return None

    async def upsert_schedule(
        self,
        subscription: SubscriptionSnapshot,
        current_price: str,
        target_price: str,
        pivot: datetime,
        metadata: Dict[str, str],
        trial_end: Optional[datetime] = None,
    ) -> str:
        """
        Create or update the two-phase schedule for a deferred change.

        Args:
            subscription: Live subscription
            current_price: Price kept until the pivot
            target_price: Price from the pivot on
            pivot: Date the change takes effect
            metadata: Metadata stored on the schedule
            trial_end: Carried on phase 1 when the schedule is built during a trial

        Returns:
            Schedule ID

        Raises:
            SchedulingFailedError: If Stripe rejects any schedule call
        """
        phases = [
            SchedulePhase(
                price_id=current_price,
                start_date=subscription.current_period_start,
                end_date=pivot,
                trial_end=trial_end,
            ),
            SchedulePhase(price_id=target_price, start_date=pivot),
        ]
        log_extra = {"subscription_id": subscription.id, "target_price": target_price}

        try:
            existing = await self.find_schedule(subscription)
            if existing is None:
                created = await self.gateway.create_schedule_from_subscription(subscription.id)
        except StripeError as e:
            raise SchedulingFailedError(
                stripe_error=e.message,
                subscription_id=subscription.id,
            )

        if existing is not None:
            try:
                await self.gateway.update_schedule(existing.id, phases, metadata)
            except StripeError as e:
                # A schedule still aimed at the old target would contradict metadata
                await self._release_stale(subscription, existing.id, trial_end)
                raise SchedulingFailedError(
                    stripe_error=e.message,
                    subscription_id=subscription.id,
                    schedule_id=existing.id,
                )
            logger.info(
                f"Updated schedule {existing.id} in place",
                extra={**log_extra, "schedule_id": existing.id},
            )
            return existing.id

        try:
            await self.gateway.update_schedule(created.id, phases, metadata)
        except StripeError as e:
            await self._discard(created.id)
            raise SchedulingFailedError(
                stripe_error=e.message,
                subscription_id=subscription.id,
                schedule_id=created.id,
            )

        logger.info(
            f"Scheduled change on subscription {subscription.id}",
            extra={**log_extra, "schedule_id": created.id},
        )
        return created.id

    async def _discard(self, schedule_id: str) -> None:
        """Release a schedule whose phase setup failed."""
        try:
            await self.gateway.release_schedule(schedule_id)
        except StripeError as e:
            logger.error(
                f"Could not release half-built schedule {schedule_id}: {e.message}",
                extra={"schedule_id": schedule_id},
            )

    async def _release_stale(
        self,
        subscription: SubscriptionSnapshot,
        schedule_id: str,
        trial_end: Optional[datetime],
    ) -> None:
        """Release an existing schedule that could not be retargeted."""
        try:
            await self.release_schedule(subscription, schedule_id, trial_end)
        except StripeError as e:
            logger.error(
                f"Could not release stale schedule {schedule_id}: {e.message}",
                extra={"subscription_id": subscription.id, "schedule_id": schedule_id},
            )

    async def release_schedule(
        self,
        subscription: SubscriptionSnapshot,
        schedule_id: str,
        trial_end: Optional[datetime] = None,
    ) -> SubscriptionSnapshot:
        """
        Release a schedule and re-read the subscription.

        Args:
            subscription: Subscription the schedule controls
            schedule_id: Schedule to release
            trial_end: Trial end to preserve; None outside a trial

        Returns:
            The subscription as it stands after the release

        Raises:
            StripeError: If the release or re-read fails
        """
        await self.gateway.release_schedule(schedule_id)
        refreshed = await self.gateway.retrieve_subscription(subscription.id)

        now = datetime.now(timezone.utc)
        if trial_end is not None and trial_end > now and refreshed.trial_end != trial_end:
            logger.warning(
                f"trial_end drifted after releasing schedule {schedule_id}; re-asserting",
                extra={
                    "subscription_id": subscription.id,
                    "schedule_id": schedule_id,
                    "expected_trial_end": trial_end.isoformat(),
                    "actual_trial_end": refreshed.trial_end.isoformat() if refreshed.trial_end else None,
                },
            )
            refreshed = await self.gateway.update_subscription(
                subscription.id,
                SubscriptionUpdate(trial_end=trial_end, proration_behavior="none"),
            )

        return refreshed

    async def release_if_attached(
        self,
        subscription: SubscriptionSnapshot,
        schedule: Optional[ScheduleSnapshot],
        trial_end: Optional[datetime] = None,
    ) -> SubscriptionSnapshot:
        """Release the schedule if one is attached; otherwise return the subscription unchanged."""
        if schedule is None or not schedule.is_attached:
            return subscription
        return await self.release_schedule(subscription, schedule.id, trial_end)
