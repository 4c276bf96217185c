"""
Cancellation and resume handling.

WHY: Cancellation is always at period end (or trial end), never immediate,
so the customer keeps what they paid for. Stripe refuses
cancel_at_period_end on a subscription controlled by a schedule, so any
schedule is released first; releasing can disturb trial_end, which is
re-asserted. Scheduled-change metadata is left untouched either way.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from formbuilder.core.exceptions import NotPendingCancellationError
from formbuilder.services.schedule_service import ScheduleService
from formbuilder.services.stripe_gateway import (
    ScheduleSnapshot,
    StripeBillingGateway,
    SubscriptionSnapshot,
    SubscriptionUpdate,
)
from formbuilder.services.subscription_state import ResolvedState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationResult:
    cancel_at_period_end: bool
    message: str
    effective_date: Optional[datetime] = None


class CancellationService:
    """Sets and clears cancel_at_period_end."""

    def __init__(self, gateway: StripeBillingGateway, schedules: ScheduleService):
        self.gateway = gateway
        self.schedules = schedules

    async def cancel(
        self,
        subscription: SubscriptionSnapshot,
        schedule: Optional[ScheduleSnapshot],
        state: ResolvedState,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel at the end of the trial or current billing period.

        Args:
            subscription: Live subscription
            schedule: Attached schedule, if any
            state: Resolved state of the subscription

        Returns:
            CancellationResult with the date access ends
        """
        now = now or datetime.now(timezone.utc)
        trial_end = state.trial_end if state.is_trial else None
        keep_trial_end = trial_end if trial_end is not None and trial_end > now else None

        subscription = await self.schedules.release_if_attached(subscription, schedule, keep_trial_end)

        updated = await self.gateway.update_subscription(
            subscription.id,
            SubscriptionUpdate(cancel_at_period_end=True, trial_end=keep_trial_end),
        )

        if state.is_trial:
            effective_date = trial_end
            message = "Subscription will be canceled at the end of your trial period"
        else:
            effective_date = updated.current_period_end or subscription.current_period_end
            message = "Subscription will be canceled at the end of your current billing period"

        logger.info(
            f"Subscription {subscription.id} set to cancel at period end",
            extra={
                "subscription_id": subscription.id,
                "is_trial": state.is_trial,
                "released_schedule": schedule.id if schedule else None,
            },
        )

        return CancellationResult(
            cancel_at_period_end=True,
            message=message,
            effective_date=effective_date,
        )

    async def resume(self, subscription: SubscriptionSnapshot) -> CancellationResult:
        """
        Undo a pending cancellation.

        Raises:
            NotPendingCancellationError: If the subscription isn't set to cancel
        """
        if not subscription.cancel_at_period_end:
            raise NotPendingCancellationError(subscription_id=subscription.id)

        await self.gateway.update_subscription(
            subscription.id,
            SubscriptionUpdate(cancel_at_period_end=False),
        )

        logger.info(
            f"Subscription {subscription.id} resumed",
            extra={"subscription_id": subscription.id},
        )

        return CancellationResult(
            cancel_at_period_end=False,
            message="Subscription resumed successfully",
        )
