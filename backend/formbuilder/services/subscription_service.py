"""
Subscription service for managing paid plans.

WHAT: Product-facing entry point for plan changes, interval changes,
cancellation, resumption, and subscription status.

WHY: Route handlers deal in user IDs and plan names. This service turns
those into a fresh read of the customer's Stripe subscription, resolves its
effective state, picks a lifecycle branch, and hands back a normalized
result. Nothing about the subscription is persisted locally; Stripe is the
source of truth and the users table only holds the customer pointer.

HOW: Integrates with:
- UserDAO for the user -> Stripe customer pointer
- StripeBillingGateway for every Stripe read and write
- The resolver, classifier, executor, and cancellation handler

Design decisions:
- Every request re-reads the subscription and schedule (no cache)
- No subscription is ever created as a side effect of a change request
- Customers with no live subscription are reported as on the free plan
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from formbuilder.core.exceptions import NoActiveSubscriptionError
from formbuilder.dao.user import UserDAO
from formbuilder.middleware.request_context import get_request_id
from formbuilder.models.user import User
from formbuilder.services.cancellation_service import CancellationResult, CancellationService
from formbuilder.services.change_classifier import ChangeRequest, classify_change
from formbuilder.services.lifecycle_executor import ChangeResult, LifecycleExecutor
from formbuilder.services.plan_catalog import (
    FREE_PLAN,
    PlanCatalog,
    PlanTier,
    get_plan_catalog,
    is_hipaa_enabled,
    parse_interval,
    parse_plan,
)
from formbuilder.services.schedule_service import ScheduleService
from formbuilder.services.stripe_gateway import (
    ScheduleSnapshot,
    StripeBillingGateway,
    SubscriptionSnapshot,
    get_billing_gateway,
)
from formbuilder.services.subscription_state import PendingChange, ResolvedState, resolve_state

logger = logging.getLogger(__name__)


# Status reported while cancel_at_period_end is set
STATUS_CANCELING = "canceled_at_period_end"


# Plan descriptions for the pricing page
PLAN_DESCRIPTIONS = {
    PlanTier.BASIC: "Unlimited forms and submissions for individuals",
    PlanTier.PRO: "HIPAA-compliant forms, e-signatures, and PDF exports",
    PlanTier.ENTERPRISE: "Everything in Pro with priority support and a signed BAA",
}


# ============================================================================
# Data Classes
# ============================================================================


@dataclass(frozen=True)
class SubscriptionContext:
    """Everything read from Stripe for one request."""

    subscription: SubscriptionSnapshot
    schedule: Optional[ScheduleSnapshot]
    state: ResolvedState


@dataclass(frozen=True)
class SubscriptionStatus:
    """
    Subscription summary shown to the customer.

    WHY: plan/interval are the *effective* values (what the product grants),
    which differ from the live price during a pending change.
    """

    plan: str
    status: str
    interval: Optional[str] = None
    is_trial: bool = False
    trial_end: Optional[datetime] = None
    trial_ending_soon: bool = False
    cancel_at_period_end: bool = False
    current_period_end: Optional[datetime] = None
    hipaa_enabled: bool = False
    pending_change: Optional[PendingChange] = None


FREE_STATUS = SubscriptionStatus(plan=FREE_PLAN, status="active")


# ============================================================================
# Subscription Service
# ============================================================================


class SubscriptionService:
    """
    Service for subscription lifecycle management.

    WHY: Centralizes subscription business logic:
    - Plan information
    - Plan and interval changes
    - Cancellation and resumption
    - Status reporting
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[StripeBillingGateway] = None,
        catalog: Optional[PlanCatalog] = None,
    ):
        """
        Initialize subscription service.

        Args:
            db: Async database session
            gateway: Stripe gateway (defaults to the shared instance)
            catalog: Plan catalog (defaults to the one built from settings)
        """
        self.db = db
        self.user_dao = UserDAO(User, db)
        self.gateway = gateway or get_billing_gateway()
        self.catalog = catalog or get_plan_catalog()
        self.schedules = ScheduleService(self.gateway)
        self.executor = LifecycleExecutor(self.gateway, self.schedules, self.catalog)
        self.cancellations = CancellationService(self.gateway, self.schedules)

    # ========================================================================
    # Plan Information
    # ========================================================================

    def get_all_plans(self) -> List[Dict[str, Any]]:
        """
        Get information about all purchasable plans.

        Returns:
            One entry per configured plan/interval price
        """
        return [
            {
                "plan": entry.plan.value,
                "interval": entry.interval.value,
                "price_id": entry.price_id,
                "description": PLAN_DESCRIPTIONS[entry.plan],
                "hipaa_enabled": is_hipaa_enabled(entry.plan.value),
            }
            for entry in self.catalog.plans()
        ]

    # ========================================================================
    # Loading
    # ========================================================================

    async def _find_subscription(self, customer_id: int) -> Optional[SubscriptionSnapshot]:
        billing_ref = await self.user_dao.get_customer_billing_ref(customer_id)
        if not billing_ref:
            return None
        return await self.gateway.find_live_subscription(billing_ref)

    async def _load(self, customer_id: int, now: datetime) -> SubscriptionContext:
        """
        Read the live subscription and resolve its state.

        Raises:
            NoActiveSubscriptionError: If the customer has nothing to modify
        """
        subscription = await self._find_subscription(customer_id)
        if subscription is None:
            raise NoActiveSubscriptionError(customer_id=customer_id)

        schedule = await self.schedules.find_schedule(subscription)
        state = resolve_state(subscription, self.catalog, schedule, now)
        return SubscriptionContext(subscription=subscription, schedule=schedule, state=state)

    def _log_change(self, customer_id: int, context: SubscriptionContext, result: ChangeResult) -> None:
        logger.info(
            f"Subscription change {result.kind.value} for customer {customer_id}: {result.message}",
            extra={
                "request_id": get_request_id(),
                "customer_id": customer_id,
                "subscription_id": context.subscription.id,
                "branch": result.kind.value,
                "effective_plan": result.effective_plan.value,
                "effective_interval": result.effective_interval.value,
                "billed_now": result.billed_now,
                "degraded": result.degraded,
            },
        )

    # ========================================================================
    # Changes
    # ========================================================================

    async def change_plan(
        self,
        customer_id: int,
        target_plan: str,
        target_interval: str,
    ) -> ChangeResult:
        """
        Change plan (and optionally interval).

        WHY: The plan/interval pair is validated against the catalog before
        Stripe is contacted, so a bad request never costs an API call.

        Args:
            customer_id: User ID
            target_plan: Requested plan name
            target_interval: Requested interval name

        Returns:
            ChangeResult

        Raises:
            UnknownPlanOrIntervalError: If the pair isn't purchasable
            NoActiveSubscriptionError: If the customer has no live subscription
            NoChangeRequestedError: If nothing would change
        """
        plan = parse_plan(target_plan)
        interval = parse_interval(target_interval)
        self.catalog.price_id(plan, interval)

        now = datetime.now(timezone.utc)
        context = await self._load(customer_id, now)
        decision = classify_change(
            context.state,
            ChangeRequest(target_plan=plan, target_interval=interval),
        )
        result = await self.executor.execute(
            context.subscription, context.schedule, context.state, decision, now
        )
        self._log_change(customer_id, context, result)
        return result

    async def change_interval(self, customer_id: int, target_interval: str) -> ChangeResult:
        """
        Change billing interval, keeping the current plan.

        WHY: Monthly -> annual is always an immediate upgrade and
        annual -> monthly always a deferred downgrade, whatever the tier.

        Raises:
            UnknownPlanOrIntervalError: If the interval isn't purchasable on the current plan
            NoActiveSubscriptionError: If the customer has no live subscription
            NoChangeRequestedError: If nothing would change
        """
        interval = parse_interval(target_interval)

        now = datetime.now(timezone.utc)
        context = await self._load(customer_id, now)
        decision = classify_change(
            context.state,
            ChangeRequest(target_interval=interval, interval_axis=True),
        )
        result = await self.executor.execute(
            context.subscription, context.schedule, context.state, decision, now
        )
        self._log_change(customer_id, context, result)
        return result

    # ========================================================================
    # Cancellation
    # ========================================================================

    async def cancel(self, customer_id: int) -> CancellationResult:
        """
        Cancel at the end of the trial or current period.

        Raises:
            NoActiveSubscriptionError: If the customer has no live subscription
        """
        now = datetime.now(timezone.utc)
        context = await self._load(customer_id, now)
        result = await self.cancellations.cancel(
            context.subscription, context.schedule, context.state, now
        )
        logger.info(
            f"Customer {customer_id} canceled subscription",
            extra={
                "request_id": get_request_id(),
                "customer_id": customer_id,
                "subscription_id": context.subscription.id,
            },
        )
        return result

    async def resume(self, customer_id: int) -> CancellationResult:
        """
        Resume a subscription pending cancellation.

        Raises:
            NoActiveSubscriptionError: If the customer has no live subscription
            NotPendingCancellationError: If the subscription isn't set to cancel
        """
        subscription = await self._find_subscription(customer_id)
        if subscription is None:
            raise NoActiveSubscriptionError(customer_id=customer_id)
        return await self.cancellations.resume(subscription)

    # ========================================================================
    # Status
    # ========================================================================

    async def get_status(self, customer_id: int) -> SubscriptionStatus:
        """
        Get the customer's subscription status.

        Returns:
            SubscriptionStatus (free plan when there is no live subscription)
        """
        subscription = await self._find_subscription(customer_id)
        if subscription is None:
            return FREE_STATUS

        schedule = await self.schedules.find_schedule(subscription)
        state = resolve_state(subscription, self.catalog, schedule)

        return SubscriptionStatus(
            plan=state.effective_plan.value,
            status=STATUS_CANCELING if state.cancel_at_period_end else state.status,
            interval=state.effective_interval.value,
            is_trial=state.is_trial,
            trial_end=state.trial_end,
            trial_ending_soon=state.trial_ending_soon,
            cancel_at_period_end=state.cancel_at_period_end,
            current_period_end=state.current_period_end,
            hipaa_enabled=is_hipaa_enabled(state.effective_plan.value),
            pending_change=state.pending_change,
        )
