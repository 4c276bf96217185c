"""
Billing API endpoints for managing paid plans.

WHAT: REST API endpoints for subscription lifecycle management:
1. GET /billing/plans - List purchasable plans
2. GET /billing/subscription - Current plan, trial, and pending change
3. POST /billing/change-plan - Change plan (and interval)
4. POST /billing/change-interval - Change billing interval only
5. POST /billing/cancel-subscription - Cancel at period end
6. POST /billing/resume-subscription - Undo a pending cancellation

WHY: Enables self-service plan management. Whether a change applies now,
is invoiced now, or waits for the period end is decided by the services;
these handlers only translate HTTP to service calls.

SECURITY (OWASP):
- A01: Every endpoint acts on the authenticated user's own subscription
- A07: Authenticated endpoints only
"""

import logging

from fastapi import APIRouter, Depends

from formbuilder.core.deps import get_current_user, get_subscription_service
from formbuilder.models.user import User
from formbuilder.schemas.billing import (
    CancellationResponse,
    ChangeIntervalRequest,
    ChangePlanRequest,
    ChangeResponse,
    PlanInfo,
    PlansResponse,
    SubscriptionStatusResponse,
)
from formbuilder.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


# ============================================================================
# Plan Information
# ============================================================================


@router.get(
    "/plans",
    response_model=PlansResponse,
    summary="List available plans",
)
async def list_plans(
    service: SubscriptionService = Depends(get_subscription_service),
):
    """List every configured plan/interval price for the pricing page."""
    return PlansResponse(plans=[PlanInfo(**plan) for plan in service.get_all_plans()])


# ============================================================================
# Subscription Status
# ============================================================================


@router.get(
    "/subscription",
    response_model=SubscriptionStatusResponse,
    summary="Get current subscription",
)
async def get_subscription(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Get the current user's subscription status.

    WHY: The frontend gates features on the effective plan and shows trial
    and pending-change banners from the same payload.
    """
    status = await service.get_status(current_user.id)
    return SubscriptionStatusResponse.from_status(status)


# ============================================================================
# Plan Changes
# ============================================================================


@router.post(
    "/change-plan",
    response_model=ChangeResponse,
    summary="Change subscription plan",
)
async def change_plan(
    request: ChangePlanRequest,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Change plan.

    Upgrades apply and are invoiced immediately; downgrades take effect at
    the end of the current period; changes during a trial apply immediately
    without charge.
    """
    result = await service.change_plan(current_user.id, request.plan, request.interval)
    logger.info(
        f"Plan change for user {current_user.id}: {result.kind.value}",
        extra={"user_id": current_user.id, "branch": result.kind.value, "degraded": result.degraded},
    )
    return ChangeResponse.from_result(result)


@router.post(
    "/change-interval",
    response_model=ChangeResponse,
    summary="Change billing interval",
)
async def change_interval(
    request: ChangeIntervalRequest,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Change billing interval on the current plan.

    Monthly -> annual is immediate; annual -> monthly waits for period end.
    """
    result = await service.change_interval(current_user.id, request.interval)
    logger.info(
        f"Interval change for user {current_user.id}: {result.kind.value}",
        extra={"user_id": current_user.id, "branch": result.kind.value, "degraded": result.degraded},
    )
    return ChangeResponse.from_result(result)


# ============================================================================
# Cancellation
# ============================================================================


@router.post(
    "/cancel-subscription",
    response_model=CancellationResponse,
    summary="Cancel subscription at period end",
)
async def cancel_subscription(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Cancel at the end of the trial or current billing period."""
    result = await service.cancel(current_user.id)
    return CancellationResponse.from_result(result)


@router.post(
    "/resume-subscription",
    response_model=CancellationResponse,
    summary="Resume a canceled subscription",
)
async def resume_subscription(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Undo a pending cancellation."""
    result = await service.resume(current_user.id)
    return CancellationResponse.from_result(result)
