"""
Billing schemas for API request/response validation.

WHAT: Pydantic schemas for plan listing, plan/interval changes,
cancellation, and subscription status.

WHY: Schemas provide:
1. Type-safe request/response handling
2. OpenAPI documentation generation
3. One place where service dataclasses become JSON

HOW: Uses Pydantic v2 with Field descriptions. Plan and interval arrive as
plain strings; unknown values are rejected by the plan catalog so every
bad-plan error carries the same error envelope.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from formbuilder.services.cancellation_service import CancellationResult
from formbuilder.services.lifecycle_executor import ChangeResult
from formbuilder.services.subscription_service import SubscriptionStatus
from formbuilder.services.subscription_state import PendingChange


# ============================================================================
# Plan Information Schemas
# ============================================================================


class PlanInfo(BaseModel):
    """One purchasable plan/interval pair."""

    plan: str = Field(description="Plan tier (basic, pro, enterprise)")
    interval: str = Field(description="Billing interval (monthly, annual)")
    price_id: str = Field(description="Stripe price ID")
    description: str
    hipaa_enabled: bool = Field(description="Plan includes HIPAA data handling")


class PlansResponse(BaseModel):
    plans: List[PlanInfo]


# ============================================================================
# Change Schemas
# ============================================================================


class ChangePlanRequest(BaseModel):
    """Request to change plan (and optionally interval)."""

    plan: str = Field(..., min_length=1, max_length=50, description="Target plan tier")
    interval: str = Field("monthly", min_length=1, max_length=50, description="Target billing interval")


class ChangeIntervalRequest(BaseModel):
    """Request to change billing interval on the current plan."""

    interval: str = Field(..., min_length=1, max_length=50, description="Target billing interval")


class ChangeResponse(BaseModel):
    """
    Result of a plan or interval change.

    WHY: effective_plan is what the customer has access to now; during a
    deferred downgrade it is still the old plan until effective_date.
    """

    success: bool = True
    change_type: str = Field(description="trial_change, immediate_upgrade, deferred_downgrade, cancel_pending_change")
    message: str
    effective_plan: str
    effective_interval: str
    billed_now: bool = Field(description="True when the change was invoiced immediately")
    effective_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    schedule_id: Optional[str] = None

    @classmethod
    def from_result(cls, result: ChangeResult) -> "ChangeResponse":
        return cls(
            change_type=result.kind.value,
            message=result.message,
            effective_plan=result.effective_plan.value,
            effective_interval=result.effective_interval.value,
            billed_now=result.billed_now,
            effective_date=result.effective_date,
            next_billing_date=result.next_billing_date,
            schedule_id=result.schedule_id,
        )


# ============================================================================
# Cancellation Schemas
# ============================================================================


class CancellationResponse(BaseModel):
    success: bool = True
    message: str
    cancel_at_period_end: bool
    effective_date: Optional[datetime] = Field(
        None, description="Date access ends (trial end during a trial)"
    )

    @classmethod
    def from_result(cls, result: CancellationResult) -> "CancellationResponse":
        return cls(
            message=result.message,
            cancel_at_period_end=result.cancel_at_period_end,
            effective_date=result.effective_date,
        )


# ============================================================================
# Status Schemas
# ============================================================================


class ScheduledChange(BaseModel):
    """A change that takes effect at a future date."""

    new_plan: str
    new_interval: str
    effective_date: Optional[datetime] = None
    is_interval_only: bool = False

    @classmethod
    def from_pending(cls, pending: PendingChange) -> "ScheduledChange":
        return cls(
            new_plan=pending.plan.value,
            new_interval=pending.interval.value,
            effective_date=pending.effective_date,
            is_interval_only=pending.interval_only,
        )


class SubscriptionStatusResponse(BaseModel):
    """
    Current subscription summary.

    WHY: plan/interval are effective values (what the product grants).
    Customers without a live subscription are reported on the free plan.
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
    scheduled_change: Optional[ScheduledChange] = None

    @classmethod
    def from_status(cls, status: SubscriptionStatus) -> "SubscriptionStatusResponse":
        return cls(
            plan=status.plan,
            status=status.status,
            interval=status.interval,
            is_trial=status.is_trial,
            trial_end=status.trial_end,
            trial_ending_soon=status.trial_ending_soon,
            cancel_at_period_end=status.cancel_at_period_end,
            current_period_end=status.current_period_end,
            hipaa_enabled=status.hipaa_enabled,
            scheduled_change=(
                ScheduledChange.from_pending(status.pending_change)
                if status.pending_change
                else None
            ),
        )
