"""
Unit tests for SubscriptionService.

WHAT: Tests the product-facing entry point against a real (SQLite) users
table and the in-memory billing platform.

WHY: The service is where user IDs become Stripe customers, where requests
are validated before Stripe is contacted, and where "no subscription" turns
into either the free plan or a 400.
"""

import pytest

from formbuilder.core.exceptions import (
    NoActiveSubscriptionError,
    NoChangeRequestedError,
    NotPendingCancellationError,
    UnknownPlanOrIntervalError,
)
from formbuilder.services.change_classifier import ChangeKind
from formbuilder.services.plan_catalog import PlanTier
from formbuilder.services.subscription_service import FREE_STATUS, STATUS_CANCELING


class TestPlans:
    def test_get_all_plans(self, subscription_service):
        plans = subscription_service.get_all_plans()

        assert len(plans) == 6
        pro = next(p for p in plans if p["plan"] == "pro" and p["interval"] == "annual")
        assert pro["price_id"] == "price_pro_annual"
        assert pro["hipaa_enabled"] is True
        assert pro["description"]


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_user_without_customer_is_free(self, subscription_service, free_user, platform):
        status = await subscription_service.get_status(free_user.id)

        assert status == FREE_STATUS
        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_customer_without_live_subscription_is_free(
        self, subscription_service, test_user, platform
    ):
        platform.add_subscription(status="canceled")

        status = await subscription_service.get_status(test_user.id)

        assert status.plan == "free"
        assert status.status == "active"

    @pytest.mark.asyncio
    async def test_status_reports_effective_plan_and_pending_change(
        self, subscription_service, test_user, platform
    ):
        sub = platform.add_subscription("pro", "monthly", metadata={
            "planId": "pro",
            "interval": "monthly",
            "scheduledPlanId": "basic",
            "scheduledInterval": "monthly",
        })
        platform.add_schedule(sub.id, "price_basic_monthly")

        status = await subscription_service.get_status(test_user.id)

        assert status.plan == "pro"
        assert status.interval == "monthly"
        assert status.hipaa_enabled is True
        assert status.pending_change.plan == PlanTier.BASIC
        assert status.pending_change.effective_date == sub.current_period_end

    @pytest.mark.asyncio
    async def test_trial_status(self, subscription_service, test_user, platform):
        sub = platform.add_trial_subscription("basic", "monthly")

        status = await subscription_service.get_status(test_user.id)

        assert status.is_trial is True
        assert status.trial_end == sub.trial_end
        assert status.hipaa_enabled is False

    @pytest.mark.asyncio
    async def test_pending_cancellation_status(self, subscription_service, test_user, platform):
        platform.add_subscription(cancel_at_period_end=True)

        status = await subscription_service.get_status(test_user.id)

        assert status.status == STATUS_CANCELING
        assert status.cancel_at_period_end is True


class TestChangePlan:
    @pytest.mark.asyncio
    async def test_unknown_plan_rejected_before_stripe(self, subscription_service, test_user, platform):
        platform.add_subscription()

        with pytest.raises(UnknownPlanOrIntervalError):
            await subscription_service.change_plan(test_user.id, "platinum", "monthly")

        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_unknown_interval_rejected_before_stripe(self, subscription_service, test_user, platform):
        with pytest.raises(UnknownPlanOrIntervalError):
            await subscription_service.change_plan(test_user.id, "pro", "weekly")

        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_no_subscription_fails_closed(self, subscription_service, test_user, platform):
        with pytest.raises(NoActiveSubscriptionError):
            await subscription_service.change_plan(test_user.id, "pro", "monthly")

        assert "create_schedule" not in platform.call_names()
        assert platform.updates == []

    @pytest.mark.asyncio
    async def test_user_without_customer_has_nothing_to_change(self, subscription_service, free_user):
        with pytest.raises(NoActiveSubscriptionError):
            await subscription_service.change_plan(free_user.id, "pro", "monthly")

    @pytest.mark.asyncio
    async def test_downgrade(self, subscription_service, test_user, platform):
        platform.add_subscription("pro", "monthly")

        result = await subscription_service.change_plan(test_user.id, "basic", "monthly")

        assert result.kind == ChangeKind.DEFERRED_DOWNGRADE
        assert result.effective_plan == PlanTier.PRO
        assert len(platform.attached_schedules("sub_1")) == 1

    @pytest.mark.asyncio
    async def test_same_plan_is_rejected(self, subscription_service, test_user, platform):
        platform.add_subscription("pro", "monthly")

        with pytest.raises(NoChangeRequestedError):
            await subscription_service.change_plan(test_user.id, "Pro", "Monthly")

        assert platform.updates == []


class TestChangeInterval:
    @pytest.mark.asyncio
    async def test_monthly_to_annual(self, subscription_service, test_user, platform):
        platform.add_subscription("enterprise", "monthly")

        result = await subscription_service.change_interval(test_user.id, "annual")

        assert result.kind == ChangeKind.IMMEDIATE_UPGRADE
        assert platform.subscriptions["sub_1"].price_id == "price_enterprise_annual"

    @pytest.mark.asyncio
    async def test_annual_to_monthly_is_deferred(self, subscription_service, test_user, platform):
        platform.add_subscription("basic", "annual")

        result = await subscription_service.change_interval(test_user.id, "monthly")

        assert result.kind == ChangeKind.DEFERRED_DOWNGRADE
        assert platform.subscriptions["sub_1"].price_id == "price_basic_annual"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_and_resume(self, subscription_service, test_user, platform):
        platform.add_subscription()

        cancelled = await subscription_service.cancel(test_user.id)
        assert cancelled.cancel_at_period_end is True

        resumed = await subscription_service.resume(test_user.id)
        assert resumed.cancel_at_period_end is False
        assert platform.subscriptions["sub_1"].cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_resume_when_not_cancelling(self, subscription_service, test_user, platform):
        platform.add_subscription()

        with pytest.raises(NotPendingCancellationError):
            await subscription_service.resume(test_user.id)

    @pytest.mark.asyncio
    async def test_resume_without_subscription(self, subscription_service, test_user):
        with pytest.raises(NoActiveSubscriptionError):
            await subscription_service.resume(test_user.id)

    @pytest.mark.asyncio
    async def test_cancel_without_subscription(self, subscription_service, free_user):
        with pytest.raises(NoActiveSubscriptionError):
            await subscription_service.cancel(free_user.id)
