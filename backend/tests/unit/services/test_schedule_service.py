"""
Unit tests for the deferred-change scheduler.

WHY: A subscription may carry one schedule at most; these tests check that
upserts reuse an existing schedule, that failures leave nothing half-built,
and that trial_end survives a release.
"""

import logging
from datetime import timedelta

import pytest

from formbuilder.core.exceptions import SchedulingFailedError, StripeError

from tests.fakes import NOW


class TestFindSchedule:
    @pytest.mark.asyncio
    async def test_finds_by_subscription_reference(self, platform, schedules):
        sub = platform.add_subscription()
        schedule = platform.add_schedule(sub.id, "price_basic_monthly")

        found = await schedules.find_schedule(platform.subscriptions[sub.id])

        assert found.id == schedule.id
        assert platform.call_names() == ["retrieve_schedule"]

    @pytest.mark.asyncio
    async def test_falls_back_to_listing_customer_schedules(self, platform, schedules):
        sub = platform.add_subscription()
        schedule = platform.add_schedule(sub.id, "price_basic_monthly")

        # Reference not yet visible on the subscription
        found = await schedules.find_schedule(sub)

        assert found.id == schedule.id
        assert platform.call_names() == ["list_schedules"]

    @pytest.mark.asyncio
    async def test_released_schedule_is_ignored(self, platform, schedules):
        sub = platform.add_subscription()
        schedule = platform.add_schedule(sub.id, "price_basic_monthly")
        await platform.release_schedule(schedule.id)

        assert await schedules.find_schedule(sub) is None


class TestUpsertSchedule:
    @pytest.mark.asyncio
    async def test_creates_two_phase_schedule(self, platform, schedules):
        sub = platform.add_subscription()

        schedule_id = await schedules.upsert_schedule(
            sub,
            current_price="price_pro_monthly",
            target_price="price_basic_monthly",
            pivot=sub.current_period_end,
            metadata={"scheduledPlanId": "basic"},
        )

        schedule = platform.schedules[schedule_id]
        assert [p.price_id for p in schedule.phases] == ["price_pro_monthly", "price_basic_monthly"]
        assert schedule.phases[0].start_date == sub.current_period_start
        assert schedule.phases[0].end_date == sub.current_period_end
        assert schedule.pivot == sub.current_period_end
        assert schedule.metadata == {"scheduledPlanId": "basic"}

    @pytest.mark.asyncio
    async def test_updates_existing_schedule_in_place(self, platform, schedules):
        sub = platform.add_subscription()
        existing = platform.add_schedule(sub.id, "price_basic_monthly")
        sub = platform.subscriptions[sub.id]

        schedule_id = await schedules.upsert_schedule(
            sub,
            current_price="price_pro_monthly",
            target_price="price_basic_annual",
            pivot=sub.current_period_end,
            metadata={},
        )

        assert schedule_id == existing.id
        assert "create_schedule" not in platform.call_names()
        assert len(platform.attached_schedules(sub.id)) == 1
        assert platform.schedules[existing.id].target_price_id == "price_basic_annual"

    @pytest.mark.asyncio
    async def test_trial_end_carried_on_first_phase(self, platform, schedules):
        sub = platform.add_trial_subscription()

        schedule_id = await schedules.upsert_schedule(
            sub,
            current_price="price_pro_monthly",
            target_price="price_basic_monthly",
            pivot=sub.current_period_end,
            metadata={},
            trial_end=sub.trial_end,
        )

        assert platform.schedules[schedule_id].trial_end == sub.trial_end

    @pytest.mark.asyncio
    async def test_create_failure_raises_scheduling_failed(self, platform, schedules):
        sub = platform.add_subscription()
        platform.failures["create_schedule"] = StripeError(message="boom")

        with pytest.raises(SchedulingFailedError) as exc_info:
            await schedules.upsert_schedule(
                sub, "price_pro_monthly", "price_basic_monthly", sub.current_period_end, {}
            )

        assert exc_info.value.context["subscription_id"] == sub.id

    @pytest.mark.asyncio
    async def test_phase_failure_releases_fresh_schedule(self, platform, schedules):
        sub = platform.add_subscription()
        platform.failures["update_schedule"] = StripeError(message="bad phases")

        with pytest.raises(SchedulingFailedError):
            await schedules.upsert_schedule(
                sub, "price_pro_monthly", "price_basic_monthly", sub.current_period_end, {}
            )

        assert platform.call_names()[-1] == "release_schedule"
        assert platform.attached_schedules(sub.id) == []

    @pytest.mark.asyncio
    async def test_failed_discard_is_logged(self, platform, schedules, caplog):
        sub = platform.add_subscription()
        platform.failures["update_schedule"] = StripeError(message="bad phases")
        platform.failures["release_schedule"] = StripeError(message="release failed")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(SchedulingFailedError):
                await schedules.upsert_schedule(
                    sub, "price_pro_monthly", "price_basic_monthly", sub.current_period_end, {}
                )

        assert "half-built schedule" in caplog.text

    @pytest.mark.asyncio
    async def test_retarget_failure_releases_existing_schedule(self, platform, schedules):
        sub = platform.add_subscription("enterprise", "monthly")
        existing = platform.add_schedule(sub.id, "price_pro_monthly")
        sub = platform.subscriptions[sub.id]
        platform.failures["update_schedule"] = StripeError(message="phase rejected")

        with pytest.raises(SchedulingFailedError) as exc_info:
            await schedules.upsert_schedule(
                sub, "price_enterprise_monthly", "price_basic_monthly", sub.current_period_end, {}
            )

        assert exc_info.value.context["schedule_id"] == existing.id
        assert "create_schedule" not in platform.call_names()
        assert platform.schedules[existing.id].status == "released"
        assert platform.attached_schedules(sub.id) == []
        assert platform.subscriptions[sub.id].schedule_id is None

    @pytest.mark.asyncio
    async def test_retarget_failure_keeps_trial_end(self, platform, schedules):
        sub = platform.add_trial_subscription("pro", "monthly")
        existing = platform.add_schedule(sub.id, "price_basic_monthly", trial_end=sub.trial_end)
        sub = platform.subscriptions[sub.id]
        platform.failures["update_schedule"] = StripeError(message="phase rejected")
        platform.trial_end_after_release = NOW + timedelta(days=1)

        with pytest.raises(SchedulingFailedError):
            await schedules.upsert_schedule(
                sub,
                "price_pro_monthly",
                "price_basic_annual",
                sub.current_period_end,
                {},
                trial_end=sub.trial_end,
            )

        assert platform.schedules[existing.id].status == "released"
        assert platform.subscriptions[sub.id].trial_end == sub.trial_end

    @pytest.mark.asyncio
    async def test_failed_stale_release_is_logged(self, platform, schedules, caplog):
        sub = platform.add_subscription("enterprise", "monthly")
        existing = platform.add_schedule(sub.id, "price_pro_monthly")
        sub = platform.subscriptions[sub.id]
        platform.failures["update_schedule"] = StripeError(message="phase rejected")
        platform.failures["release_schedule"] = StripeError(message="release failed")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(SchedulingFailedError):
                await schedules.upsert_schedule(
                    sub, "price_enterprise_monthly", "price_basic_monthly", sub.current_period_end, {}
                )

        assert f"stale schedule {existing.id}" in caplog.text


class TestReleaseSchedule:
    @pytest.mark.asyncio
    async def test_release_returns_refreshed_subscription(self, platform, schedules):
        sub = platform.add_subscription()
        schedule = platform.add_schedule(sub.id, "price_basic_monthly")

        refreshed = await schedules.release_schedule(sub, schedule.id)

        assert refreshed.schedule_id is None
        assert platform.call_names() == ["release_schedule", "retrieve_subscription"]

    @pytest.mark.asyncio
    async def test_trial_end_reasserted_after_drift(self, platform, schedules):
        sub = platform.add_trial_subscription()
        schedule = platform.add_schedule(sub.id, "price_basic_monthly", trial_end=sub.trial_end)
        platform.trial_end_after_release = NOW + timedelta(days=1)

        refreshed = await schedules.release_schedule(sub, schedule.id, trial_end=sub.trial_end)

        assert refreshed.trial_end == sub.trial_end
        _, update = platform.updates[-1]
        assert update.trial_end == sub.trial_end
        assert update.proration_behavior == "none"

    @pytest.mark.asyncio
    async def test_no_update_when_trial_end_intact(self, platform, schedules):
        sub = platform.add_trial_subscription()
        schedule = platform.add_schedule(sub.id, "price_basic_monthly", trial_end=sub.trial_end)

        await schedules.release_schedule(sub, schedule.id, trial_end=sub.trial_end)

        assert "update_subscription" not in platform.call_names()

    @pytest.mark.asyncio
    async def test_release_if_attached_without_schedule_is_noop(self, platform, schedules):
        sub = platform.add_subscription()

        result = await schedules.release_if_attached(sub, None)

        assert result is sub
        assert platform.calls == []
