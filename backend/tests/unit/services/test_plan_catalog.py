"""
Unit tests for the plan catalog.

WHY: Every lifecycle decision depends on price <-> plan lookups and on the
tier/interval ordering, so both directions and the ordering are pinned here.
"""

import pytest

from formbuilder.core.exceptions import CatalogConfigurationError, UnknownPlanOrIntervalError
from formbuilder.services.plan_catalog import (
    BillingInterval,
    PlanCatalog,
    PlanTier,
    interval_index,
    is_hipaa_enabled,
    parse_interval,
    parse_plan,
    tier_index,
)

from tests.fakes import PRICES


class TestOrdering:
    def test_tiers_ascend_basic_pro_enterprise(self):
        assert tier_index(PlanTier.BASIC) < tier_index(PlanTier.PRO) < tier_index(PlanTier.ENTERPRISE)

    def test_annual_outranks_monthly(self):
        assert interval_index(BillingInterval.ANNUAL) > interval_index(BillingInterval.MONTHLY)


class TestParsing:
    def test_parse_plan_is_case_insensitive(self):
        assert parse_plan("Pro") == PlanTier.PRO

    def test_parse_plan_rejects_free(self):
        with pytest.raises(UnknownPlanOrIntervalError):
            parse_plan("free")

    def test_parse_interval_rejects_unknown(self):
        with pytest.raises(UnknownPlanOrIntervalError) as exc_info:
            parse_interval("weekly")
        assert exc_info.value.status_code == 400

    def test_parse_interval_rejects_none(self):
        with pytest.raises(UnknownPlanOrIntervalError):
            parse_interval(None)


class TestPlanCatalog:
    def test_price_id_lookup(self, catalog):
        assert catalog.price_id(PlanTier.PRO, BillingInterval.ANNUAL) == "price_pro_annual"

    def test_reverse_lookup(self, catalog):
        assert catalog.lookup_price("price_basic_monthly") == (PlanTier.BASIC, BillingInterval.MONTHLY)

    def test_reverse_lookup_unknown_price(self, catalog):
        assert catalog.lookup_price("price_legacy") is None
        assert catalog.lookup_price(None) is None

    def test_unset_prices_are_absent(self):
        catalog = PlanCatalog({("basic", "monthly"): "price_b", ("basic", "annual"): None})

        assert catalog.has_price(PlanTier.BASIC, BillingInterval.MONTHLY)
        assert not catalog.has_price(PlanTier.BASIC, BillingInterval.ANNUAL)
        with pytest.raises(UnknownPlanOrIntervalError):
            catalog.price_id(PlanTier.BASIC, BillingInterval.ANNUAL)

    def test_duplicate_price_ids_rejected(self):
        with pytest.raises(CatalogConfigurationError) as exc_info:
            PlanCatalog({("basic", "monthly"): "price_same", ("pro", "monthly"): "price_same"})

        assert exc_info.value.status_code == 500
        assert exc_info.value.context["price_id"] == "price_same"

    def test_plans_ordered_by_tier_then_interval(self, catalog):
        plans = catalog.plans()

        assert len(plans) == len(PRICES)
        assert [(p.plan.value, p.interval.value) for p in plans[:2]] == [
            ("basic", "monthly"),
            ("basic", "annual"),
        ]
        assert plans[-1].plan == PlanTier.ENTERPRISE


class TestHipaa:
    @pytest.mark.parametrize("plan,expected", [
        ("basic", False),
        ("pro", True),
        ("enterprise", True),
        ("free", False),
        (None, False),
    ])
    def test_hipaa_enabled_for_pro_and_enterprise(self, plan, expected):
        assert is_hipaa_enabled(plan) is expected
