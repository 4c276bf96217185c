"""
Plan/interval catalog.

WHAT: Maps (plan tier, billing interval) pairs to Stripe price IDs and back,
and defines the ordering used to tell upgrades from downgrades.

WHY: Every lifecycle decision starts from "which plan is this price?" or
"which price is this plan?". Both directions come from one table built from
settings, so a price change is a configuration change, not a code change.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from formbuilder.core.config import settings
from formbuilder.core.exceptions import CatalogConfigurationError, UnknownPlanOrIntervalError

logger = logging.getLogger(__name__)


class PlanTier(str, enum.Enum):
    """Paid plan tiers, in ascending order."""

    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class BillingInterval(str, enum.Enum):
    """Billing intervals, in ascending order (annual is the upgrade)."""

    MONTHLY = "monthly"
    ANNUAL = "annual"


_TIER_ORDER = (PlanTier.BASIC, PlanTier.PRO, PlanTier.ENTERPRISE)
_INTERVAL_ORDER = (BillingInterval.MONTHLY, BillingInterval.ANNUAL)

# Tiers that include HIPAA data handling
HIPAA_TIERS = frozenset({PlanTier.PRO, PlanTier.ENTERPRISE})

# Plan reported for customers without a live subscription
FREE_PLAN = "free"


def tier_index(plan: PlanTier) -> int:
    return _TIER_ORDER.index(plan)


def interval_index(interval: BillingInterval) -> int:
    return _INTERVAL_ORDER.index(interval)


def is_hipaa_enabled(plan: Optional[str]) -> bool:
    return plan in {tier.value for tier in HIPAA_TIERS}


def parse_plan(value: Optional[str]) -> PlanTier:
    """
    Parse a raw plan name.

    Raises:
        UnknownPlanOrIntervalError: If the value isn't a paid plan
    """
    try:
        return PlanTier((value or "").lower())
    except ValueError:
        raise UnknownPlanOrIntervalError(message=f"Invalid plan: {value}", plan=value)


def parse_interval(value: Optional[str]) -> BillingInterval:
    """
    Parse a raw billing interval.

    Raises:
        UnknownPlanOrIntervalError: If the value isn't monthly or annual
    """
    try:
        return BillingInterval((value or "").lower())
    except ValueError:
        raise UnknownPlanOrIntervalError(message=f"Invalid interval: {value}", interval=value)


@dataclass(frozen=True)
class PlanPrice:
    """One purchasable plan/interval pair."""

    plan: PlanTier
    interval: BillingInterval
    price_id: str


class PlanCatalog:
    """
    Bidirectional plan/interval <-> price ID table.

    WHY: Reverse lookups (live price -> plan) are only sound if every price
    ID appears once, so duplicates are rejected when the catalog is built.
    """

    def __init__(self, prices: Mapping[Tuple[str, str], Optional[str]]):
        """
        Build the catalog.

        Args:
            prices: Price IDs keyed by (plan, interval); None entries are skipped

        Raises:
            CatalogConfigurationError: If a price ID is used twice
            UnknownPlanOrIntervalError: If a key names an unknown plan or interval
        """
        self._by_key: Dict[Tuple[PlanTier, BillingInterval], str] = {}
        self._by_price: Dict[str, Tuple[PlanTier, BillingInterval]] = {}

        for (plan_name, interval_name), price_id in prices.items():
            if not price_id:
                continue
            key = (parse_plan(plan_name), parse_interval(interval_name))
            if price_id in self._by_price:
                existing = self._by_price[price_id]
                raise CatalogConfigurationError(
                    message=f"Price {price_id} is configured for more than one plan",
                    price_id=price_id,
                    plans=[f"{p.value}/{i.value}" for p, i in (existing, key)],
                )
            self._by_key[key] = price_id
            self._by_price[price_id] = key

        logger.debug(f"Plan catalog loaded with {len(self._by_key)} prices")

    def price_id(self, plan: PlanTier, interval: BillingInterval) -> str:
        """
        Price ID for a plan/interval pair.

        Raises:
            UnknownPlanOrIntervalError: If the pair has no configured price
        """
        try:
            return self._by_key[(plan, interval)]
        except KeyError:
            raise UnknownPlanOrIntervalError(
                plan=getattr(plan, "value", plan),
                interval=getattr(interval, "value", interval),
            )

    def has_price(self, plan: PlanTier, interval: BillingInterval) -> bool:
        return (plan, interval) in self._by_key

    def lookup_price(self, price_id: Optional[str]) -> Optional[Tuple[PlanTier, BillingInterval]]:
        """Plan/interval a price ID belongs to, or None for unknown prices."""
        if not price_id:
            return None
        return self._by_price.get(price_id)

    def plans(self) -> List[PlanPrice]:
        """All configured prices, ordered by tier then interval."""
        return [
            PlanPrice(plan=plan, interval=interval, price_id=self._by_key[(plan, interval)])
            for plan in _TIER_ORDER
            for interval in _INTERVAL_ORDER
            if (plan, interval) in self._by_key
        ]


_plan_catalog: Optional[PlanCatalog] = None


def get_plan_catalog() -> PlanCatalog:
    """Get or create the catalog built from settings."""
    global _plan_catalog

    if _plan_catalog is None:
        _plan_catalog = PlanCatalog(settings.stripe_price_table)

    return _plan_catalog
