"""
Change classifier.

WHAT: Decides which lifecycle branch a plan or interval change request takes.

WHY: The same request ("move me to basic/monthly") means different things
depending on state: during a trial it applies immediately without charge,
as an upgrade it is invoiced now, as a downgrade it waits for the period
end, and if it matches what the customer already has it undoes a pending
change.

Classification order:
1. Target equals effective state: cancel the pending change, or reject
2. Trial: always an immediate, unbilled change
3. Upgrade: immediate and invoiced; downgrade: deferred to period end

Direction: a plan change compares tiers. An interval change on the same
plan compares intervals, and annual always outranks monthly regardless of
tier.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from formbuilder.core.exceptions import NoChangeRequestedError
from formbuilder.services.plan_catalog import (
    BillingInterval,
    PlanTier,
    interval_index,
    tier_index,
)
from formbuilder.services.subscription_state import ResolvedState


class ChangeKind(str, enum.Enum):
    TRIAL_CHANGE = "trial_change"
    IMMEDIATE_UPGRADE = "immediate_upgrade"
    DEFERRED_DOWNGRADE = "deferred_downgrade"
    CANCEL_PENDING_CHANGE = "cancel_pending_change"


class ChangeDirection(str, enum.Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    NONE = "none"


@dataclass(frozen=True)
class ChangeRequest:
    """
    A requested plan/interval change.

    Absent fields mean "unchanged". interval_axis marks a change-interval
    request, which compares intervals only and never the plan tier.
    """

    target_plan: Optional[PlanTier] = None
    target_interval: Optional[BillingInterval] = None
    interval_axis: bool = False


@dataclass(frozen=True)
class ChangeDecision:
    kind: ChangeKind
    target_plan: PlanTier
    target_interval: BillingInterval
    direction: ChangeDirection


def change_direction(
    state: ResolvedState,
    target_plan: PlanTier,
    target_interval: BillingInterval,
    interval_axis: bool = False,
) -> ChangeDirection:
    """
    Direction of a change relative to the effective plan.

    Args:
        state: Resolved subscription state
        target_plan: Requested plan
        target_interval: Requested interval
        interval_axis: Compare intervals only

    Returns:
        UPGRADE, DOWNGRADE, or NONE when nothing differs
    """
    if not interval_axis and target_plan != state.effective_plan:
        if tier_index(target_plan) > tier_index(state.effective_plan):
            return ChangeDirection.UPGRADE
        return ChangeDirection.DOWNGRADE

    if target_interval == state.effective_interval:
        return ChangeDirection.NONE
    if interval_index(target_interval) > interval_index(state.effective_interval):
        return ChangeDirection.UPGRADE
    return ChangeDirection.DOWNGRADE


def classify_change(state: ResolvedState, request: ChangeRequest) -> ChangeDecision:
    """
    Classify a change request.

    Args:
        state: Resolved subscription state
        request: Requested change

    Returns:
        ChangeDecision naming the branch and the resolved target

    Raises:
        NoChangeRequestedError: If the target matches the effective state
            and no pending change exists
    """
    if request.interval_axis:
        # Plan is held at what the customer is billed for now
        target_plan = state.current_plan
    else:
        target_plan = request.target_plan or state.effective_plan
    target_interval = request.target_interval or state.effective_interval

    direction = change_direction(state, target_plan, target_interval, request.interval_axis)

    if direction == ChangeDirection.NONE:
        if state.has_pending_change:
            kind = ChangeKind.CANCEL_PENDING_CHANGE
        else:
            raise NoChangeRequestedError(
                plan=target_plan.value,
                interval=target_interval.value,
            )
    elif state.is_trial:
        kind = ChangeKind.TRIAL_CHANGE
    elif direction == ChangeDirection.UPGRADE:
        kind = ChangeKind.IMMEDIATE_UPGRADE
    else:
        kind = ChangeKind.DEFERRED_DOWNGRADE

    return ChangeDecision(
        kind=kind,
        target_plan=target_plan,
        target_interval=target_interval,
        direction=direction,
    )
