from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from bitmor_dca.models.plan import SECONDS_PER_DAY, UserPlan

StreakOutcome = Literal["first", "kept", "reset", "prepaid"]


@dataclass(frozen=True)
class StreakUpdate:
    streak: int
    max_streak: int
    prepaid_days: int
    outcome: StreakOutcome


def apply_payment_streak(plan: UserPlan, now: int, uses_prepaid: bool = False) -> StreakUpdate:
    """Streak state after one accepted payment.

    A prepaid cycle consumes a prepaid day and leaves the streak untouched.
    Otherwise the grace window is inclusive: a payment exactly ``grace_days``
    after the previous one keeps the streak, one second later resets it to 1.
    """
    if uses_prepaid and plan.prepaid_days > 0:
        return StreakUpdate(plan.streak, plan.max_streak, plan.prepaid_days - 1, "prepaid")

    if plan.last_payment_time == 0:
        streak, outcome = plan.streak + 1, "first"
    elif now - plan.last_payment_time <= plan.cadence.grace_days * SECONDS_PER_DAY:
        streak, outcome = plan.streak + 1, "kept"
    else:
        streak, outcome = 1, "reset"

    return StreakUpdate(streak, max(plan.max_streak, streak), plan.prepaid_days, outcome)


def next_payment_due(plan: UserPlan) -> int:
    """Earliest time the next cadence payment is expected (0 when none made)."""
    if plan.last_payment_time == 0:
        return 0
    return plan.last_payment_time + plan.cadence.interval_seconds


def is_payment_due(plan: UserPlan, now: int) -> bool:
    return now >= next_payment_due(plan)
