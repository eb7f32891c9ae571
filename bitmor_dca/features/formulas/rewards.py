"""
Reward weighting for batch distribution.

Weights blend three inputs: streak length, committed principal and the plan's
maximum penalty (declared commitment strength). The coefficients are operator
policy. Every coefficient is non-negative and every step floors, so the result
is monotone non-decreasing in each input.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from bitmor_dca.core.errors import ValidationError
from bitmor_dca.models.plan import PlanStatus

RAY = 10**27


@dataclass(frozen=True)
class RewardPolicy:
    milestone_days: int = 7
    streak_coefficient: int = 100
    commitment_divisor: int = 1000  # whole source units per weight point
    penalty_coefficient: int = 1
    reward_scale: int = 1000
    reward_unit: int = 1  # target-asset units per reward point
    source_decimals: int = 6

    def __post_init__(self):
        if self.milestone_days <= 0 or self.commitment_divisor <= 0 or self.reward_scale <= 0:
            raise ValidationError("Reward policy divisors must be positive")
        if min(self.streak_coefficient, self.penalty_coefficient, self.reward_unit) < 0:
            raise ValidationError("Reward policy coefficients must be non-negative")

    def is_eligible(self, streak: int) -> bool:
        return streak > 0 and streak % self.milestone_days == 0

    def weight(self, streak: int, committed_principal: int, penalty_max_bps: int) -> int:
        whole_units = max(0, committed_principal) // (10**self.source_decimals)
        return (
            max(0, streak) * self.streak_coefficient
            + whole_units // self.commitment_divisor
            + max(0, penalty_max_bps) * self.penalty_coefficient
        )

    def reward(self, streak: int, committed_principal: int, penalty_max_bps: int) -> int:
        if not self.is_eligible(streak):
            return 0
        return (self.weight(streak, committed_principal, penalty_max_bps) // self.reward_scale) * self.reward_unit


def yield_boost(reward: int, liquidity_rate_ray: int) -> int:
    """Pass-through of lending-market yield on top of a reward."""
    return reward * max(0, liquidity_rate_ray) // RAY


@dataclass(frozen=True)
class RewardCandidate:
    account: str
    streak: int
    committed_principal: int
    penalty_max_bps: int


@dataclass
class RewardBatch:
    accounts: List[str] = field(default_factory=list)
    amounts: List[int] = field(default_factory=list)
    boosts: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.amounts)

    def __len__(self) -> int:
        return len(self.accounts)


def candidates_from_store(store, penalty_max_for: Optional[Callable[[str], int]] = None, default_penalty_max: int = 5000) -> List[RewardCandidate]:
    """Read active plans out of a ledger store."""
    candidates = []
    for account, plan in store.iter_plans():
        if plan.status != PlanStatus.ACTIVE:
            continue
        penalty_max = penalty_max_for(account) if penalty_max_for else default_penalty_max
        candidates.append(
            RewardCandidate(
                account=account,
                streak=plan.streak,
                committed_principal=plan.total_paid,
                penalty_max_bps=penalty_max,
            )
        )
    return candidates


def plan_distribution(
    candidates: Iterable[RewardCandidate],
    rewards_pool: int,
    policy: Optional[RewardPolicy] = None,
    liquidity_rate_ray: int = 0,
) -> RewardBatch:
    """Build a batch whose cumulative amount never exceeds ``rewards_pool``."""
    policy = policy or RewardPolicy()
    batch = RewardBatch()
    remaining = rewards_pool
    for candidate in candidates:
        amount = policy.reward(candidate.streak, candidate.committed_principal, candidate.penalty_max_bps)
        if amount <= 0 or amount > remaining:
            continue
        batch.accounts.append(candidate.account)
        batch.amounts.append(amount)
        batch.boosts.append(yield_boost(amount, liquidity_rate_ray))
        remaining -= amount
    return batch
