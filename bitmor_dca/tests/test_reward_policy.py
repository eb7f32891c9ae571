import pytest

from bitmor_dca.core.errors import ValidationError
from bitmor_dca.features.formulas.rewards import (
    RAY,
    RewardCandidate,
    RewardPolicy,
    candidates_from_store,
    plan_distribution,
    yield_boost,
)
from bitmor_dca.features.ledger.store import LedgerStore
from bitmor_dca.models.plan import PlanStatus


def test_eligible_only_on_weekly_milestones():
    policy = RewardPolicy()
    assert policy.is_eligible(7)
    assert policy.is_eligible(14)
    assert not policy.is_eligible(0)
    assert not policy.is_eligible(6)
    assert not policy.is_eligible(8)


def test_default_weighting():
    policy = RewardPolicy()
    # 7 * 100 + (2_500_000 USDC // 1000) + 5000
    assert policy.weight(7, 2_500_000 * 10**6, 5000) == 700 + 2500 + 5000
    assert policy.reward(7, 2_500_000 * 10**6, 5000) == 8
    assert policy.reward(6, 2_500_000 * 10**6, 5000) == 0


def test_reward_is_monotone_in_each_input():
    policy = RewardPolicy()
    base = policy.reward(14, 10**12, 1000)
    assert policy.reward(21, 10**12, 1000) >= base
    assert policy.reward(14, 10**13, 1000) >= base
    assert policy.reward(14, 10**12, 5000) >= base


def test_policy_rejects_negative_coefficients():
    with pytest.raises(ValidationError):
        RewardPolicy(streak_coefficient=-1)
    with pytest.raises(ValidationError):
        RewardPolicy(reward_scale=0)


def test_yield_boost_uses_ray_rate():
    assert yield_boost(1000, RAY // 20) == 50
    assert yield_boost(1000, 0) == 0


def test_distribution_never_exceeds_pool():
    candidates = [RewardCandidate(f"0x{i:040x}", 7, 0, 5000) for i in range(1, 5)]
    batch = plan_distribution(candidates, rewards_pool=12)

    assert len(batch) == 2
    assert batch.amounts == [5, 5]
    assert batch.total <= 12


def test_distribution_skips_ineligible_and_adds_boost():
    candidates = [
        RewardCandidate("0x" + "01" * 20, 7, 0, 5000),
        RewardCandidate("0x" + "02" * 20, 3, 0, 5000),
    ]
    batch = plan_distribution(candidates, rewards_pool=100, liquidity_rate_ray=RAY)

    assert batch.accounts == ["0x" + "01" * 20]
    assert batch.boosts == [5]


def test_candidates_only_from_active_plans():
    store = LedgerStore()
    store.plan("0xA").status = PlanStatus.ACTIVE
    store.plan("0xA").streak = 7
    store.plan("0xB").status = PlanStatus.EARLY_EXIT

    candidates = candidates_from_store(store, default_penalty_max=1234)

    assert [c.account for c in candidates] == ["0xA"]
    assert candidates[0].penalty_max_bps == 1234
