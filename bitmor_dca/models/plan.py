from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

SECONDS_PER_DAY = 86_400


class Cadence(IntEnum):
    """Declared payment frequency (wire value is the uint8)."""

    DAILY = 0
    WEEKLY = 1

    @property
    def grace_days(self) -> int:
        return 7 if self is Cadence.DAILY else 21

    @property
    def interval_seconds(self) -> int:
        return SECONDS_PER_DAY if self is Cadence.DAILY else 7 * SECONDS_PER_DAY


class PlanStatus(IntEnum):
    INACTIVE = 0
    ACTIVE = 1
    PAUSED = 2
    COMPLETED = 3
    EARLY_EXIT = 4


@dataclass
class UserPlan:
    """
    Commitment record for one account. Amounts are raw fixed-point integers:
    principal in source-asset units, accumulation in target-asset units.
    """

    total_paid: int = 0
    btc_accumulated: int = 0
    target_btc: int = 0
    daily_amount: int = 0
    start_time: int = 0
    last_payment_time: int = 0  # 0 means no payment yet
    streak: int = 0
    max_streak: int = 0
    prepaid_days: int = 0
    withdrawal_delay: int = 0  # days
    time_period: int = 0  # days
    cadence: Cadence = Cadence.DAILY
    status: PlanStatus = PlanStatus.INACTIVE
    bitmor_enabled: bool = False
    threshold_reached: bool = False
    principal_locked: int = 0

    @property
    def end_time(self) -> int:
        return self.start_time + self.time_period * SECONDS_PER_DAY

    @property
    def withdrawal_unlock_time(self) -> int:
        return self.start_time + self.withdrawal_delay * SECONDS_PER_DAY

    def to_dict(self) -> dict:
        return {
            "totalPaid": self.total_paid,
            "btcAccumulated": self.btc_accumulated,
            "targetBTC": self.target_btc,
            "dailyAmount": self.daily_amount,
            "startTime": self.start_time,
            "lastPaymentTime": self.last_payment_time,
            "streak": self.streak,
            "maxStreak": self.max_streak,
            "prepaidDays": self.prepaid_days,
            "withdrawalDelay": self.withdrawal_delay,
            "timePeriod": self.time_period,
            "cadence": self.cadence.name,
            "status": self.status.name,
            "bitmorEnabled": self.bitmor_enabled,
            "thresholdReached": self.threshold_reached,
            "principalLocked": self.principal_locked,
        }


@dataclass
class UserExtras:
    reward_balance: int = 0
    dust_balance: int = 0
    yield_boost: int = 0
    last_reward_claim: int = 0
    reward_weight: int = 0

    def to_dict(self) -> dict:
        return {
            "rewardBalance": self.reward_balance,
            "dustBalance": self.dust_balance,
            "yieldBoost": self.yield_boost,
            "lastRewardClaim": self.last_reward_claim,
            "rewardWeight": self.reward_weight,
        }


@dataclass(frozen=True)
class PlanTerms:
    """Off-chain plan configuration the coordinator prices penalties with."""

    penalty_min_bps: int = 100
    penalty_max_bps: int = 5000
    penalty_exponent: float = 1.5
