"""
bitmor_dca/models/events.py

Events emitted by the ledger. Names and camelCase payload keys are the
compatibility surface for downstream indexers.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class LedgerEvent(BaseModel):
    """Base event model. ``sequence`` is assigned by the event log."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    event_type: str
    user: Optional[str] = None
    timestamp: int
    sequence: int = 0

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"event_type", "sequence", "timestamp"})


class PlanCreated(LedgerEvent):
    event_type: str = "PlanCreated"
    target_btc: int = Field(alias="targetBTC")
    daily_amount: int
    time_period: int
    cadence: int
    bitmor_enabled: bool


class PaymentProcessed(LedgerEvent):
    event_type: str = "PaymentProcessed"
    usdc_amount: int
    btc_amount: int
    streak: int
    uses_prepaid: bool


class DaysPrepaid(LedgerEvent):
    event_type: str = "DaysPrepaid"
    usdc_amount: int
    days: int
    prepaid_days: int


class EarlyWithdrawal(LedgerEvent):
    event_type: str = "EarlyWithdrawal"
    btc_amount: int
    penalty: int
    days_remaining: int


class PlanCompleted(LedgerEvent):
    event_type: str = "PlanCompleted"
    btc_amount: int
    total_paid: int


class ThresholdReached(LedgerEvent):
    event_type: str = "ThresholdReached"
    btc_amount: int
    loan_amount: int


class RewardsDistributed(LedgerEvent):
    event_type: str = "RewardsDistributed"
    reward_amount: int
    yield_boost: int


class RewardsClaimed(LedgerEvent):
    event_type: str = "RewardsClaimed"
    amount: int


class DustSwept(LedgerEvent):
    event_type: str = "DustSwept"
    dust_amount: int
    btc_amount: int


class AdminAction(LedgerEvent):
    """Paused, Unpaused, PlanPaused, PlanResumed, TrustedSignerUpdated, ..."""
    details: Dict[str, Any] = Field(default_factory=dict)
