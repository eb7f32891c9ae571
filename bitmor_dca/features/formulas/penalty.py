"""
Early-withdrawal penalty curve.

    fracLeft   = max(0, timeRemaining) / totalPlannedTime
    penaltyBps = floor(penaltyMin + (penaltyMax - penaltyMin) * fracLeft ** exponent)

The float arithmetic and final floor match what the signing backend has always
produced, so quotes stay bit-for-bit reproducible.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from bitmor_dca.core.errors import ValidationError
from bitmor_dca.models.plan import SECONDS_PER_DAY, PlanTerms, UserPlan

BPS_DENOMINATOR = 10_000
DEFAULT_PENALTY_MIN_BPS = 100
DEFAULT_PENALTY_MAX_BPS = 5000
DEFAULT_PENALTY_EXPONENT = 1.5


def _validate_bounds(penalty_min: int, penalty_max: int, exponent: float) -> None:
    if penalty_min < 0 or penalty_max > BPS_DENOMINATOR or penalty_min > penalty_max:
        raise ValidationError("Invalid penalty configuration")
    if exponent <= 0:
        raise ValidationError("Penalty exponent must be positive")


def penalty_bps(
    time_remaining: int,
    total_time: int,
    *,
    penalty_min: int = DEFAULT_PENALTY_MIN_BPS,
    penalty_max: int = DEFAULT_PENALTY_MAX_BPS,
    exponent: float = DEFAULT_PENALTY_EXPONENT,
) -> int:
    """Penalty in basis points for ``time_remaining`` of ``total_time`` seconds."""
    _validate_bounds(penalty_min, penalty_max, exponent)
    if total_time <= 0:
        raise ValidationError("Total planned time must be positive")

    remaining = min(max(0, time_remaining), total_time)
    if remaining == 0:
        return penalty_min

    frac_left = remaining / total_time
    penalty = penalty_min + (penalty_max - penalty_min) * math.pow(frac_left, exponent)
    return math.floor(penalty)


def penalty_bps_at(
    start_time: int,
    end_time: int,
    current_time: int,
    *,
    penalty_min: int = DEFAULT_PENALTY_MIN_BPS,
    penalty_max: int = DEFAULT_PENALTY_MAX_BPS,
    exponent: float = DEFAULT_PENALTY_EXPONENT,
) -> int:
    """Same curve keyed on wall-clock times; past the end it is ``penalty_min``."""
    if current_time >= end_time:
        _validate_bounds(penalty_min, penalty_max, exponent)
        return penalty_min
    return penalty_bps(
        end_time - current_time,
        end_time - start_time,
        penalty_min=penalty_min,
        penalty_max=penalty_max,
        exponent=exponent,
    )


def penalty_amount(gross_amount: int, bps: int) -> int:
    return gross_amount * bps // BPS_DENOMINATOR


def penalty_within_bounds(gross_amount: int, penalty: int, penalty_min: int, penalty_max: int) -> bool:
    """Ledger-side bound check: ``penalty / gross`` lies in [min, max] bps."""
    if penalty > gross_amount:
        return False
    scaled = penalty * BPS_DENOMINATOR
    return gross_amount * penalty_min <= scaled + BPS_DENOMINATOR - 1 and scaled <= gross_amount * penalty_max


@dataclass(frozen=True)
class PenaltyQuote:
    bps: int
    gross_amount: int
    penalty_amount: int
    net_amount: int
    time_remaining: int
    days_remaining: int


def quote_penalty(plan: UserPlan, now: int, terms: PlanTerms) -> PenaltyQuote:
    """Price an early exit of everything the plan has accumulated."""
    total_time = plan.time_period * SECONDS_PER_DAY
    time_remaining = max(0, plan.end_time - now)
    bps = penalty_bps(
        time_remaining,
        total_time,
        penalty_min=terms.penalty_min_bps,
        penalty_max=terms.penalty_max_bps,
        exponent=terms.penalty_exponent,
    )
    gross = plan.btc_accumulated
    penalty = penalty_amount(gross, bps)
    return PenaltyQuote(
        bps=bps,
        gross_amount=gross,
        penalty_amount=penalty,
        net_amount=gross - penalty,
        time_remaining=time_remaining,
        days_remaining=time_remaining // SECONDS_PER_DAY,
    )
