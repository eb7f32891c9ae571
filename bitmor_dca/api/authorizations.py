from __future__ import annotations

from dataclasses import replace
from typing import List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bitmor_dca.core.errors import ValidationError
from bitmor_dca.features.authorization.coordinator import AuthorizationCoordinator
from bitmor_dca.models.plan import Cadence, PlanTerms
from bitmor_dca.runtime import get_coordinator

router = APIRouter(prefix="/v1/authorizations")

UINT128_MAX = 2**128 - 1
UINT32_MAX = 2**32 - 1


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountRequest(_Request):
    account: str = Field(..., min_length=42, max_length=42)


class CreatePlanRequest(AccountRequest):
    target_btc: int = Field(..., gt=0, le=UINT128_MAX, alias="targetBTC")
    daily_amount: int = Field(..., gt=0, le=UINT128_MAX)
    time_period: int = Field(..., gt=0, le=UINT32_MAX)
    withdrawal_delay: int = Field(..., gt=0, le=UINT32_MAX)
    cadence: Union[int, str] = "DAILY"
    bitmor_enabled: bool = False
    penalty_min: Optional[int] = None
    penalty_max: Optional[int] = None
    penalty_exponent: Optional[float] = None


class PaymentRequest(AccountRequest):
    uses_prepaid: bool = False


class PrepayRequest(AccountRequest):
    days: int = Field(..., gt=0, le=UINT32_MAX)


class DustSweepRequest(AccountRequest):
    token_amounts: List[int]
    tokens: List[str]
    expected_btc: int = Field(..., ge=0, le=UINT128_MAX, alias="expectedBTC")


class RewardDistributionRequest(_Request):
    operator: str = Field(..., min_length=42, max_length=42)


def _plan_terms(body: CreatePlanRequest, default: PlanTerms) -> PlanTerms:
    """Requested penalty curve; omitted fields fall back to the default curve."""
    overrides = {}
    if body.penalty_min is not None:
        overrides["penalty_min_bps"] = body.penalty_min
    if body.penalty_max is not None:
        overrides["penalty_max_bps"] = body.penalty_max
    if body.penalty_exponent is not None:
        overrides["penalty_exponent"] = body.penalty_exponent
    return replace(default, **overrides)


def _parse_cadence(value: Union[int, str]) -> Cadence:
    try:
        if isinstance(value, str):
            return Cadence[value.upper()]
        return Cadence(value)
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown cadence: {value}")


@router.post("/create-plan")
def authorize_create_plan(body: CreatePlanRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    authorization = coordinator.quote_create_plan(
        body.account,
        body.target_btc,
        body.daily_amount,
        body.time_period,
        body.withdrawal_delay,
        _parse_cadence(body.cadence),
        body.bitmor_enabled,
        _plan_terms(body, coordinator.terms.default),
    )
    return authorization.to_dict()


@router.post("/payment")
def authorize_payment(body: PaymentRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    quote = coordinator.quote_payment(body.account, body.uses_prepaid)
    return {
        **quote.authorization.to_dict(),
        "quote": {
            "usdcAmount": quote.usdc_amount,
            "btcAmount": quote.btc_amount,
            "usesPrepaid": quote.uses_prepaid,
            "price": quote.price,
        },
    }


@router.post("/prepay")
def authorize_prepay(body: PrepayRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    return coordinator.quote_prepay_days(body.account, body.days).to_dict()


@router.post("/early-withdrawal")
def authorize_early_withdrawal(body: AccountRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    quote = coordinator.quote_early_withdrawal(body.account)
    return {
        **quote.authorization.to_dict(),
        "quote": {
            "penaltyBps": quote.penalty.bps,
            "btcAmount": quote.penalty.gross_amount,
            "penalty": quote.penalty.penalty_amount,
            "netAmount": quote.penalty.net_amount,
            "daysRemaining": quote.penalty.days_remaining,
        },
    }


@router.post("/complete")
def authorize_completion(body: AccountRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    return coordinator.quote_completion(body.account).to_dict()


@router.post("/threshold")
def authorize_threshold(body: AccountRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    return coordinator.quote_threshold(body.account).to_dict()


@router.post("/dust-sweep")
def authorize_dust_sweep(body: DustSweepRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    return coordinator.quote_dust_sweep(body.account, body.token_amounts, body.tokens, body.expected_btc).to_dict()


@router.post("/reward-distribution")
def authorize_reward_distribution(
    body: RewardDistributionRequest, coordinator: AuthorizationCoordinator = Depends(get_coordinator)
):
    """Batch computed from ledger state; empty batches come back unsigned."""
    planned = coordinator.plan_reward_distribution(body.operator)
    return {
        "authorization": planned.authorization.to_dict() if planned.authorization else None,
        "users": planned.batch.accounts,
        "rewardAmounts": planned.batch.amounts,
        "yieldBoosts": planned.batch.boosts,
        "total": planned.batch.total,
    }
