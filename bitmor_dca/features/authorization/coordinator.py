"""
Authorization coordinator.

Holds the trusted signing key and issues single-use authorizations for ledger
operations. The ``sign_*`` methods sign whatever parameters they are given; the
``quote_*`` methods first compute those parameters from ledger state, the price
oracle and the eligibility service, and refuse to sign when the ledger would
reject the operation anyway.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from bitmor_dca.core.errors import IntegrationError, PreconditionError, SignerNotConfiguredError, ValidationError
from bitmor_dca.core.logging import log_event
from bitmor_dca.features.authorization.encoding import OperationKind, normalize_address, operation_digest
from bitmor_dca.features.authorization.nonces import issue_nonce
from bitmor_dca.features.authorization.signing import MessageSigner, recover_signer
from bitmor_dca.features.authorization.terms import PlanTermsRegistry
from bitmor_dca.features.formulas.penalty import PenaltyQuote, quote_penalty
from bitmor_dca.features.formulas.rewards import RewardBatch, RewardPolicy, candidates_from_store, plan_distribution
from bitmor_dca.features.formulas.streaks import is_payment_due, next_payment_due
from bitmor_dca.features.integrations.base import EligibilityService, LendingMarket, PriceOracle
from bitmor_dca.models.plan import PlanStatus, PlanTerms


@dataclass(frozen=True)
class Authorization:
    operation: str
    account: str
    params: Dict[str, Any]
    nonce: str
    signature: str
    digest: str

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "account": self.account,
            "params": self.params,
            "nonce": self.nonce,
            "signature": self.signature,
            "digest": self.digest,
        }


@dataclass(frozen=True)
class PaymentQuote:
    authorization: Authorization
    usdc_amount: int
    btc_amount: int
    uses_prepaid: bool
    price: int


@dataclass(frozen=True)
class WithdrawalQuote:
    authorization: Authorization
    penalty: PenaltyQuote


@dataclass(frozen=True)
class RewardPlan:
    authorization: Optional[Authorization]
    batch: RewardBatch = field(default_factory=RewardBatch)


class AuthorizationCoordinator:
    def __init__(
        self,
        signer: Optional[MessageSigner],
        chain_id: int,
        *,
        ledger=None,
        price_oracle: Optional[PriceOracle] = None,
        eligibility: Optional[EligibilityService] = None,
        lending_market: Optional[LendingMarket] = None,
        terms: Optional[PlanTermsRegistry] = None,
        reward_policy: Optional[RewardPolicy] = None,
        source_asset: Optional[str] = None,
        target_asset: Optional[str] = None,
        source_decimals: int = 6,
        target_decimals: int = 8,
        price_decimals: int = 8,
        threshold_progress_pct: int = 25,
        dust_threshold: Optional[int] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._signer = signer
        self.chain_id = chain_id
        self._ledger = ledger
        self._price_oracle = price_oracle
        self._eligibility = eligibility
        self._lending_market = lending_market
        self.terms = terms or PlanTermsRegistry()
        self._reward_policy = reward_policy or RewardPolicy(source_decimals=source_decimals)
        self.source_asset = source_asset
        self.target_asset = target_asset
        self.source_decimals = source_decimals
        self.target_decimals = target_decimals
        self.price_decimals = price_decimals
        self.threshold_progress_pct = threshold_progress_pct
        self._dust_threshold = dust_threshold
        self._clock = clock or (lambda: int(time.time()))

    @classmethod
    def from_settings(cls, settings_obj, **kwargs) -> "AuthorizationCoordinator":
        signer = MessageSigner(settings_obj.SIGNER_PRIVATE_KEY) if settings_obj.SIGNER_PRIVATE_KEY else None
        default_terms = PlanTerms(
            penalty_min_bps=settings_obj.PENALTY_MIN_BPS,
            penalty_max_bps=settings_obj.PENALTY_MAX_BPS,
            penalty_exponent=settings_obj.PENALTY_EXPONENT,
        )
        kwargs.setdefault("terms", PlanTermsRegistry(default_terms))
        return cls(
            signer,
            settings_obj.CHAIN_ID,
            source_asset=settings_obj.SOURCE_ASSET_ADDRESS,
            target_asset=settings_obj.TARGET_ASSET_ADDRESS,
            source_decimals=settings_obj.SOURCE_ASSET_DECIMALS,
            target_decimals=settings_obj.TARGET_ASSET_DECIMALS,
            price_decimals=settings_obj.PRICE_DECIMALS,
            threshold_progress_pct=settings_obj.THRESHOLD_PROGRESS_PCT,
            dust_threshold=settings_obj.DUST_THRESHOLD,
            **kwargs,
        )

    @property
    def signer_address(self) -> Optional[str]:
        return self._signer.address if self._signer else None

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def authorize(self, kind: OperationKind, account: str, params: Sequence[Any], labels: Sequence[str]) -> Authorization:
        """Issue a nonce and sign ``(account, *params, nonce, chain_id)``."""
        if self._signer is None:
            raise SignerNotConfiguredError()
        kind = OperationKind(kind)
        account = normalize_address(account)
        nonce = issue_nonce(kind.value)
        digest = operation_digest(kind, account, params, nonce, self.chain_id)
        signature = self._signer.sign_digest(digest)

        if recover_signer(digest, signature) != self._signer.address:
            raise IntegrationError("signature self-check failed", code="signing_failed")

        log_event("info", "authorization.issued", account=account, operation=kind.value, nonce="0x" + nonce.hex())
        return Authorization(
            operation=kind.value,
            account=account,
            params=dict(zip(labels, params)),
            nonce="0x" + nonce.hex(),
            signature="0x" + signature.hex(),
            digest="0x" + digest.hex(),
        )

    def verify(self, digest: bytes, signature) -> bool:
        if self._signer is None:
            return False
        try:
            return recover_signer(digest, signature).lower() == self._signer.address.lower()
        except ValueError:
            return False

    def sign_create_plan(
        self,
        account: str,
        target_btc: int,
        daily_amount: int,
        time_period: int,
        withdrawal_delay: int,
        cadence: int,
        bitmor_enabled: bool,
    ) -> Authorization:
        if time_period <= 0 or withdrawal_delay <= 0 or target_btc <= 0:
            raise ValidationError("target, time period and withdrawal delay must be positive")
        return self.authorize(
            OperationKind.CREATE_PLAN,
            account,
            (target_btc, daily_amount, time_period, withdrawal_delay, int(cadence), bitmor_enabled),
            ("targetBTC", "dailyAmount", "timePeriod", "withdrawalDelay", "cadence", "bitmorEnabled"),
        )

    def sign_payment(self, account: str, usdc_amount: int, btc_amount: int, uses_prepaid: bool) -> Authorization:
        return self.authorize(
            OperationKind.PAYMENT,
            account,
            (usdc_amount, btc_amount, uses_prepaid),
            ("usdcAmount", "btcAmount", "usesPrepaid"),
        )

    def sign_prepay_days(self, account: str, usdc_amount: int, days: int) -> Authorization:
        return self.authorize(OperationKind.PREPAY_DAYS, account, (usdc_amount, days), ("usdcAmount", "days"))

    def sign_early_withdrawal(self, account: str, btc_amount: int, penalty: int, days_remaining: int) -> Authorization:
        return self.authorize(
            OperationKind.EARLY_WITHDRAW,
            account,
            (btc_amount, penalty, days_remaining),
            ("btcAmount", "penalty", "daysRemaining"),
        )

    def sign_complete_plan(self, account: str) -> Authorization:
        return self.authorize(OperationKind.COMPLETE_PLAN, account, (), ())

    def sign_reward_distribution(
        self, operator: str, accounts: Sequence[str], amounts: Sequence[int], boosts: Sequence[int]
    ) -> Authorization:
        if not (len(accounts) == len(amounts) == len(boosts)):
            raise ValidationError("accounts, amounts and boosts must have equal length")
        return self.authorize(
            OperationKind.DISTRIBUTE_REWARDS,
            operator,
            ([normalize_address(a) for a in accounts], list(amounts), list(boosts)),
            ("users", "rewardAmounts", "yieldBoosts"),
        )

    def sign_dust_sweep(self, account: str, token_amounts: Sequence[int], tokens: Sequence[str], expected_btc: int) -> Authorization:
        if len(token_amounts) != len(tokens):
            raise ValidationError("token amounts and tokens must have equal length")
        return self.authorize(
            OperationKind.SWEEP_DUST,
            account,
            (list(token_amounts), [normalize_address(t) for t in tokens], expected_btc),
            ("tokenAmounts", "tokens", "expectedBTC"),
        )

    def sign_threshold(self, account: str, btc_amount: int) -> Authorization:
        return self.authorize(OperationKind.TRIGGER_THRESHOLD, account, (btc_amount,), ("btcAmount",))

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def _require_ledger(self):
        if self._ledger is None:
            raise PreconditionError("ledger_unavailable", "coordinator has no ledger view")
        return self._ledger

    def _active_plan(self, account: str):
        plan = self._require_ledger().get_plan(account)
        if plan.status != PlanStatus.ACTIVE:
            raise PreconditionError("plan_not_active")
        return plan

    def convert_to_target(self, usdc_amount: int, price: int) -> int:
        """Source units to target units at ``price`` (USD per target unit, fixed point)."""
        if price <= 0:
            raise ValidationError("price must be positive")
        return (usdc_amount * 10**self.target_decimals * 10**self.price_decimals) // (price * 10**self.source_decimals)

    def quote_create_plan(
        self,
        account: str,
        target_btc: int,
        daily_amount: int,
        time_period: int,
        withdrawal_delay: int,
        cadence: int,
        bitmor_enabled: bool,
        terms: Optional[PlanTerms] = None,
    ) -> Authorization:
        """Check the account can open a plan, record its penalty terms and sign."""
        if daily_amount <= 0:
            raise ValidationError("daily amount must be positive")
        plan = self._require_ledger().get_plan(account)
        if plan.status == PlanStatus.EARLY_EXIT:
            raise PreconditionError("plan_exited_early")
        if plan.status not in (PlanStatus.INACTIVE, PlanStatus.COMPLETED):
            raise PreconditionError("plan_already_active")
        if plan.btc_accumulated > 0 or plan.principal_locked > 0:
            raise PreconditionError("unsettled_plan_balance")
        chosen = self.terms.validate(terms or self.terms.default)
        authorization = self.sign_create_plan(
            account, target_btc, daily_amount, time_period, withdrawal_delay, cadence, bitmor_enabled
        )
        self.terms.register(account, chosen)
        return authorization

    def quote_payment(self, account: str, uses_prepaid: bool = False) -> PaymentQuote:
        """Sign the plan's next cadence payment.

        The principal is always the plan's daily amount. A payment covered by a
        prepaid day moves no new principal; any other payment is only signed
        once the cadence interval since the last payment has elapsed.
        """
        if self._price_oracle is None:
            raise IntegrationError("no price oracle configured", code="price_unavailable")
        plan = self._active_plan(account)
        if plan.daily_amount <= 0:
            raise PreconditionError("invalid_daily_amount")
        consumes_prepaid = bool(uses_prepaid and plan.prepaid_days > 0)
        if not consumes_prepaid and not is_payment_due(plan, self._clock()):
            raise PreconditionError("payment_not_due")
        price = self._price_oracle.current_price(self.target_asset)
        btc_amount = self.convert_to_target(plan.daily_amount, price)
        usdc_amount = 0 if consumes_prepaid else plan.daily_amount
        authorization = self.sign_payment(account, usdc_amount, btc_amount, consumes_prepaid)
        return PaymentQuote(authorization, usdc_amount, btc_amount, consumes_prepaid, price)

    def quote_prepay_days(self, account: str, days: int) -> Authorization:
        """Sign a prepayment of ``days`` cycles at the plan's daily amount."""
        if days <= 0:
            raise ValidationError("days must be positive")
        plan = self._active_plan(account)
        if plan.daily_amount <= 0:
            raise PreconditionError("invalid_daily_amount")
        return self.sign_prepay_days(account, plan.daily_amount * days, days)

    def quote_early_withdrawal(self, account: str) -> WithdrawalQuote:
        plan = self._active_plan(account)
        if plan.btc_accumulated == 0:
            raise PreconditionError("nothing_accumulated")
        now = self._clock()
        if now < plan.withdrawal_unlock_time:
            raise PreconditionError("withdrawal_delay_not_met")
        quote = quote_penalty(plan, now, self.terms.terms_for(account))
        authorization = self.sign_early_withdrawal(account, quote.gross_amount, quote.penalty_amount, quote.days_remaining)
        return WithdrawalQuote(authorization, quote)

    def quote_completion(self, account: str) -> Authorization:
        plan = self._require_ledger().get_plan(account)
        if plan.status == PlanStatus.COMPLETED and plan.btc_accumulated > 0:
            return self.sign_complete_plan(account)
        if plan.status != PlanStatus.ACTIVE:
            raise PreconditionError("plan_not_active")
        if plan.btc_accumulated < plan.target_btc:
            raise PreconditionError("target_not_reached")
        return self.sign_complete_plan(account)

    def quote_threshold(self, account: str) -> Authorization:
        plan = self._active_plan(account)
        if not plan.bitmor_enabled:
            raise PreconditionError("bitmor_not_enabled")
        if plan.threshold_reached:
            raise PreconditionError("threshold_already_reached")
        if plan.btc_accumulated * 100 < plan.target_btc * self.threshold_progress_pct:
            raise PreconditionError("threshold_not_met")
        if self._eligibility is None or not self._eligibility.check_eligibility(
            normalize_address(account), plan.btc_accumulated
        ):
            raise PreconditionError("not_eligible")
        return self.sign_threshold(account, plan.btc_accumulated)

    def quote_dust_sweep(self, account: str, token_amounts: Sequence[int], tokens: Sequence[str], expected_btc: int) -> Authorization:
        self._active_plan(account)
        threshold = self._dust_threshold
        if threshold is None:
            threshold = getattr(self._require_ledger(), "dust_threshold", 0)
        if sum(token_amounts) < threshold:
            raise PreconditionError("dust_below_threshold")
        return self.sign_dust_sweep(account, token_amounts, tokens, expected_btc)

    def plan_reward_distribution(self, operator: str) -> RewardPlan:
        ledger = self._require_ledger()
        liquidity_rate = 0
        if self._lending_market is not None and self.source_asset:
            liquidity_rate = self._lending_market.reserve_data(self.source_asset).liquidity_rate
        candidates = candidates_from_store(
            ledger, penalty_max_for=lambda account: self.terms.terms_for(account).penalty_max_bps
        )
        batch = plan_distribution(candidates, ledger.rewards_pool, self._reward_policy, liquidity_rate)
        if not len(batch):
            return RewardPlan(authorization=None, batch=batch)
        authorization = self.sign_reward_distribution(operator, batch.accounts, batch.amounts, batch.boosts)
        return RewardPlan(authorization=authorization, batch=batch)

    def payment_due(self, account: str) -> Dict[str, Any]:
        plan = self._require_ledger().get_plan(account)
        now = self._clock()
        due_at = next_payment_due(plan)
        return {
            "account": normalize_address(account),
            "status": plan.status.name,
            "dueAt": due_at,
            "isDue": plan.status == PlanStatus.ACTIVE and now >= due_at,
            "prepaidDays": plan.prepaid_days,
        }

    def accounts_due(self, accounts: Optional[List[str]] = None) -> List[str]:
        """Active accounts whose next cadence payment is due now."""
        ledger = self._require_ledger()
        now = self._clock()
        selected = set(a.lower() for a in accounts) if accounts else None
        due = []
        for account, plan in ledger.iter_plans():
            if selected is not None and account.lower() not in selected:
                continue
            if plan.status == PlanStatus.ACTIVE and now >= next_payment_due(plan):
                due.append(account)
        return due
