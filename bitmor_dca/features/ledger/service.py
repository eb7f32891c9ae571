"""
Custodial DCA ledger.

Every mutating call runs through ``_execute``: one global lock, a reentrancy
flag, an undo journal on the store plus a checkpoint of each in-process
integration, and a single publish of the events the call produced. A failure
anywhere rolls the journal back (nonce consumption included) and comes back as
a failed ``LedgerResult``; nothing raises across this boundary.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, List, Optional, Sequence, Union

from bitmor_dca.core.errors import (
    AppError,
    IntegrationError,
    LedgerPausedError,
    PermissionError,
    PreconditionError,
    SignerNotConfiguredError,
    UnauthorizedError,
    ValidationError,
)
from bitmor_dca.core.logging import log_event
from bitmor_dca.features.authorization.encoding import (
    OperationKind,
    fits_uint,
    normalize_address,
    normalize_nonce,
    operation_digest,
)
from bitmor_dca.features.formulas.penalty import penalty_within_bounds
from bitmor_dca.features.formulas.streaks import apply_payment_streak
from bitmor_dca.features.integrations.base import Checkpointable, LendingMarket, SwapRouter, TokenBank
from bitmor_dca.features.ledger.event_log import EventLog
from bitmor_dca.features.ledger.store import LedgerStore
from bitmor_dca.features.ledger.verifier import EcdsaVerifier, SignatureVerifier
from bitmor_dca.models.events import (
    AdminAction,
    DaysPrepaid,
    DustSwept,
    EarlyWithdrawal,
    LedgerEvent,
    PaymentProcessed,
    PlanCompleted,
    PlanCreated,
    RewardsClaimed,
    RewardsDistributed,
    ThresholdReached,
)
from bitmor_dca.models.plan import Cadence, PlanStatus, UserExtras, UserPlan
from bitmor_dca.models.results import LedgerResult

logger = logging.getLogger("bitmor_dca")

Signature = Union[str, bytes]
Nonce = Union[str, bytes]

_RECREATABLE = (PlanStatus.INACTIVE, PlanStatus.COMPLETED)


def _require_uint(name: str, value: Any, bits: int) -> None:
    if not fits_uint(value, bits):
        raise PreconditionError("invalid_parameter", f"{name} must fit in uint{bits}")


def _require_bool(name: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise PreconditionError("invalid_parameter", f"{name} must be a bool")


class DCALedger:
    """State machine over per-account plans, pooled balances and the nonce set."""

    def __init__(
        self,
        *,
        address: str,
        owner: str,
        source_asset: str,
        target_asset: str,
        bank: TokenBank,
        lending_market: LendingMarket,
        swap_router: SwapRouter,
        chain_id: int,
        trusted_signer: Optional[str] = None,
        verifier: Optional[SignatureVerifier] = None,
        dust_threshold: int = 10_000_000,
        swap_deadline_seconds: int = 1800,
        penalty_min_bps: int = 100,
        penalty_max_bps: int = 5000,
        threshold_progress_pct: int = 25,
        clock: Optional[Callable[[], int]] = None,
        event_log: Optional[EventLog] = None,
        store: Optional[LedgerStore] = None,
    ):
        self.address = normalize_address(address)
        self.owner = normalize_address(owner)
        self.source_asset = normalize_address(source_asset)
        self.target_asset = normalize_address(target_asset)
        self.chain_id = chain_id
        self.swap_deadline_seconds = swap_deadline_seconds
        self.penalty_min_bps = penalty_min_bps
        self.penalty_max_bps = penalty_max_bps
        self.threshold_progress_pct = threshold_progress_pct

        self._bank = bank
        self._lending_market = lending_market
        self._swap_router = swap_router
        self._verifier = verifier or EcdsaVerifier()
        self._clock = clock or (lambda: int(time.time()))
        self._event_log = event_log or EventLog()
        self._store = store or LedgerStore()
        self._store.dust_threshold = dust_threshold
        if trusted_signer:
            self._store.trusted_signer = normalize_address(trusted_signer)

        self._lock = threading.RLock()
        self._entered = False

    @classmethod
    def from_settings(cls, settings_obj, *, bank, lending_market, swap_router, **kwargs) -> "DCALedger":
        return cls(
            address=settings_obj.LEDGER_ADDRESS,
            owner=settings_obj.LEDGER_OWNER_ADDRESS or settings_obj.LEDGER_ADDRESS,
            source_asset=settings_obj.SOURCE_ASSET_ADDRESS,
            target_asset=settings_obj.TARGET_ASSET_ADDRESS,
            bank=bank,
            lending_market=lending_market,
            swap_router=swap_router,
            chain_id=settings_obj.CHAIN_ID,
            trusted_signer=settings_obj.TRUSTED_SIGNER_ADDRESS,
            dust_threshold=settings_obj.DUST_THRESHOLD,
            swap_deadline_seconds=settings_obj.SWAP_DEADLINE_SECONDS,
            penalty_min_bps=settings_obj.PENALTY_MIN_BPS,
            penalty_max_bps=settings_obj.PENALTY_MAX_BPS,
            threshold_progress_pct=settings_obj.THRESHOLD_PROGRESS_PCT,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Read views (copies; callers never mutate ledger state)
    # ------------------------------------------------------------------

    def get_plan(self, account: str) -> UserPlan:
        with self._lock:
            plan = self._store.plans.get(normalize_address(account))
            return replace(plan) if plan else UserPlan()

    def get_extras(self, account: str) -> UserExtras:
        with self._lock:
            extras = self._store.extras.get(normalize_address(account))
            return replace(extras) if extras else UserExtras()

    def iter_plans(self):
        with self._lock:
            return iter([(account, replace(plan)) for account, plan in self._store.iter_plans()])

    @property
    def rewards_pool(self) -> int:
        return self._store.rewards_pool

    @property
    def total_value_locked(self) -> int:
        return self._store.total_value_locked

    @property
    def paused(self) -> bool:
        return self._store.paused

    @property
    def trusted_signer(self) -> str:
        return self._store.trusted_signer

    @property
    def dust_threshold(self) -> int:
        return self._store.dust_threshold

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def is_nonce_used(self, nonce: Nonce) -> bool:
        with self._lock:
            return self._store.is_nonce_used(normalize_nonce(nonce))

    # ------------------------------------------------------------------
    # Execution scope
    # ------------------------------------------------------------------

    def _now(self) -> int:
        return int(self._clock())

    def _checkpointables(self) -> List[Checkpointable]:
        seen, found = set(), []
        for integration in (self._bank, self._lending_market, self._swap_router):
            if id(integration) in seen or not isinstance(integration, Checkpointable):
                continue
            seen.add(id(integration))
            found.append(integration)
        return found

    def _execute(
        self,
        operation: str,
        account: Optional[str],
        body: Callable[[List[LedgerEvent]], Any],
        *,
        admin: bool = False,
    ) -> LedgerResult:
        with self._lock:
            if self._entered:
                error = PreconditionError("reentrant_call")
                self._log_rejection(operation, account, error)
                return LedgerResult.failure(operation, error)

            self._entered = True
            self._store.begin()
            checkpoints = [(integration, integration.checkpoint()) for integration in self._checkpointables()]
            try:
                if not admin and self._store.paused:
                    raise LedgerPausedError()
                pending: List[LedgerEvent] = []
                value = body(pending)
                published = self._event_log.append_batch(pending)
                self._commit(checkpoints)
            except AppError as exc:
                self._rollback(checkpoints)
                self._log_rejection(operation, account, exc)
                return LedgerResult.failure(operation, exc)
            except Exception:
                self._rollback(checkpoints)
                logger.error(
                    "ledger.unexpected_failure",
                    exc_info=True,
                    extra={"account": account, "operation": operation, "error_code": "internal_error"},
                )
                return LedgerResult.failure(operation, AppError("internal error", code="internal_error"))
            finally:
                self._entered = False

        log_event(
            "info",
            "ledger.operation",
            account=account,
            operation=operation,
            sequence=published[-1].sequence if published else None,
            extra={"events": ",".join(e.event_type for e in published)},
        )
        return LedgerResult.success(operation, published, value)

    def _commit(self, checkpoints) -> None:
        self._store.commit()
        for integration, token in checkpoints:
            integration.release(token)

    def _rollback(self, checkpoints) -> None:
        self._store.rollback()
        for integration, token in checkpoints:
            integration.rollback(token)

    def _log_rejection(self, operation: str, account: Optional[str], error: AppError) -> None:
        level = "error" if isinstance(error, IntegrationError) else "warning"
        log_event(level, "ledger.rejected", account=account, operation=operation, error_code=error.code)

    # ------------------------------------------------------------------
    # Guards and integration calls
    # ------------------------------------------------------------------

    def _authorize(self, kind: OperationKind, caller: str, params: Sequence[Any], nonce: Nonce, signature: Signature) -> None:
        """Nonce unused + signature recovers to the trusted signer, then consume."""
        if not self._store.trusted_signer:
            raise SignerNotConfiguredError()
        try:
            nonce_bytes = normalize_nonce(nonce)
        except ValidationError:
            raise UnauthorizedError()
        if self._store.is_nonce_used(nonce_bytes):
            raise UnauthorizedError()

        digest = operation_digest(kind, caller, params, nonce_bytes, self.chain_id)
        try:
            recovered = self._verifier.recover(digest, signature)
        except (ValueError, TypeError):
            raise UnauthorizedError()
        if not recovered or recovered.lower() != self._store.trusted_signer.lower():
            raise UnauthorizedError()

        self._store.consume_nonce(nonce_bytes)

    def _require_owner(self, caller: str) -> str:
        account = normalize_address(caller)
        if account != self.owner:
            raise PermissionError("owner only")
        return account

    def _call(self, code: str, fn: Callable, *args) -> Any:
        try:
            return fn(*args)
        except AppError:
            raise
        except Exception as exc:
            logger.error("ledger.integration_failed", exc_info=True, extra={"error_code": code})
            raise IntegrationError(f"{code}: {exc}", code=code) from exc

    def _pull(self, asset: str, account: str, amount: int) -> None:
        if amount == 0:
            return
        if self._call("transfer_failed", self._bank.balance_of, asset, account) < amount:
            raise PreconditionError("insufficient_balance")
        self._call("transfer_failed", self._bank.transfer, asset, account, self.address, amount)

    def _pay(self, asset: str, account: str, amount: int) -> None:
        if amount == 0:
            return
        self._call("transfer_failed", self._bank.transfer, asset, self.address, account, amount)

    def _supply(self, plan: UserPlan, amount: int) -> None:
        if amount == 0:
            return
        self._call("lending_supply_failed", self._lending_market.supply, self.source_asset, amount, self.address)
        plan.principal_locked += amount
        self._store.total_value_locked += amount

    def _release_principal(self, plan: UserPlan) -> int:
        amount = min(plan.principal_locked, self._store.total_value_locked)
        if amount:
            self._call("lending_withdraw_failed", self._lending_market.withdraw, self.source_asset, amount, self.address)
        self._store.total_value_locked -= amount
        plan.principal_locked = 0
        return amount

    def _require_active(self, plan: UserPlan) -> None:
        if plan.status != PlanStatus.ACTIVE:
            raise PreconditionError("plan_not_active")

    @staticmethod
    def _auto_complete(plan: UserPlan) -> None:
        if plan.status == PlanStatus.ACTIVE and plan.btc_accumulated >= plan.target_btc:
            plan.status = PlanStatus.COMPLETED

    # ------------------------------------------------------------------
    # Signed operations
    # ------------------------------------------------------------------

    def create_plan(
        self,
        caller: str,
        target_btc: int,
        daily_amount: int,
        time_period: int,
        withdrawal_delay: int,
        cadence: int,
        bitmor_enabled: bool,
        *,
        nonce: Nonce,
        signature: Signature,
    ) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            _require_uint("target_btc", target_btc, 128)
            _require_uint("daily_amount", daily_amount, 128)
            _require_uint("time_period", time_period, 32)
            _require_uint("withdrawal_delay", withdrawal_delay, 32)
            _require_uint("cadence", cadence, 8)
            _require_bool("bitmor_enabled", bitmor_enabled)
            try:
                plan_cadence = Cadence(cadence)
            except ValueError:
                raise PreconditionError("invalid_cadence")

            params = (target_btc, daily_amount, time_period, withdrawal_delay, int(cadence), bitmor_enabled)
            self._authorize(OperationKind.CREATE_PLAN, account, params, nonce, signature)

            if target_btc == 0:
                raise PreconditionError("invalid_target")
            if time_period == 0:
                raise PreconditionError("invalid_time_period")
            if withdrawal_delay == 0:
                raise PreconditionError("invalid_withdrawal_delay")
            existing = self._store.plan(account)
            if existing.status == PlanStatus.EARLY_EXIT:
                raise PreconditionError("plan_exited_early")
            if existing.status not in _RECREATABLE:
                raise PreconditionError("plan_already_active")
            if existing.btc_accumulated > 0 or existing.principal_locked > 0:
                raise PreconditionError("unsettled_plan_balance")

            now = self._now()
            plan = UserPlan(
                target_btc=target_btc,
                daily_amount=daily_amount,
                start_time=now,
                withdrawal_delay=withdrawal_delay,
                time_period=time_period,
                cadence=plan_cadence,
                status=PlanStatus.ACTIVE,
                bitmor_enabled=bitmor_enabled,
            )
            self._store.set_plan(account, plan)
            events.append(
                PlanCreated(
                    user=account,
                    timestamp=now,
                    target_btc=target_btc,
                    daily_amount=daily_amount,
                    time_period=time_period,
                    cadence=int(plan_cadence),
                    bitmor_enabled=bitmor_enabled,
                )
            )
            return replace(plan)

        return self._execute("create_plan", caller, body)

    def record_payment(
        self,
        caller: str,
        usdc_amount: int,
        btc_amount: int,
        uses_prepaid: bool,
        *,
        nonce: Nonce,
        signature: Signature,
    ) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            _require_uint("usdc_amount", usdc_amount, 128)
            _require_uint("btc_amount", btc_amount, 128)
            _require_bool("uses_prepaid", uses_prepaid)
            self._authorize(OperationKind.PAYMENT, account, (usdc_amount, btc_amount, uses_prepaid), nonce, signature)

            plan = self._store.plan(account)
            self._require_active(plan)
            now = self._now()

            update = apply_payment_streak(plan, now, uses_prepaid)
            plan.streak = update.streak
            plan.max_streak = update.max_streak
            plan.prepaid_days = update.prepaid_days

            self._pull(self.source_asset, account, usdc_amount)
            self._supply(plan, usdc_amount)

            plan.total_paid += usdc_amount
            plan.btc_accumulated += btc_amount
            plan.last_payment_time = now
            self._store.account_extras(account).reward_weight = plan.streak
            self._auto_complete(plan)

            events.append(
                PaymentProcessed(
                    user=account,
                    timestamp=now,
                    usdc_amount=usdc_amount,
                    btc_amount=btc_amount,
                    streak=plan.streak,
                    uses_prepaid=update.outcome == "prepaid",
                )
            )
            return replace(plan)

        return self._execute("record_payment", caller, body)

    def prepay_days(self, caller: str, usdc_amount: int, days: int, *, nonce: Nonce, signature: Signature) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            _require_uint("usdc_amount", usdc_amount, 128)
            _require_uint("days", days, 32)
            self._authorize(OperationKind.PREPAY_DAYS, account, (usdc_amount, days), nonce, signature)

            plan = self._store.plan(account)
            self._require_active(plan)
            if days == 0:
                raise PreconditionError("invalid_days")
            if not fits_uint(plan.prepaid_days + days, 32):
                raise PreconditionError("invalid_parameter", "prepaid days overflow")

            self._pull(self.source_asset, account, usdc_amount)
            self._supply(plan, usdc_amount)
            plan.prepaid_days += days

            now = self._now()
            events.append(
                DaysPrepaid(user=account, timestamp=now, usdc_amount=usdc_amount, days=days, prepaid_days=plan.prepaid_days)
            )
            return replace(plan)

        return self._execute("prepay_days", caller, body)

    def early_withdraw(
        self,
        caller: str,
        btc_amount: int,
        penalty: int,
        days_remaining: int,
        *,
        nonce: Nonce,
        signature: Signature,
    ) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            _require_uint("btc_amount", btc_amount, 128)
            _require_uint("penalty", penalty, 128)
            _require_uint("days_remaining", days_remaining, 32)
            self._authorize(OperationKind.EARLY_WITHDRAW, account, (btc_amount, penalty, days_remaining), nonce, signature)

            plan = self._store.plan(account)
            self._require_active(plan)
            if plan.btc_accumulated == 0:
                raise PreconditionError("nothing_accumulated")
            now = self._now()
            if now < plan.withdrawal_unlock_time:
                raise PreconditionError("withdrawal_delay_not_met")
            if btc_amount != plan.btc_accumulated:
                raise PreconditionError("amount_mismatch")
            if not penalty_within_bounds(btc_amount, penalty, self.penalty_min_bps, self.penalty_max_bps):
                raise PreconditionError("penalty_out_of_bounds")

            net = btc_amount - penalty
            self._store.rewards_pool += penalty
            plan.btc_accumulated = 0
            plan.status = PlanStatus.EARLY_EXIT
            self._release_principal(plan)
            self._pay(self.target_asset, account, net)

            events.append(
                EarlyWithdrawal(
                    user=account,
                    timestamp=now,
                    btc_amount=btc_amount,
                    penalty=penalty,
                    days_remaining=days_remaining,
                )
            )
            return net

        return self._execute("early_withdraw", caller, body)

    def complete_plan(self, caller: str, *, nonce: Nonce, signature: Signature) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            self._authorize(OperationKind.COMPLETE_PLAN, account, (), nonce, signature)

            plan = self._store.plan(account)
            if plan.status == PlanStatus.ACTIVE:
                if plan.btc_accumulated < plan.target_btc:
                    raise PreconditionError("target_not_reached")
            elif plan.status != PlanStatus.COMPLETED or plan.btc_accumulated == 0:
                raise PreconditionError("plan_not_completable")

            amount = plan.btc_accumulated
            plan.status = PlanStatus.COMPLETED
            plan.btc_accumulated = 0
            self._release_principal(plan)
            self._pay(self.target_asset, account, amount)

            now = self._now()
            events.append(PlanCompleted(user=account, timestamp=now, btc_amount=amount, total_paid=plan.total_paid))
            return amount

        return self._execute("complete_plan", caller, body)

    def distribute_rewards(
        self,
        caller: str,
        accounts: Sequence[str],
        amounts: Sequence[int],
        boosts: Sequence[int],
        *,
        nonce: Nonce,
        signature: Signature,
    ) -> LedgerResult:
        def body(events):
            operator = normalize_address(caller)
            if not (len(accounts) == len(amounts) == len(boosts)):
                raise PreconditionError("array_length_mismatch")
            recipients = [normalize_address(a) for a in accounts]
            for amount in amounts:
                _require_uint("amount", amount, 128)
            for boost in boosts:
                _require_uint("boost", boost, 128)
            self._authorize(
                OperationKind.DISTRIBUTE_REWARDS, operator, (recipients, list(amounts), list(boosts)), nonce, signature
            )

            now = self._now()
            credited = 0
            for account, amount, boost in zip(recipients, amounts, boosts):
                # entries the pool cannot cover are skipped, not failed
                if amount == 0 or amount > self._store.rewards_pool:
                    continue
                extras = self._store.account_extras(account)
                extras.reward_balance += amount
                extras.yield_boost += boost
                self._store.rewards_pool -= amount
                credited += 1
                events.append(RewardsDistributed(user=account, timestamp=now, reward_amount=amount, yield_boost=boost))
            return credited

        return self._execute("distribute_rewards", caller, body)

    def claim_rewards(self, caller: str) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            extras = self._store.account_extras(account)
            total = extras.reward_balance + extras.yield_boost
            if total == 0:
                raise PreconditionError("no_rewards")

            now = self._now()
            extras.reward_balance = 0
            extras.yield_boost = 0
            extras.last_reward_claim = now
            self._pay(self.target_asset, account, total)
            events.append(RewardsClaimed(user=account, timestamp=now, amount=total))
            return total

        return self._execute("claim_rewards", caller, body)

    def sweep_dust(
        self,
        caller: str,
        token_amounts: Sequence[int],
        tokens: Sequence[str],
        expected_btc: int,
        *,
        nonce: Nonce,
        signature: Signature,
    ) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            if len(token_amounts) != len(tokens):
                raise PreconditionError("array_length_mismatch")
            token_list = [normalize_address(t) for t in tokens]
            for amount in token_amounts:
                _require_uint("token_amount", amount, 128)
            _require_uint("expected_btc", expected_btc, 128)
            self._authorize(
                OperationKind.SWEEP_DUST, account, (list(token_amounts), token_list, expected_btc), nonce, signature
            )

            plan = self._store.plan(account)
            self._require_active(plan)
            dust_total = sum(token_amounts)
            if dust_total < self._store.dust_threshold:
                raise PreconditionError("dust_below_threshold")

            now = self._now()
            deadline = now + self.swap_deadline_seconds
            received = 0
            for token, amount in zip(token_list, token_amounts):
                if amount == 0:
                    continue
                self._pull(token, account, amount)
                if token == self.target_asset:
                    received += amount
                    continue
                amounts_out = self._call(
                    "swap_failed",
                    self._swap_router.swap_exact_in,
                    amount,
                    0,
                    [token, self.target_asset],
                    self.address,
                    deadline,
                )
                received += amounts_out[-1]

            if received < expected_btc:
                raise IntegrationError("swap returned less than expected", code="swap_output_below_minimum")

            plan.btc_accumulated += received
            self._auto_complete(plan)
            events.append(DustSwept(user=account, timestamp=now, dust_amount=dust_total, btc_amount=received))
            return received

        return self._execute("sweep_dust", caller, body)

    def trigger_threshold(self, caller: str, btc_amount: int, *, nonce: Nonce, signature: Signature) -> LedgerResult:
        def body(events):
            account = normalize_address(caller)
            _require_uint("btc_amount", btc_amount, 128)
            self._authorize(OperationKind.TRIGGER_THRESHOLD, account, (btc_amount,), nonce, signature)

            plan = self._store.plan(account)
            self._require_active(plan)
            if not plan.bitmor_enabled:
                raise PreconditionError("bitmor_not_enabled")
            if plan.threshold_reached:
                raise PreconditionError("threshold_already_reached")
            if btc_amount != plan.btc_accumulated:
                raise PreconditionError("amount_mismatch")
            if plan.btc_accumulated * 100 < plan.target_btc * self.threshold_progress_pct:
                raise PreconditionError("threshold_not_met")

            now = self._now()
            loan_amount = plan.target_btc - btc_amount
            plan.threshold_reached = True
            plan.btc_accumulated = 0
            plan.status = PlanStatus.COMPLETED
            self._release_principal(plan)
            self._pay(self.target_asset, account, btc_amount)
            events.append(ThresholdReached(user=account, timestamp=now, btc_amount=btc_amount, loan_amount=loan_amount))
            return loan_amount

        return self._execute("trigger_threshold", caller, body)

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def _admin_event(self, event_type: str, caller: str, **details) -> AdminAction:
        return AdminAction(event_type=event_type, user=caller, timestamp=self._now(), details=details)

    def set_trusted_signer(self, caller: str, signer: str) -> LedgerResult:
        def body(events):
            owner = self._require_owner(caller)
            self._store.trusted_signer = normalize_address(signer)
            events.append(self._admin_event("TrustedSignerUpdated", owner, signer=self._store.trusted_signer))

        return self._execute("set_trusted_signer", caller, body, admin=True)

    def set_dust_threshold(self, caller: str, threshold: int) -> LedgerResult:
        def body(events):
            owner = self._require_owner(caller)
            _require_uint("threshold", threshold, 128)
            self._store.dust_threshold = threshold
            events.append(self._admin_event("DustThresholdUpdated", owner, threshold=threshold))

        return self._execute("set_dust_threshold", caller, body, admin=True)

    def pause(self, caller: str) -> LedgerResult:
        def body(events):
            owner = self._require_owner(caller)
            self._store.paused = True
            events.append(self._admin_event("Paused", owner))

        return self._execute("pause", caller, body, admin=True)

    def unpause(self, caller: str) -> LedgerResult:
        def body(events):
            owner = self._require_owner(caller)
            self._store.paused = False
            events.append(self._admin_event("Unpaused", owner))

        return self._execute("unpause", caller, body, admin=True)

    def pause_plan(self, caller: str, account: str) -> LedgerResult:
        def body(events):
            owner = self._require_owner(caller)
            target = normalize_address(account)
            plan = self._store.plan(target)
            self._require_active(plan)
            plan.status = PlanStatus.PAUSED
            events.append(self._admin_event("PlanPaused", owner, account=target))

        return self._execute("pause_plan", caller, body, admin=True)

    def resume_plan(self, caller: str, account: str) -> LedgerResult:
        def body(events):
            owner = self._require_owner(caller)
            target = normalize_address(account)
            plan = self._store.plan(target)
            if plan.status != PlanStatus.PAUSED:
                raise PreconditionError("plan_not_paused")
            plan.status = PlanStatus.ACTIVE
            events.append(self._admin_event("PlanResumed", owner, account=target))

        return self._execute("resume_plan", caller, body, admin=True)

    def emergency_withdraw_all(self, caller: str) -> LedgerResult:
        def body(events):
            owner = self._require_owner(caller)
            principal = self._store.total_value_locked
            if principal:
                self._call(
                    "lending_withdraw_failed", self._lending_market.withdraw, self.source_asset, principal, owner
                )
            reserve = self._call("transfer_failed", self._bank.balance_of, self.target_asset, self.address)
            self._pay(self.target_asset, owner, reserve)
            self._store.total_value_locked = 0
            for plan in self._store.plans_for_update():
                plan.principal_locked = 0
            events.append(self._admin_event("EmergencyWithdrawal", owner, principal=principal, target_reserve=reserve))
            return {"principal": principal, "target_reserve": reserve}

        return self._execute("emergency_withdraw_all", caller, body, admin=True)
