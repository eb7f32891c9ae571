"""
In-memory ledger state.

Accounts are keyed by checksum address. Mutations made inside a ledger
operation are journaled: the first touch of an account's plan or extras saves
a copy of the prior record, consumed nonces are listed, and the pooled scalars
are saved when the journal opens. Rolling back restores only what was touched,
so the cost of an operation does not grow with ledger history.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Set, Tuple

from bitmor_dca.models.plan import UserExtras, UserPlan


@dataclass
class _Journal:
    scalars: Tuple[int, int, bool, str, int]
    plans: Dict[str, Optional[UserPlan]] = field(default_factory=dict)
    extras: Dict[str, Optional[UserExtras]] = field(default_factory=dict)
    nonces: List[bytes] = field(default_factory=list)


@dataclass
class LedgerStore:
    plans: Dict[str, UserPlan] = field(default_factory=dict)
    extras: Dict[str, UserExtras] = field(default_factory=dict)
    used_nonces: Set[bytes] = field(default_factory=set)
    rewards_pool: int = 0
    total_value_locked: int = 0
    paused: bool = False
    trusted_signer: str = ""
    dust_threshold: int = 0
    _journal: Optional[_Journal] = field(default=None, init=False, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def begin(self) -> None:
        self._journal = _Journal(
            scalars=(self.rewards_pool, self.total_value_locked, self.paused, self.trusted_signer, self.dust_threshold)
        )

    def commit(self) -> None:
        self._journal = None

    def rollback(self) -> None:
        journal = self._journal
        if journal is None:
            return
        self._journal = None
        for account, previous in journal.plans.items():
            if previous is None:
                self.plans.pop(account, None)
            else:
                self.plans[account] = previous
        for account, previous in journal.extras.items():
            if previous is None:
                self.extras.pop(account, None)
            else:
                self.extras[account] = previous
        self.used_nonces.difference_update(journal.nonces)
        (
            self.rewards_pool,
            self.total_value_locked,
            self.paused,
            self.trusted_signer,
            self.dust_threshold,
        ) = journal.scalars

    def _touch_plan(self, account: str) -> None:
        if self._journal is not None and account not in self._journal.plans:
            existing = self.plans.get(account)
            self._journal.plans[account] = replace(existing) if existing else None

    def _touch_extras(self, account: str) -> None:
        if self._journal is not None and account not in self._journal.extras:
            existing = self.extras.get(account)
            self._journal.extras[account] = replace(existing) if existing else None

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def plan(self, account: str) -> UserPlan:
        """Mutable plan record; INACTIVE default for unknown accounts."""
        self._touch_plan(account)
        if account not in self.plans:
            self.plans[account] = UserPlan()
        return self.plans[account]

    def set_plan(self, account: str, plan: UserPlan) -> None:
        self._touch_plan(account)
        self.plans[account] = plan

    def plans_for_update(self) -> Iterator[UserPlan]:
        for account in list(self.plans):
            yield self.plan(account)

    def account_extras(self, account: str) -> UserExtras:
        self._touch_extras(account)
        if account not in self.extras:
            self.extras[account] = UserExtras()
        return self.extras[account]

    def iter_plans(self) -> Iterator[Tuple[str, UserPlan]]:
        return iter(list(self.plans.items()))

    def is_nonce_used(self, nonce: bytes) -> bool:
        return nonce in self.used_nonces

    def consume_nonce(self, nonce: bytes) -> bool:
        """Mark consumed; False if it already was."""
        if nonce in self.used_nonces:
            return False
        self.used_nonces.add(nonce)
        if self._journal is not None:
            self._journal.nonces.append(nonce)
        return True
