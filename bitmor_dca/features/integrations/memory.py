"""
In-process simulations of the external collaborators.

Used by tests and local runs. Each keeps its state in plain dicts so the ledger
can checkpoint and roll it back together with its own store. The token bank
journals balance writes instead of copying every balance.
"""
from __future__ import annotations

import copy
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from bitmor_dca.features.integrations.base import ReserveData


def _key(address: str) -> str:
    return address.lower()


class InsufficientFundsError(RuntimeError):
    pass


class InMemoryTokenBank:
    def __init__(self):
        self._balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._journal: Optional[List[Tuple[str, str, int]]] = None

    def _set(self, asset: str, account: str, value: int) -> None:
        asset, account = _key(asset), _key(account)
        if self._journal is not None:
            self._journal.append((asset, account, self._balances[asset][account]))
        self._balances[asset][account] = value

    def mint(self, asset: str, account: str, amount: int) -> None:
        self._set(asset, account, self.balance_of(asset, account) + amount)

    def balance_of(self, asset: str, account: str) -> int:
        return self._balances[_key(asset)][_key(account)]

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("negative transfer")
        held = self.balance_of(asset, sender)
        if held < amount:
            raise InsufficientFundsError(f"{sender} holds {held} < {amount} of {asset}")
        self._set(asset, sender, held - amount)
        self._set(asset, recipient, self.balance_of(asset, recipient) + amount)

    def checkpoint(self) -> object:
        self._journal = []
        return self._journal

    def rollback(self, token: object) -> None:
        for asset, account, previous in reversed(token):
            self._balances[asset][account] = previous
        self.release(token)

    def release(self, token: object) -> None:
        if self._journal is token:
            self._journal = None


class InMemoryLendingMarket:
    """Aave-style pool with a single depositor (the ledger)."""

    def __init__(self, bank: InMemoryTokenBank, address: str, depositor: str, liquidity_rate: int = 0):
        self._bank = bank
        self.address = address
        self._depositor = depositor
        self.liquidity_rate = liquidity_rate
        self._positions: Dict[str, int] = defaultdict(int)

    def supply(self, asset: str, amount: int, on_behalf_of: str) -> None:
        self._bank.transfer(asset, self._depositor, self.address, amount)
        self._positions[_key(asset)] += amount

    def withdraw(self, asset: str, amount: int, to: str) -> int:
        actual = min(amount, self._positions[_key(asset)])
        self._positions[_key(asset)] -= actual
        self._bank.transfer(asset, self.address, to, actual)
        return actual

    def reserve_data(self, asset: str) -> ReserveData:
        return ReserveData(liquidity_rate=self.liquidity_rate, total_supplied=self._positions[_key(asset)])

    def checkpoint(self) -> object:
        return dict(self._positions)

    def rollback(self, token: object) -> None:
        self._positions = defaultdict(int, token)

    def release(self, token: object) -> None:
        pass


class FixedRateSwapRouter:
    """Swaps at configured rates, paying out of its own target-asset reserve."""

    def __init__(
        self,
        bank: InMemoryTokenBank,
        address: str,
        payer: str,
        rates: Optional[Dict[str, Tuple[int, int]]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._bank = bank
        self.address = address
        self._payer = payer
        self._rates = {_key(token): rate for token, rate in (rates or {}).items()}
        self._clock = clock or (lambda: int(time.time()))

    def set_rate(self, token: str, numerator: int, denominator: int) -> None:
        self._rates[_key(token)] = (numerator, denominator)

    def swap_exact_in(self, amount_in: int, min_amount_out: int, path: Sequence[str], to: str, deadline: int) -> List[int]:
        if len(path) < 2:
            raise ValueError("invalid path")
        if self._clock() > deadline:
            raise RuntimeError("swap deadline expired")
        numerator, denominator = self._rates.get(_key(path[0]), (0, 1))
        amount_out = amount_in * numerator // denominator
        if amount_out < min_amount_out:
            raise RuntimeError("insufficient output amount")
        self._bank.transfer(path[0], self._payer, self.address, amount_in)
        self._bank.transfer(path[-1], self.address, to, amount_out)
        return [amount_in, amount_out]

    def checkpoint(self) -> object:
        return copy.copy(self._rates)

    def rollback(self, token: object) -> None:
        self._rates = dict(token)

    def release(self, token: object) -> None:
        pass


class StaticPriceOracle:
    def __init__(self, prices: Optional[Dict[str, int]] = None):
        self._prices = {_key(asset): price for asset, price in (prices or {}).items()}

    def set_price(self, asset: str, price: int) -> None:
        self._prices[_key(asset)] = price

    def current_price(self, asset: str) -> int:
        price = self._prices.get(_key(asset))
        if not price:
            raise LookupError(f"no price for {asset}")
        return price


class StaticEligibilityService:
    def __init__(self, eligible: bool = True):
        self.eligible = eligible
        self.calls: List[Tuple[str, int]] = []

    def check_eligibility(self, account: str, collateral_amount: int) -> bool:
        self.calls.append((account, collateral_amount))
        return self.eligible
