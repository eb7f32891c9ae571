"""Call contracts for the collaborators the ledger and coordinator consume."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class ReserveData:
    liquidity_rate: int  # ray (1e27) annualized supply rate
    total_supplied: int


class TokenBank(Protocol):
    """Custody of fungible assets (ERC20 balances)."""

    def balance_of(self, asset: str, account: str) -> int: ...

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None: ...


class LendingMarket(Protocol):
    def supply(self, asset: str, amount: int, on_behalf_of: str) -> None: ...

    def withdraw(self, asset: str, amount: int, to: str) -> int: ...

    def reserve_data(self, asset: str) -> ReserveData: ...


class SwapRouter(Protocol):
    def swap_exact_in(self, amount_in: int, min_amount_out: int, path: Sequence[str], to: str, deadline: int) -> List[int]: ...


class PriceOracle(Protocol):
    def current_price(self, asset: str) -> int: ...


class EligibilityService(Protocol):
    def check_eligibility(self, account: str, collateral_amount: int) -> bool: ...


@runtime_checkable
class Checkpointable(Protocol):
    """In-process integrations that can be rolled back with the ledger."""

    def checkpoint(self) -> object: ...

    def rollback(self, token: object) -> None: ...

    def release(self, token: object) -> None: ...
