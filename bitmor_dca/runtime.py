"""
Process-wide wiring of ledger, coordinator and collaborators.

The HTTP layer reads everything through ``get_runtime()``; tests swap in their
own with ``set_runtime()``.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from bitmor_dca.core.config import Settings, settings
from bitmor_dca.core.database import create_all_tables, get_engine, is_database_configured
from bitmor_dca.features.authorization.coordinator import AuthorizationCoordinator
from bitmor_dca.features.integrations.http import CoinGeckoPriceOracle, HttpEligibilityService
from bitmor_dca.features.integrations.memory import FixedRateSwapRouter, InMemoryLendingMarket, InMemoryTokenBank
from bitmor_dca.features.ledger.event_log import EventLog, SqlEventSink
from bitmor_dca.features.ledger.service import DCALedger

logger = logging.getLogger("bitmor_dca")

LENDING_MARKET_ADDRESS = "0x000000000000000000000000000000000000A7E0"
SWAP_ROUTER_ADDRESS = "0x0000000000000000000000000000000000005A9E"


@dataclass
class Runtime:
    ledger: DCALedger
    coordinator: AuthorizationCoordinator
    bank: InMemoryTokenBank


def build_runtime(
    settings_obj: Optional[Settings] = None,
    *,
    clock: Optional[Callable[[], int]] = None,
    price_oracle=None,
    eligibility=None,
) -> Runtime:
    cfg = settings_obj or settings
    bank = InMemoryTokenBank()
    market = InMemoryLendingMarket(bank, LENDING_MARKET_ADDRESS, depositor=cfg.LEDGER_ADDRESS)
    router = FixedRateSwapRouter(bank, SWAP_ROUTER_ADDRESS, payer=cfg.LEDGER_ADDRESS, clock=clock)

    sink = None
    if is_database_configured():
        engine = get_engine()
        create_all_tables(engine)
        sink = SqlEventSink(engine)
    ledger = DCALedger.from_settings(
        cfg,
        bank=bank,
        lending_market=market,
        swap_router=router,
        clock=clock,
        event_log=EventLog(sink=sink),
    )
    coordinator = AuthorizationCoordinator.from_settings(
        cfg,
        ledger=ledger,
        price_oracle=price_oracle or CoinGeckoPriceOracle(),
        eligibility=eligibility or HttpEligibilityService(),
        lending_market=market,
        clock=clock,
    )
    if coordinator.signer_address and not ledger.trusted_signer:
        logger.warning("runtime.trusted_signer_missing", extra={"operation": "startup"})
    return Runtime(ledger=ledger, coordinator=coordinator, bank=bank)


_runtime: Optional[Runtime] = None
_lock = threading.Lock()


def get_runtime() -> Runtime:
    global _runtime
    with _lock:
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    global _runtime
    with _lock:
        _runtime = runtime


def get_ledger() -> DCALedger:
    return get_runtime().ledger


def get_coordinator() -> AuthorizationCoordinator:
    return get_runtime().coordinator
