"""
HTTP-backed collaborators for the coordinator.

Both clients use httpx with explicit timeouts. Price lookups propagate failures
so no quote is signed against a stale or missing price; the eligibility check
fails closed.
"""
from __future__ import annotations

import logging
import threading
import time
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Dict, Optional, Tuple

import httpx

from bitmor_dca.core.config import settings
from bitmor_dca.core.errors import IntegrationError

logger = logging.getLogger("bitmor_dca")


class CoinGeckoPriceOracle:
    """Spot price of the target asset in USD, scaled to ``price_decimals``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        asset_id: Optional[str] = None,
        price_decimals: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or settings.PRICE_API_URL).rstrip("/")
        self.asset_id = asset_id or settings.PRICE_ASSET_ID
        self.price_decimals = settings.PRICE_DECIMALS if price_decimals is None else price_decimals
        self._client = client or httpx.Client(timeout=timeout or settings.PRICE_TIMEOUT_SECONDS)

    def current_price(self, asset: str) -> int:
        try:
            response = self._client.get(
                f"{self.base_url}/simple/price",
                params={"ids": self.asset_id, "vs_currencies": "usd"},
            )
            response.raise_for_status()
            # JSON numbers may arrive in exponent form, e.g. 1e-05
            usd = Decimal(str(response.json()[self.asset_id]["usd"]))
            if not usd.is_finite():
                raise ValueError(f"non-finite price {usd}")
            price = int(usd.scaleb(self.price_decimals).to_integral_value(rounding=ROUND_DOWN))
        except (httpx.HTTPError, KeyError, TypeError, ValueError, InvalidOperation) as exc:
            logger.warning("price.lookup_failed", extra={"operation": "price", "error_code": "price_unavailable"})
            raise IntegrationError("price unavailable", code="price_unavailable") from exc

        if price <= 0:
            raise IntegrationError("price unavailable", code="price_unavailable")
        return price

    def close(self) -> None:
        self._client.close()


class HttpEligibilityService:
    """Loan pre-qualification over HTTP with a short per-account cache."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        cache_seconds: Optional[int] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or settings.BITMOR_API_URL or "").rstrip("/")
        self.api_key = api_key if api_key is not None else settings.BITMOR_API_KEY
        self.cache_seconds = settings.ELIGIBILITY_CACHE_SECONDS if cache_seconds is None else cache_seconds
        self._client = client or httpx.Client(timeout=timeout)
        self._cache: Dict[Tuple[str, int], Tuple[float, bool]] = {}
        self._lock = threading.Lock()

    def check_eligibility(self, account: str, collateral_amount: int) -> bool:
        key = (account.lower(), collateral_amount)
        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(key)
            if cached and now - cached[0] < self.cache_seconds:
                return cached[1]

        if not self.base_url:
            logger.warning("eligibility.not_configured", extra={"account": account, "operation": "eligibility"})
            return False

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = self._client.post(
                f"{self.base_url}/check-eligibility",
                json={"userAddress": account, "collateralAmount": str(collateral_amount)},
                headers=headers,
            )
            response.raise_for_status()
            eligible = bool(response.json().get("eligible", False))
        except (httpx.HTTPError, ValueError):
            logger.warning(
                "eligibility.check_failed",
                exc_info=True,
                extra={"account": account, "operation": "eligibility", "error_code": "eligibility_unavailable"},
            )
            return False

        with self._lock:
            self._cache = {k: v for k, v in self._cache.items() if now - v[0] < self.cache_seconds}
            self._cache[key] = (now, eligible)
        return eligible

    def close(self) -> None:
        self._client.close()
