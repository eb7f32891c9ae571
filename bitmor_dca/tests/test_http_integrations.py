import httpx
import pytest

from bitmor_dca.core.errors import IntegrationError
from bitmor_dca.features.integrations.http import CoinGeckoPriceOracle, HttpEligibilityService
from bitmor_dca.tests.mocks import ALICE, CBBTC


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_price_is_scaled_to_fixed_point():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/simple/price")
        assert request.url.params["ids"] == "bitcoin"
        return httpx.Response(200, json={"bitcoin": {"usd": 50000.12}})

    oracle = CoinGeckoPriceOracle(base_url="https://prices.test", client=_client(handler))

    assert oracle.current_price(CBBTC) == 5_000_012_000_000


def test_integer_price():
    oracle = CoinGeckoPriceOracle(
        base_url="https://prices.test",
        client=_client(lambda request: httpx.Response(200, json={"bitcoin": {"usd": 64000}})),
    )
    assert oracle.current_price(CBBTC) == 6_400_000_000_000


def test_price_failure_raises_integration_error():
    oracle = CoinGeckoPriceOracle(
        base_url="https://prices.test",
        client=_client(lambda request: httpx.Response(503, json={})),
    )
    with pytest.raises(IntegrationError) as exc:
        oracle.current_price(CBBTC)
    assert exc.value.code == "price_unavailable"


def test_eligibility_sends_bearer_and_caches():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"eligible": True})

    service = HttpEligibilityService(
        base_url="https://credit.test", api_key="secret", cache_seconds=300, client=_client(handler)
    )

    assert service.check_eligibility(ALICE, 25_000_000) is True
    assert service.check_eligibility(ALICE, 25_000_000) is True
    assert len(calls) == 1
    assert calls[0].headers["Authorization"] == "Bearer secret"
    assert calls[0].url.path == "/check-eligibility"


def test_eligibility_fails_closed():
    service = HttpEligibilityService(
        base_url="https://credit.test",
        api_key="secret",
        client=_client(lambda request: httpx.Response(500)),
    )
    assert service.check_eligibility(ALICE, 1) is False


def test_eligibility_without_endpoint_is_false():
    service = HttpEligibilityService(base_url="", api_key="", client=_client(lambda request: httpx.Response(200)))
    assert service.check_eligibility(ALICE, 1) is False


def _price_oracle(usd) -> CoinGeckoPriceOracle:
    return CoinGeckoPriceOracle(
        base_url="https://prices.test",
        price_decimals=8,
        client=_client(lambda request: httpx.Response(200, json={"bitcoin": {"usd": usd}})),
    )


def test_exponent_form_price_is_parsed():
    # json encodes 1e-05 in exponent form
    assert _price_oracle(1e-05).current_price(CBBTC) == 1000
    assert _price_oracle(6.4e4).current_price(CBBTC) == 6_400_000_000_000


@pytest.mark.parametrize("usd", [1e-09, 0, -5, "not-a-number", None, {"value": 1}])
def test_unusable_price_raises_integration_error(usd):
    with pytest.raises(IntegrationError) as exc:
        _price_oracle(usd).current_price(CBBTC)
    assert exc.value.code == "price_unavailable"


def test_eligibility_cache_drops_expired_entries(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr("bitmor_dca.features.integrations.http.time.monotonic", lambda: clock[0])
    service = HttpEligibilityService(
        base_url="https://credit.test",
        api_key="secret",
        cache_seconds=60,
        client=_client(lambda request: httpx.Response(200, json={"eligible": True})),
    )

    for amount in range(5):
        service.check_eligibility(ALICE, amount)
    assert len(service._cache) == 5

    clock[0] += 61
    service.check_eligibility(ALICE, 99)
    assert list(service._cache) == [(ALICE.lower(), 99)]
