import logging

import pytest
from eth_utils import to_checksum_address
from fastapi.testclient import TestClient

from bitmor_dca.main import app
from bitmor_dca.core.middleware.request_id import route_tags
from bitmor_dca.runtime import Runtime, set_runtime
from bitmor_dca.tests.mocks import ALICE, OWNER, World


@pytest.fixture
def world():
    world = World()
    set_runtime(Runtime(ledger=world.ledger, coordinator=world.coordinator, bank=world.bank))
    yield world
    set_runtime(None)


@pytest.fixture
def client(world):
    return TestClient(app)


def test_healthz(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_readyz_reports_signer(client):
    res = client.get("/readyz")
    assert res.status_code == 200
    assert res.json()["checks"]["signer"] is True


def test_plan_view_defaults_to_inactive(client):
    res = client.get(f"/v1/plans/{ALICE}")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "INACTIVE"
    assert body["btcAccumulated"] == 0


def test_bad_address_returns_error_payload(client):
    res = client.get("/v1/plans/0xnot-an-address", headers={"x-request-id": "req-123"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == "req-123"
    assert res.headers["x-request-id"] == "req-123"


def test_payment_authorization_requires_active_plan(client):
    res = client.post("/v1/authorizations/payment", json={"account": ALICE})
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "plan_not_active"


def test_create_plan_authorization_is_accepted_by_ledger(client, world):
    res = client.post(
        "/v1/authorizations/create-plan",
        json={
            "account": ALICE,
            "targetBTC": 100_000_000,
            "dailyAmount": 100_000_000,
            "timePeriod": 365,
            "withdrawalDelay": 30,
            "cadence": "weekly",
        },
    )
    assert res.status_code == 200
    auth = res.json()
    assert auth["operation"] == "create_plan"
    assert auth["params"]["cadence"] == 1

    p = auth["params"]
    result = world.ledger.create_plan(
        ALICE,
        p["targetBTC"],
        p["dailyAmount"],
        p["timePeriod"],
        p["withdrawalDelay"],
        p["cadence"],
        p["bitmorEnabled"],
        nonce=auth["nonce"],
        signature=auth["signature"],
    )
    assert result.ok

    events = client.get("/v1/events", params={"type": "PlanCreated"}).json()["events"]
    assert len(events) == 1
    assert events[0]["sequence"] == 1
    assert events[0]["args"]["user"] == to_checksum_address(ALICE)


def test_payment_quote_block(client, world):
    world.fund(ALICE, 100_000_000)
    world.create_plan()

    res = client.post("/v1/authorizations/payment", json={"account": ALICE})

    assert res.status_code == 200
    quote = res.json()["quote"]
    assert quote["btcAmount"] == 200_000
    assert quote["usesPrepaid"] is False


def test_unknown_cadence_rejected(client):
    res = client.post(
        "/v1/authorizations/create-plan",
        json={"account": ALICE, "targetBTC": 1, "dailyAmount": 1, "timePeriod": 1, "withdrawalDelay": 1, "cadence": "hourly"},
    )
    assert res.status_code == 400


def test_empty_reward_distribution_is_unsigned(client):
    res = client.post("/v1/authorizations/reward-distribution", json={"operator": OWNER})
    assert res.status_code == 200
    body = res.json()
    assert body["authorization"] is None
    assert body["users"] == []


def test_pool_view(client, world):
    world.ledger.pause(OWNER)
    body = client.get("/v1/pool").json()
    assert body == {"rewardsPool": 0, "totalValueLocked": 0, "dustThreshold": 10_000_000, "paused": True}


def _plan_body(**overrides):
    body = {"account": ALICE, "targetBTC": 100_000_000, "dailyAmount": 100_000_000, "timePeriod": 365, "withdrawalDelay": 30}
    body.update(overrides)
    return body


def test_create_plan_records_penalty_terms(client, world):
    res = client.post("/v1/authorizations/create-plan", json=_plan_body(penaltyMin=200, penaltyMax=1000, penaltyExponent=2.0))

    assert res.status_code == 200
    terms = world.coordinator.terms.terms_for(ALICE)
    assert (terms.penalty_min_bps, terms.penalty_max_bps, terms.penalty_exponent) == (200, 1000, 2.0)


def test_create_plan_rejects_invalid_penalty_terms(client, world):
    res = client.post("/v1/authorizations/create-plan", json=_plan_body(penaltyMin=3000, penaltyMax=1000))

    assert res.status_code == 400
    assert res.json()["error"]["message"] == "Invalid penalty configuration"


def test_create_plan_rejects_zero_daily_amount(client):
    res = client.post("/v1/authorizations/create-plan", json=_plan_body(dailyAmount=0))
    assert res.status_code == 422


def test_payment_authorization_refused_when_not_due(client, world):
    world.fund(ALICE, 100_000_000)
    world.create_plan()
    world.pay()

    res = client.post("/v1/authorizations/payment", json={"account": ALICE})

    assert res.status_code == 409
    assert res.json()["error"]["code"] == "payment_not_due"


def test_prepay_authorization_prices_days_from_plan(client, world):
    world.create_plan(daily=30_000_000)

    res = client.post("/v1/authorizations/prepay", json={"account": ALICE, "days": 3})

    assert res.status_code == 200
    assert res.json()["params"] == {"usdcAmount": 90_000_000, "days": 3}


def test_route_tags():
    assert route_tags("/v1/authorizations/early-withdrawal") == ("authorize.early_withdrawal", None)
    assert route_tags(f"/v1/plans/{ALICE}/payment-due") == ("plan.payment_due", ALICE)
    assert route_tags(f"/v1/plans/{ALICE}") == ("plan.view", ALICE)
    assert route_tags("/healthz") == ("healthz", None)
    assert route_tags("/") == (None, None)


def test_access_log_carries_operation_and_account(client, caplog):
    with caplog.at_level(logging.INFO, logger="bitmor_dca"):
        client.get(f"/v1/plans/{ALICE}/extras", headers={"x-request-id": "req-tags"})

    record = [r for r in caplog.records if r.getMessage() == "request.complete"][-1]
    assert record.request_id == "req-tags"
    assert record.operation == "plan.extras"
    assert record.account == ALICE
    assert record.path == f"/v1/plans/{ALICE}/extras"


def test_error_log_carries_operation(client, caplog):
    with caplog.at_level(logging.INFO, logger="bitmor_dca"):
        client.post("/v1/authorizations/payment", json={"account": ALICE})

    record = [r for r in caplog.records if r.getMessage() == "app.error"][-1]
    assert record.operation == "authorize.payment"
    assert record.error_code == "plan_not_active"
