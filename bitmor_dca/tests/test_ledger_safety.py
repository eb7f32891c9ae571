import threading

from bitmor_dca.core.errors import IntegrationError
from bitmor_dca.features.authorization.coordinator import AuthorizationCoordinator
from bitmor_dca.features.authorization.signing import MessageSigner
from bitmor_dca.features.ledger.service import DCALedger
from bitmor_dca.models.plan import PlanStatus
from bitmor_dca.tests.mocks import (
    ALICE,
    BOB,
    CBBTC,
    CHAIN_ID,
    DAI,
    DAY,
    LEDGER,
    LINK,
    OTHER_KEY,
    OWNER,
    ROUTER,
    USDC,
    World,
    balance,
)


def _funded_world() -> World:
    world = World()
    world.fund(ALICE, 1_000_000_000)
    world.create_plan()
    return world


def test_nonce_replay_rejected():
    world = _funded_world()
    auth = world.coordinator.sign_payment(ALICE, 100_000_000, 5_000_000, False)

    first = world.ledger.record_payment(ALICE, 100_000_000, 5_000_000, False, nonce=auth.nonce, signature=auth.signature)
    replay = world.ledger.record_payment(ALICE, 100_000_000, 5_000_000, False, nonce=auth.nonce, signature=auth.signature)

    assert first.ok
    assert replay.reason == "unauthorized"
    assert replay.message == "unauthorized"
    assert world.ledger.get_plan(ALICE).total_paid == 100_000_000


def test_signature_bound_to_caller():
    world = _funded_world()
    world.fund(BOB, 100_000_000)
    world.create_plan(account=BOB)
    auth = world.coordinator.sign_payment(ALICE, 100_000_000, 5_000_000, False)

    result = world.ledger.record_payment(BOB, 100_000_000, 5_000_000, False, nonce=auth.nonce, signature=auth.signature)

    assert result.reason == "unauthorized"
    assert not world.ledger.is_nonce_used(auth.nonce)


def test_signature_bound_to_parameters():
    world = _funded_world()
    auth = world.coordinator.sign_payment(ALICE, 100_000_000, 5_000_000, False)

    inflated = world.ledger.record_payment(ALICE, 100_000_000, 50_000_000, False, nonce=auth.nonce, signature=auth.signature)
    prepaid = world.ledger.record_payment(ALICE, 100_000_000, 5_000_000, True, nonce=auth.nonce, signature=auth.signature)

    assert inflated.reason == "unauthorized"
    assert prepaid.reason == "unauthorized"


def test_signature_bound_to_operation_kind():
    world = _funded_world()
    auth = world.coordinator.sign_prepay_days(ALICE, 100_000_000, 3)

    result = world.ledger.record_payment(ALICE, 100_000_000, 3, False, nonce=auth.nonce, signature=auth.signature)
    assert result.reason == "unauthorized"


def test_untrusted_signer_rejected():
    world = _funded_world()
    rogue = AuthorizationCoordinator(MessageSigner(OTHER_KEY), CHAIN_ID)
    auth = rogue.sign_payment(ALICE, 100_000_000, 5_000_000, False)

    result = world.ledger.record_payment(ALICE, 100_000_000, 5_000_000, False, nonce=auth.nonce, signature=auth.signature)
    assert result.reason == "unauthorized"


def test_garbage_signature_and_nonce_are_unauthorized():
    world = _funded_world()
    auth = world.coordinator.sign_payment(ALICE, 1, 1, False)

    assert world.ledger.record_payment(ALICE, 1, 1, False, nonce=auth.nonce, signature="0x1234").reason == "unauthorized"
    assert world.ledger.record_payment(ALICE, 1, 1, False, nonce="0xabc", signature=auth.signature).reason == "unauthorized"


def test_missing_trusted_signer():
    world = World(trusted_signer=None)
    auth = world.coordinator.sign_complete_plan(ALICE)

    result = world.ledger.complete_plan(ALICE, nonce=auth.nonce, signature=auth.signature)
    assert result.reason == "signer_not_configured"


def test_failed_precondition_does_not_consume_nonce():
    world = World()
    auth = world.coordinator.sign_payment(ALICE, 100_000_000, 5_000_000, False)

    result = world.ledger.record_payment(ALICE, 100_000_000, 5_000_000, False, nonce=auth.nonce, signature=auth.signature)

    assert result.reason == "plan_not_active"
    assert not world.ledger.is_nonce_used(auth.nonce)


def test_insufficient_balance_rolls_back():
    world = World()
    world.fund(ALICE, 50_000_000)
    world.create_plan()

    result = world.pay(usdc=100_000_000)

    assert result.reason == "insufficient_balance"
    assert world.ledger.get_plan(ALICE).streak == 0
    assert balance(world, ALICE, USDC) == 50_000_000


def test_out_of_range_parameters_rejected():
    world = _funded_world()
    result = world.ledger.record_payment(ALICE, 2**128, 1, False, nonce="0x" + "00" * 32, signature="0x")
    assert result.reason == "invalid_parameter"


def test_lending_failure_rolls_back_everything(monkeypatch):
    world = _funded_world()

    def broken_supply(asset, amount, on_behalf_of):
        raise RuntimeError("pool frozen")

    monkeypatch.setattr(world.market, "supply", broken_supply)
    auth = world.coordinator.sign_payment(ALICE, 100_000_000, 5_000_000, False)
    result = world.ledger.record_payment(ALICE, 100_000_000, 5_000_000, False, nonce=auth.nonce, signature=auth.signature)

    assert result.reason == "lending_supply_failed"
    assert isinstance(result.error, IntegrationError)
    assert balance(world, ALICE, USDC) == 1_000_000_000
    assert balance(world, LEDGER, USDC) == 0
    assert world.ledger.get_plan(ALICE).total_paid == 0
    assert world.ledger.total_value_locked == 0
    assert not world.ledger.is_nonce_used(auth.nonce)
    assert len(world.ledger.event_log) == 1  # only PlanCreated


def test_reentrant_callback_rejected(monkeypatch):
    world = _funded_world()
    original_supply = world.market.supply
    inner_results = []

    def reentrant_supply(asset, amount, on_behalf_of):
        inner_results.append(world.ledger.claim_rewards(ALICE))
        original_supply(asset, amount, on_behalf_of)

    monkeypatch.setattr(world.market, "supply", reentrant_supply)
    outer = world.pay()

    assert outer.ok
    assert inner_results[0].reason == "reentrant_call"


def test_concurrent_payments_serialize():
    world = _funded_world()
    auths = [world.coordinator.sign_payment(ALICE, 10_000_000, 1_000, False) for _ in range(8)]
    results = []

    def submit(auth):
        results.append(
            world.ledger.record_payment(ALICE, 10_000_000, 1_000, False, nonce=auth.nonce, signature=auth.signature)
        )

    threads = [threading.Thread(target=submit, args=(auth,)) for auth in auths]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert all(r.ok for r in results)
    plan = world.ledger.get_plan(ALICE)
    assert plan.total_paid == 80_000_000
    assert plan.btc_accumulated == 8_000
    assert world.ledger.total_value_locked == 80_000_000


def test_dust_sweep_credits_swapped_amount():
    world = _funded_world()
    world.router.set_rate(DAI, 2_000, 10**18)
    world.router.set_rate(LINK, 30_000, 10**18)
    world.fund(ALICE, 12 * 10**18, asset=DAI)
    world.fund(ALICE, 2 * 10**18, asset=LINK)

    amounts, tokens = [12 * 10**18, 2 * 10**18], [DAI, LINK]
    auth = world.coordinator.quote_dust_sweep(ALICE, amounts, tokens, 84_000)
    result = world.ledger.sweep_dust(ALICE, amounts, tokens, 84_000, nonce=auth.nonce, signature=auth.signature)

    assert result.ok
    assert result.value == 24_000 + 60_000
    assert world.ledger.get_plan(ALICE).btc_accumulated == 84_000
    assert balance(world, ALICE, DAI) == 0
    assert balance(world, ROUTER, DAI) == 12 * 10**18
    assert result.event.payload()["dustAmount"] == 14 * 10**18


def test_dust_sweep_shortfall_rolls_back():
    world = _funded_world()
    world.router.set_rate(DAI, 2_000, 10**18)
    world.fund(ALICE, 12 * 10**18, asset=DAI)
    router_reserve = balance(world, ROUTER, CBBTC)

    auth = world.coordinator.quote_dust_sweep(ALICE, [12 * 10**18], [DAI], 24_001)
    result = world.ledger.sweep_dust(ALICE, [12 * 10**18], [DAI], 24_001, nonce=auth.nonce, signature=auth.signature)

    assert result.reason == "swap_output_below_minimum"
    assert balance(world, ALICE, DAI) == 12 * 10**18
    assert balance(world, ROUTER, CBBTC) == router_reserve
    assert world.ledger.get_plan(ALICE).btc_accumulated == 0
    assert not world.ledger.is_nonce_used(auth.nonce)


def test_dust_sweep_can_complete_plan():
    world = World()
    world.fund(ALICE, 100_000_000)
    world.create_plan(target=100_000)
    world.pay(btc=90_000)
    world.router.set_rate(DAI, 2_000, 10**18)
    world.fund(ALICE, 12 * 10**18, asset=DAI)

    auth = world.coordinator.quote_dust_sweep(ALICE, [12 * 10**18], [DAI], 0)
    assert world.ledger.sweep_dust(ALICE, [12 * 10**18], [DAI], 0, nonce=auth.nonce, signature=auth.signature).ok
    assert world.ledger.get_plan(ALICE).status == PlanStatus.COMPLETED


def test_dust_sweep_length_mismatch():
    world = _funded_world()
    auth = world.coordinator.sign_dust_sweep(ALICE, [1, 2], [DAI, LINK], 0)
    result = world.ledger.sweep_dust(ALICE, [1, 2], [DAI], 0, nonce=auth.nonce, signature=auth.signature)
    assert result.reason == "array_length_mismatch"


def test_pause_blocks_user_operations():
    world = _funded_world()

    assert world.ledger.pause(OWNER).ok
    assert world.pay().reason == "ledger_paused"
    assert world.ledger.claim_rewards(ALICE).reason == "ledger_paused"

    assert world.ledger.unpause(OWNER).ok
    assert world.pay().ok


def test_admin_operations_are_owner_only():
    world = _funded_world()

    assert world.ledger.pause(ALICE).reason == "forbidden"
    assert world.ledger.set_dust_threshold(BOB, 1).reason == "forbidden"
    assert world.ledger.emergency_withdraw_all(ALICE).reason == "forbidden"
    assert world.ledger.paused is False


def test_plan_pause_and_resume():
    world = _funded_world()

    assert world.ledger.pause_plan(OWNER, ALICE).ok
    assert world.ledger.get_plan(ALICE).status == PlanStatus.PAUSED
    assert world.pay().reason == "plan_not_active"
    assert world.ledger.resume_plan(OWNER, BOB).reason == "plan_not_paused"

    assert world.ledger.resume_plan(OWNER, ALICE).ok
    assert world.pay().ok


def test_rotating_trusted_signer():
    world = _funded_world()
    old_auth = world.coordinator.sign_payment(ALICE, 1, 1, False)
    rogue = MessageSigner(OTHER_KEY)

    result = world.ledger.set_trusted_signer(OWNER, rogue.address)
    assert result.ok
    assert result.event.event_type == "TrustedSignerUpdated"

    stale = world.ledger.record_payment(ALICE, 1, 1, False, nonce=old_auth.nonce, signature=old_auth.signature)
    assert stale.reason == "unauthorized"


def test_dust_threshold_update():
    world = _funded_world()
    assert world.ledger.set_dust_threshold(OWNER, 5).ok
    assert world.ledger.dust_threshold == 5

    auth = world.coordinator.quote_dust_sweep(ALICE, [5], [DAI], 0)
    assert auth.operation == "sweep_dust"


def test_emergency_withdraw_all():
    world = _funded_world()
    world.pay()
    reserve = balance(world, LEDGER, CBBTC)

    result = world.ledger.emergency_withdraw_all(OWNER)

    assert result.ok
    assert world.ledger.total_value_locked == 0
    assert world.ledger.get_plan(ALICE).principal_locked == 0
    assert balance(world, OWNER, USDC) == 100_000_000
    assert balance(world, OWNER, CBBTC) == reserve
    assert result.value == {"principal": 100_000_000, "target_reserve": reserve}
    assert result.event.payload()["details"]["principal"] == 100_000_000


def test_ledger_from_settings_uses_configured_values():
    from bitmor_dca.core.config import Settings

    world = World()
    cfg = Settings(
        LEDGER_OWNER_ADDRESS=OWNER,
        TRUSTED_SIGNER_ADDRESS=world.signer.address,
        DUST_THRESHOLD=42,
        CHAIN_ID=CHAIN_ID,
    )
    ledger = DCALedger.from_settings(cfg, bank=world.bank, lending_market=world.market, swap_router=world.router)

    assert ledger.dust_threshold == 42
    assert ledger.trusted_signer == world.signer.address
    assert ledger.chain_id == CHAIN_ID


def test_streak_resets_after_long_plan_pause():
    world = _funded_world()
    world.pay()
    world.ledger.pause_plan(OWNER, ALICE)
    world.clock.advance(8 * DAY)
    world.ledger.resume_plan(OWNER, ALICE)

    assert world.pay().value.streak == 1
