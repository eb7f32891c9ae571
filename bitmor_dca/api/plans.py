from typing import Optional

from fastapi import APIRouter, Depends, Query

from bitmor_dca.features.authorization.coordinator import AuthorizationCoordinator
from bitmor_dca.features.ledger.service import DCALedger
from bitmor_dca.runtime import get_coordinator, get_ledger

router = APIRouter(prefix="/v1")


@router.get("/plans/{account}")
def get_plan(account: str, ledger: DCALedger = Depends(get_ledger)):
    return ledger.get_plan(account).to_dict()


@router.get("/plans/{account}/extras")
def get_extras(account: str, ledger: DCALedger = Depends(get_ledger)):
    return ledger.get_extras(account).to_dict()


@router.get("/plans/{account}/payment-due")
def get_payment_due(account: str, coordinator: AuthorizationCoordinator = Depends(get_coordinator)):
    return coordinator.payment_due(account)


@router.get("/events")
def list_events(
    event_type: Optional[str] = Query(None, alias="type"),
    account: Optional[str] = None,
    after: int = Query(0, ge=0),
    ledger: DCALedger = Depends(get_ledger),
):
    events = ledger.event_log.events(event_type=event_type, account=account, after_sequence=after)
    return {
        "events": [
            {"sequence": e.sequence, "type": e.event_type, "timestamp": e.timestamp, "args": e.payload()}
            for e in events
        ]
    }


@router.get("/pool")
def get_pool(ledger: DCALedger = Depends(get_ledger)):
    return {
        "rewardsPool": ledger.rewards_pool,
        "totalValueLocked": ledger.total_value_locked,
        "dustThreshold": ledger.dust_threshold,
        "paused": ledger.paused,
    }
