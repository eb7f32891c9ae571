"""Liveness and readiness checks."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from bitmor_dca.core.database import check_connection, is_database_configured
from bitmor_dca.runtime import get_runtime

logger = logging.getLogger("bitmor_dca")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Signer configured, and the database reachable when one is configured."""
    runtime = get_runtime()
    checks = {
        "signer": bool(runtime.coordinator.signer_address),
        "trusted_signer": bool(runtime.ledger.trusted_signer),
        "database": check_connection() if is_database_configured() else None,
    }
    ready = checks["signer"] and checks["trusted_signer"] and checks["database"] is not False
    if not ready:
        logger.warning("readyz.not_ready", extra={"operation": "readyz"})
    return JSONResponse(status_code=200 if ready else 503, content={"ready": ready, "checks": checks})
