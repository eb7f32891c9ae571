"""Error taxonomy and FastAPI handlers.

Ledger and coordinator failures fall into four families:
precondition violations, authorization failures, integration failures and
administrative blocks. Each carries a short machine-checkable ``code``.
"""

import logging
import builtins
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from bitmor_dca.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PreconditionError(AppError):
    """Wrong status, missing balance, unmet delay, malformed arrays.

    ``reason`` doubles as the error code so callers can branch on it.
    """
    code = "precondition_failed"
    status_code = 409

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason, code=reason)
        self.reason = reason


class UnauthorizedError(AppError):
    """Bad signature or consumed nonce. Never says which."""
    code = "unauthorized"
    status_code = 401

    def __init__(self):
        super().__init__("unauthorized")


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class IntegrationError(AppError):
    """Lending market, swap router or token transfer failed."""
    code = "integration_failed"
    status_code = 502


class LedgerPausedError(AppError):
    code = "ledger_paused"
    status_code = 503

    def __init__(self, message: str = "ledger is paused"):
        super().__init__(message)


class SignerNotConfiguredError(AppError):
    code = "signer_not_configured"
    status_code = 503

    def __init__(self, message: str = "trusted signer is not configured"):
        super().__init__(message)


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("bitmor_dca")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={
            "request_id": rid,
            "operation": getattr(request.state, "operation", None),
            "error_code": exc.code,
            "error_message": exc.message,
            "status": exc.status_code,
        },
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("bitmor_dca")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("bitmor_dca")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
