"""
Request correlation for the authorization API.

Every request gets a request_id (echoed from ``x-request-id`` when the caller
sends one) and is tagged with the ledger operation it concerns, so signing and
ledger log lines can be joined with the HTTP access line.
"""
import time
from typing import Optional, Tuple
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from bitmor_dca.core.logging import latency_bucket_ms, log_event, request_id_ctx_var


def route_tags(path: str) -> Tuple[Optional[str], Optional[str]]:
    """``(operation, account)`` for an API path.

    /v1/authorizations/early-withdrawal -> ("authorize.early_withdrawal", None)
    /v1/plans/0xabc/payment-due         -> ("plan.payment_due", "0xabc")
    """
    parts = [p for p in path.split("/") if p]
    if parts[:1] == ["v1"]:
        parts = parts[1:]
    if not parts:
        return None, None

    if parts[0] == "authorizations" and len(parts) == 2:
        return "authorize." + parts[1].replace("-", "_"), None
    if parts[0] == "plans" and len(parts) in (2, 3):
        view = parts[2].replace("-", "_") if len(parts) == 3 else "view"
        return "plan." + view, parts[1]
    if len(parts) == 1:
        return parts[0].replace("-", "_"), None
    return None, None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind request_id, operation and account to the request and log completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        operation, account = route_tags(request.url.path)
        request.state.request_id = rid
        request.state.operation = operation
        request.state.account = account
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        latency = latency_bucket_ms((time.perf_counter() - start) * 1000)

        response.headers[self.header_name] = rid
        log_event(
            "warning" if response.status_code >= 500 else "info",
            "request.complete",
            request_id=rid,
            account=account,
            operation=operation,
            extra={
                "path": request.url.path,
                "method": request.method,
                "status": response.status_code,
                "latency_bucket": latency,
            },
        )
        return response
