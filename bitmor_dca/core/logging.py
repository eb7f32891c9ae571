"""
Structured logging for ledger operations and the authorization API.

JSON lines in production, one-line pretty output in development. Every record
carries the request_id bound by the middleware; ledger and coordinator records
also carry account, operation, nonce and event sequence when known.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes promoted into structured output, in this order.
STRUCTURED_FIELDS = ("account", "operation", "nonce", "sequence", "events", "error_code", "status", "path", "latency_bucket")


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def short_hex(value: Optional[str], keep: int = 6) -> Optional[str]:
    """``0x1234ab…cdef`` style abbreviation for addresses, nonces and digests."""
    if not value or len(value) <= 2 + keep * 2:
        return value
    return f"{value[:2 + keep]}…{value[-4:]}"


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for bound, label in ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms")):
        if latency_ms < bound:
            return label
    return ">=1000ms"


def _utc(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": _utc(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_utc(record), record.levelname, record.getMessage()]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"rid={rid[:8]}")
        for key in ("operation", "account", "nonce", "sequence", "error_code"):
            value = getattr(record, key, None)
            if value is None:
                continue
            if key in ("account", "nonce"):
                value = short_hex(value)
            parts.append(f"{key}={value}")
        line = " ".join(str(p) for p in parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development") -> None:
    logger = logging.getLogger("bitmor_dca")
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn has its own handlers
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.error").propagate = False


def _truncate(value, limit: int = 500) -> str:
    text = str(value)
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    account: Optional[str] = None,
    operation: Optional[str] = None,
    nonce: Optional[str] = None,
    sequence: Optional[int] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Log one ledger or authorization event with correlation fields attached."""
    logger = logging.getLogger("bitmor_dca")
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {
        "request_id": request_id or get_request_id(),
        "account": account,
        "operation": operation,
        "nonce": nonce,
        "sequence": sequence,
        "error_code": error_code,
    }
    for key, value in (extra or {}).items():
        fields[key] = _truncate(value)

    getattr(logger, level, logger.info)(msg, extra=fields)
