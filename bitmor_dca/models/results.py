from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from bitmor_dca.core.errors import AppError
from bitmor_dca.models.events import LedgerEvent


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of one ledger operation: events on success, a reason on failure."""

    operation: str
    ok: bool
    events: List[LedgerEvent] = field(default_factory=list)
    value: Any = None
    reason: Optional[str] = None
    message: Optional[str] = None
    error: Optional[AppError] = None

    @classmethod
    def success(cls, operation: str, events: List[LedgerEvent], value: Any = None) -> "LedgerResult":
        return cls(operation=operation, ok=True, events=list(events), value=value)

    @classmethod
    def failure(cls, operation: str, error: AppError) -> "LedgerResult":
        return cls(operation=operation, ok=False, reason=error.code, message=error.message, error=error)

    @property
    def event(self) -> Optional[LedgerEvent]:
        return self.events[0] if self.events else None

    def unwrap(self) -> Any:
        """Return ``value`` or raise the captured error."""
        if not self.ok and self.error is not None:
            raise self.error
        return self.value
