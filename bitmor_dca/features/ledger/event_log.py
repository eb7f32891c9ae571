"""
Append-only ledger event log.

Sequence numbers are dense and start at 1. Events are kept in memory; when a
sink is attached each batch is also written to the ``ledger_events`` table
before it becomes visible, so a failed write leaves the log unchanged.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import func, select

from bitmor_dca.core.database import ledger_events
from bitmor_dca.models.events import LedgerEvent


class EventSink(Protocol):
    def write(self, events: Sequence[LedgerEvent]) -> None: ...

    def last_sequence(self) -> int: ...


class SqlEventSink:
    """Writes events through a SQLAlchemy engine in one transaction per batch."""

    def __init__(self, engine):
        self._engine = engine

    def write(self, events: Sequence[LedgerEvent]) -> None:
        if not events:
            return
        now = datetime.now(timezone.utc)
        rows = [
            {
                "sequence": event.sequence,
                "event_type": event.event_type,
                "account": event.user,
                "payload": event.payload(),
                "occurred_at": event.timestamp,
                "created_at": now,
            }
            for event in events
        ]
        with self._engine.begin() as conn:
            conn.execute(ledger_events.insert(), rows)

    def last_sequence(self) -> int:
        with self._engine.connect() as conn:
            return conn.execute(select(func.max(ledger_events.c.sequence))).scalar() or 0

    def read_all(self) -> List[dict]:
        with self._engine.connect() as conn:
            result = conn.execute(select(ledger_events).order_by(ledger_events.c.sequence))
            return [dict(row._mapping) for row in result]


class EventLog:
    def __init__(self, sink: Optional[EventSink] = None):
        self._events: List[LedgerEvent] = []
        self._sink = sink
        self._lock = threading.Lock()
        # continue numbering after whatever the sink already holds
        self._last_sequence = sink.last_sequence() if sink is not None else 0

    def append_batch(self, events: Sequence[LedgerEvent]) -> List[LedgerEvent]:
        """Assign sequences, persist, then publish. Returns the sequenced events."""
        with self._lock:
            start = self._last_sequence + 1
            sequenced = [event.model_copy(update={"sequence": start + i}) for i, event in enumerate(events)]
            if self._sink is not None:
                self._sink.write(sequenced)
            self._events.extend(sequenced)
            self._last_sequence += len(sequenced)
            return sequenced

    def events(
        self,
        *,
        event_type: Optional[str] = None,
        account: Optional[str] = None,
        after_sequence: int = 0,
    ) -> List[LedgerEvent]:
        """Copy of the log, optionally filtered."""
        with self._lock:
            selected = list(self._events)
        if after_sequence:
            selected = [e for e in selected if e.sequence > after_sequence]
        if event_type:
            selected = [e for e in selected if e.event_type == event_type]
        if account:
            selected = [e for e in selected if e.user and e.user.lower() == account.lower()]
        return selected

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
