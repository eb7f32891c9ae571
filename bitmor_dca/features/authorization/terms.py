"""
Per-plan penalty terms.

A plan's penalty curve is chosen when its creation is authorized and is used
later to price early withdrawals and to weight rewards. Terms are stored in the
``plan_terms`` table when a database is configured, otherwise in memory, the
same way issued nonces are.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import select

from bitmor_dca.core.database import get_db_session, is_database_configured, plan_terms
from bitmor_dca.core.errors import ValidationError
from bitmor_dca.features.authorization.encoding import normalize_address
from bitmor_dca.models.plan import PlanTerms

BPS_DENOMINATOR = 10_000


class PlanTermsRegistry:
    """Account -> ``PlanTerms``; accounts without an entry get ``default``.

    Chosen terms must sit inside the default curve's [min, max] band, which is
    also the band the ledger enforces on withdrawal penalties.
    """

    def __init__(self, default: Optional[PlanTerms] = None):
        self.default = default or PlanTerms()
        self._terms: Dict[str, PlanTerms] = {}
        self._lock = threading.Lock()

    def validate(self, terms: PlanTerms) -> PlanTerms:
        if (
            terms.penalty_min_bps < self.default.penalty_min_bps
            or terms.penalty_max_bps > self.default.penalty_max_bps
            or terms.penalty_min_bps > terms.penalty_max_bps
            or terms.penalty_max_bps > BPS_DENOMINATOR
            or terms.penalty_exponent <= 0
        ):
            raise ValidationError("Invalid penalty configuration")
        return terms

    def register(self, account: str, terms: PlanTerms) -> PlanTerms:
        account = normalize_address(account)
        self.validate(terms)
        if is_database_configured():
            with get_db_session() as session:
                session.execute(plan_terms.delete().where(plan_terms.c.account == account))
                session.execute(
                    plan_terms.insert().values(
                        account=account,
                        penalty_min_bps=terms.penalty_min_bps,
                        penalty_max_bps=terms.penalty_max_bps,
                        penalty_exponent=terms.penalty_exponent,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
            return terms
        with self._lock:
            self._terms[account] = terms
        return terms

    def terms_for(self, account: str) -> PlanTerms:
        account = normalize_address(account)
        if is_database_configured():
            with get_db_session() as session:
                row = session.execute(select(plan_terms).where(plan_terms.c.account == account)).first()
            if row is None:
                return self.default
            return PlanTerms(
                penalty_min_bps=row.penalty_min_bps,
                penalty_max_bps=row.penalty_max_bps,
                penalty_exponent=row.penalty_exponent,
            )
        with self._lock:
            return self._terms.get(account, self.default)

    def clear(self) -> None:
        """Drop every stored entry (testing only)."""
        if is_database_configured():
            with get_db_session() as session:
                session.execute(plan_terms.delete())
        with self._lock:
            self._terms.clear()
