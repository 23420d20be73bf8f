"""
core/bans.py -- Decides whether a subject's bans block authentication.

Only active GLOBAL bans block a login. CHAT bans are enforced by the chat
services and never stop authentication. The ledger is always asked for every
level so that this module stays the single place where the blocking policy
lives.
"""

from __future__ import annotations

from datetime import datetime

from core.interfaces import BanLedger
from core.models import BanDecision, BanLevel


class BanEvaluator:
    def __init__(self, ledger: BanLedger) -> None:
        self._ledger = ledger

    def evaluate(self, subject_id: int, as_of: datetime) -> BanDecision:
        """Return blocked(until) for the latest-expiring active GLOBAL ban, else clear.

        until=None on a blocked decision means at least one active GLOBAL ban
        is permanent.
        """
        bans = self._ledger.find_bans(subject_id, None)
        active = [b for b in bans if b.level == BanLevel.GLOBAL and b.is_active(as_of)]
        if not active:
            return BanDecision(blocked=False)
        if any(b.expires_at is None for b in active):
            return BanDecision(blocked=True, until=None)
        return BanDecision(blocked=True, until=max(b.expires_at for b in active))
