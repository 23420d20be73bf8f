"""
core/throttle.py -- Failed-login throttling per origin IP.

The guard runs before any user lookup or password comparison, so a throttled
IP never reaches bcrypt or the user table.

Policy: throttled when (failed attempts > attempt threshold OR distinct
accounts targeted > account threshold) AND the most recent failure lies
within the cooldown window. Missing summary fields count as zero.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from core.errors import CollaboratorUnavailable
from core.interfaces import AttemptLedger
from core.models import ThrottleDecision

logger = logging.getLogger("consentgate.throttle")


class ThrottleGuard:
    def __init__(
        self,
        ledger: AttemptLedger,
        attempt_threshold: int,
        account_threshold: int,
        cooldown: timedelta,
    ) -> None:
        self._ledger = ledger
        self.attempt_threshold = attempt_threshold
        self.account_threshold = account_threshold
        self.cooldown = cooldown

    def evaluate(self, origin_ip: str, lookback: timedelta, now: datetime | None = None) -> ThrottleDecision:
        """Decide whether origin_ip may attempt a login right now.

        A ledger failure propagates as CollaboratorUnavailable. The caller
        aborts the request, so an unreachable ledger never lets a login
        through.
        """
        now = now or datetime.now(timezone.utc)
        try:
            summary = self._ledger.summarize_failures_by_ip(origin_ip, now - lookback)
        except CollaboratorUnavailable:
            logger.warning("Failed-login summary unavailable for %s; refusing the attempt", origin_ip)
            raise

        failed = summary.failed_count or 0
        accounts = summary.accounts_affected or 0
        over_threshold = failed > self.attempt_threshold or accounts > self.account_threshold
        if not over_threshold or summary.last_failure_at is None:
            return ThrottleDecision(throttled=False)

        if summary.last_failure_at > now - self.cooldown:
            logger.warning(
                "Throttling %s: %d failed attempts across %d accounts, last at %s",
                origin_ip,
                failed,
                accounts,
                summary.last_failure_at.isoformat(),
            )
            return ThrottleDecision(throttled=True)
        return ThrottleDecision(throttled=False)
