"""Unit tests for core/throttle.py -- ThrottleGuard.evaluate.

The attempt ledger is a MagicMock; every test pins `now` so the cooldown
arithmetic is deterministic.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from core.errors import CollaboratorUnavailable
from core.models import FailedAttemptsSummary
from core.throttle import ThrottleGuard

_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)
_LOOKBACK = timedelta(days=1)
_IP = "203.0.113.7"


def _guard(summary: FailedAttemptsSummary) -> tuple[ThrottleGuard, MagicMock]:
    ledger = MagicMock()
    ledger.summarize_failures_by_ip.return_value = summary
    guard = ThrottleGuard(ledger, attempt_threshold=10, account_threshold=5, cooldown=timedelta(minutes=5))
    return guard, ledger


class TestThrottleGuard:
    def test_empty_summary_allows(self):
        guard, _ = _guard(FailedAttemptsSummary())
        decision = guard.evaluate(_IP, _LOOKBACK, now=_NOW)
        assert decision.allowed
        assert not decision.throttled

    def test_queries_ledger_with_lookback_start(self):
        guard, ledger = _guard(FailedAttemptsSummary())
        guard.evaluate(_IP, _LOOKBACK, now=_NOW)
        ledger.summarize_failures_by_ip.assert_called_once_with(_IP, _NOW - _LOOKBACK)

    def test_many_attempts_recent_failure_throttles(self):
        summary = FailedAttemptsSummary(
            failed_count=100,
            accounts_affected=1,
            first_failure_at=_NOW - timedelta(minutes=1),
            last_failure_at=_NOW - timedelta(seconds=10),
        )
        guard, _ = _guard(summary)
        assert guard.evaluate(_IP, _LOOKBACK, now=_NOW).throttled

    def test_many_accounts_recent_failure_throttles(self):
        summary = FailedAttemptsSummary(failed_count=6, accounts_affected=6, last_failure_at=_NOW)
        guard, _ = _guard(summary)
        assert guard.evaluate(_IP, _LOOKBACK, now=_NOW).throttled

    def test_attempts_at_threshold_allows(self):
        # The threshold must be exceeded, not merely reached.
        summary = FailedAttemptsSummary(failed_count=10, accounts_affected=5, last_failure_at=_NOW)
        guard, _ = _guard(summary)
        assert guard.evaluate(_IP, _LOOKBACK, now=_NOW).allowed

    def test_old_last_failure_allows(self):
        summary = FailedAttemptsSummary(
            failed_count=100,
            accounts_affected=50,
            last_failure_at=_NOW - timedelta(minutes=6),
        )
        guard, _ = _guard(summary)
        assert guard.evaluate(_IP, _LOOKBACK, now=_NOW).allowed

    def test_missing_last_failure_allows(self):
        guard, _ = _guard(FailedAttemptsSummary(failed_count=100, accounts_affected=None))
        assert guard.evaluate(_IP, _LOOKBACK, now=_NOW).allowed

    def test_null_counts_count_as_zero(self):
        summary = FailedAttemptsSummary(failed_count=None, accounts_affected=None, last_failure_at=_NOW)
        guard, _ = _guard(summary)
        assert guard.evaluate(_IP, _LOOKBACK, now=_NOW).allowed

    def test_ledger_failure_propagates(self):
        ledger = MagicMock()
        ledger.summarize_failures_by_ip.side_effect = CollaboratorUnavailable("login log down")
        guard = ThrottleGuard(ledger, attempt_threshold=10, account_threshold=5, cooldown=timedelta(minutes=5))
        with pytest.raises(CollaboratorUnavailable):
            guard.evaluate(_IP, _LOOKBACK, now=_NOW)
