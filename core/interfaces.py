"""
core/interfaces.py -- Capability interfaces for the resolver's collaborators.

One Protocol per capability. Implementations do not inherit from these; any
object with matching methods qualifies (auth/store.py for SQL, MagicMock in
tests, core/hydra.py for the admin API).

Every method may raise CollaboratorUnavailable (stores) or
ProviderProtocolError (authorization provider). Nothing else is expected to
escape, and the resolver does not catch either.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from core.models import (
    Ban,
    BanLevel,
    ConsentChallenge,
    FailedAttemptsSummary,
    LoginAttemptRecord,
    LoginChallenge,
    User,
)


class IdentityStore(Protocol):
    def find_by_username_or_email(self, username: str, email: str) -> User | None: ...

    def find_by_id(self, user_id: int) -> User | None: ...

    def find_permissions(self, user_id: int) -> set[str]: ...


class BanLedger(Protocol):
    def find_bans(self, subject_id: int, level: BanLevel | None = None) -> list[Ban]:
        """Return active AND inactive bans. level=None means every level."""
        ...


class AttemptLedger(Protocol):
    def append(self, record: LoginAttemptRecord) -> None: ...

    def summarize_failures_by_ip(self, origin_ip: str, since: datetime) -> FailedAttemptsSummary: ...


class CredentialVerifier(Protocol):
    def matches(self, submitted_secret: str, stored_hash: str | None) -> bool: ...


class AuthorizationProvider(Protocol):
    def fetch_login_challenge(self, challenge_id: str) -> LoginChallenge: ...

    def accept_login(self, challenge_id: str, subject: str) -> str: ...

    def reject_login(self, challenge_id: str, reason_code: str, description: str = "") -> str: ...

    def fetch_consent_challenge(self, challenge_id: str) -> ConsentChallenge: ...

    def accept_consent(
        self,
        challenge_id: str,
        grant_scope: Sequence[str],
        grant_audience: Sequence[str] = (),
        session: Mapping[str, Any] | None = None,
    ) -> str: ...

    def reject_consent(self, challenge_id: str, reason_code: str = "access_denied", description: str = "") -> str: ...
