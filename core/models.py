"""
core/models.py -- Domain dataclasses for the login & consent provider.

Pattern: Data class (pure data container, near-zero logic). Stores, the
provider client and the resolver do the work; these classes own the shape.
The only behaviour kept here is the ban-activity rule, because it is a
property of the Ban itself and every caller must agree on it.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass
class User:
    """An account holder.

    steam_id / gog_id are None until the player links the matching platform
    account. Either one is enough to satisfy the lobby-scope gate.
    """

    id: int
    username: str
    password_hash: str
    email: str
    steam_id: int | None = None
    gog_id: str | None = None
    failed_login_count: int = 0

    @property
    def has_linked_platform(self) -> bool:
        return self.steam_id is not None or self.gog_id is not None


# ---------------------------------------------------------------------------
# Bans
# ---------------------------------------------------------------------------


class BanLevel(str, Enum):
    GLOBAL = "GLOBAL"
    CHAT = "CHAT"


@dataclass
class Ban:
    """A disciplinary restriction on a subject.

    expires_at=None means the ban is permanent. Revocation is terminal: once
    revoked_at is set it is never cleared again.
    """

    subject_id: int
    issuer_id: int
    level: BanLevel
    reason: str
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_by: int | None = None
    revoke_reason: str | None = None
    id: int | None = None
    created_at: datetime | None = None

    def is_active(self, as_of: datetime) -> bool:
        if self.revoked_at is not None:
            return False
        return self.expires_at is None or self.expires_at > as_of


# ---------------------------------------------------------------------------
# Login attempts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoginAttemptRecord:
    """One login attempt outcome. Append-only; never updated or deleted."""

    subject_id: int | None
    origin_ip: str
    attempted_at: datetime
    success: bool


@dataclass(frozen=True)
class FailedAttemptsSummary:
    """Failed attempts from one IP inside a lookback window.

    Every field is None when the window holds no failures.
    """

    failed_count: int | None = None
    accounts_affected: int | None = None
    first_failure_at: datetime | None = None
    last_failure_at: datetime | None = None


# ---------------------------------------------------------------------------
# Authorization server challenges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoginChallenge:
    challenge: str
    requested_scope: list[str] = field(default_factory=list)
    requested_access_token_audience: list[str] = field(default_factory=list)
    client: dict[str, Any] = field(default_factory=dict)
    request_url: str = ""
    skip: bool = False
    subject: str = ""


@dataclass(frozen=True)
class ConsentChallenge:
    challenge: str
    requested_scope: list[str] = field(default_factory=list)
    requested_access_token_audience: list[str] = field(default_factory=list)
    client: dict[str, Any] = field(default_factory=dict)
    request_url: str = ""
    skip: bool = False
    subject: str = ""


@dataclass(frozen=True)
class ScopeGrant:
    """A permission the authorization server encodes into the issued token."""

    scope: str


# ---------------------------------------------------------------------------
# Decisions and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThrottleDecision:
    throttled: bool

    @property
    def allowed(self) -> bool:
        return not self.throttled


@dataclass(frozen=True)
class BanDecision:
    """blocked=False means clear. until=None on a blocked decision means permanent."""

    blocked: bool
    until: datetime | None = None


@dataclass(frozen=True)
class Outcome:
    """Where to send the browser next, plus an optional human-readable failure text."""

    redirect_url: str
    message: str | None = None


@dataclass(frozen=True)
class LoginPrompt:
    """Everything the login form needs. redirect_url is set when the challenge was skipped."""

    challenge: str
    requested_scope: list[str]
    client: dict[str, Any]
    password_reset_url: str
    register_account_url: str
    redirect_url: str | None = None


@dataclass(frozen=True)
class ConsentPrompt:
    user: User
    requested_scope: list[str]
    client: dict[str, Any]
