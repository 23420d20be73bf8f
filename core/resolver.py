"""
core/resolver.py -- Login and consent decision flows for delegated challenges.

The authorization server hands us an opaque challenge; we decide and report
back through its admin API. Each call is one sequential pass -- every step
gates the next -- and the resolver keeps no state between calls, so any
number of requests can run through one instance concurrently.

Login pass (resolve_login):
  fetch challenge -> skip? accept
  -> throttle guard -> identity lookup -> password -> bans -> lobby link gate
  -> accept

Every failed branch still rejects the challenge with the provider and appends
exactly one attempt record. The unknown-user and wrong-password branches
return the same text so the response does not reveal which usernames exist.

Collaborator and provider faults (CollaboratorUnavailable,
ProviderProtocolError) are not caught here; they abort the request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from core.bans import BanEvaluator
from core.errors import SubjectNotFound
from core.interfaces import AttemptLedger, AuthorizationProvider, CredentialVerifier, IdentityStore
from core.models import (
    ConsentPrompt,
    LoginAttemptRecord,
    LoginPrompt,
    Outcome,
    ScopeGrant,
    User,
)
from core.throttle import ThrottleGuard

logger = logging.getLogger("consentgate.resolver")

# ---------------------------------------------------------------------------
# Human-facing texts and provider reason codes
# ---------------------------------------------------------------------------

USERNAME_OR_PASSWORD_WRONG = "Username or password was wrong"
TOO_MANY_FAILED_ATTEMPTS = (
    "Too many of your login attempts have failed. Please wait a few minutes before trying again."
)
BANNED_PREFIX = "You are banned. Ban expires at"
ACCOUNT_LINK_REQUIRED = (
    "Lobby access requires a linked Steam or GOG account. Link your account and log in again."
)

REASON_THROTTLED = "login_throttled"
REASON_INVALID_CREDENTIALS = "invalid_credentials"
REASON_BANNED = "user_banned"
REASON_LINK_REQUIRED = "account_link_required"
REASON_CONSENT_DENIED = "access_denied"

PERMIT = "permit"
DENY = "deny"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChallengeResolver:
    """Orchestrates throttling, identity, credential, ban and scope checks.

    Usage:
        resolver = ChallengeResolver(provider, users, ledger, verifier, throttle, bans,
                                     lookback=timedelta(days=1),
                                     account_link_url="https://example.com/link")
        outcome = resolver.resolve_login("challenge", "alice", "secret", "203.0.113.7")
    """

    def __init__(
        self,
        provider: AuthorizationProvider,
        identities: IdentityStore,
        attempts: AttemptLedger,
        verifier: CredentialVerifier,
        throttle: ThrottleGuard,
        bans: BanEvaluator,
        lookback: timedelta,
        account_link_url: str,
        lobby_scope: str = "lobby",
        password_reset_url: str = "",
        register_account_url: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._provider = provider
        self._identities = identities
        self._attempts = attempts
        self._verifier = verifier
        self._throttle = throttle
        self._bans = bans
        self.lookback = lookback
        self.account_link_url = account_link_url
        self.lobby_scope = lobby_scope
        self.password_reset_url = password_reset_url
        self.register_account_url = register_account_url
        self._clock = clock

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def describe_login(self, challenge_id: str) -> LoginPrompt:
        """Return what a login form needs, or accept right away if the provider says skip.

        A skipped challenge was already authenticated by the provider's own
        session, so it is accepted for the subject it carries.
        """
        challenge = self._provider.fetch_login_challenge(challenge_id)
        redirect_url = None
        if challenge.skip:
            redirect_url = self._provider.accept_login(challenge_id, challenge.subject)
            logger.info("Login challenge skipped by provider; accepted subject %s", challenge.subject)
        return LoginPrompt(
            challenge=challenge.challenge,
            requested_scope=list(challenge.requested_scope),
            client=dict(challenge.client),
            password_reset_url=self.password_reset_url,
            register_account_url=self.register_account_url,
            redirect_url=redirect_url,
        )

    def resolve_login(self, challenge_id: str, username: str, secret: str, origin_ip: str) -> Outcome:
        challenge = self._provider.fetch_login_challenge(challenge_id)
        if challenge.skip:
            # No credentials are checked, so nothing is written to the attempt log.
            redirect = self._provider.accept_login(challenge_id, challenge.subject)
            logger.info("Login challenge skipped by provider; accepted subject %s", challenge.subject)
            return Outcome(redirect_url=redirect)

        now = self._clock()

        if self._throttle.evaluate(origin_ip, self.lookback, now=now).throttled:
            self._record(None, origin_ip, now, success=False)
            return self._reject(challenge_id, REASON_THROTTLED, TOO_MANY_FAILED_ATTEMPTS)

        # The form has one field; it may hold either the username or the email.
        user = self._identities.find_by_username_or_email(username, username)
        if user is None:
            # Spend the same bcrypt time as a real comparison.
            self._verifier.matches(secret, None)
            self._record(None, origin_ip, now, success=False)
            return self._reject(challenge_id, REASON_INVALID_CREDENTIALS, USERNAME_OR_PASSWORD_WRONG)

        if not self._verifier.matches(secret, user.password_hash):
            self._record(user.id, origin_ip, now, success=False)
            return self._reject(challenge_id, REASON_INVALID_CREDENTIALS, USERNAME_OR_PASSWORD_WRONG)

        ban = self._bans.evaluate(user.id, now)
        if ban.blocked:
            self._record(user.id, origin_ip, now, success=True)
            until = ban.until.isoformat() if ban.until is not None else "never (permanent ban)"
            logger.warning("Rejected login for banned user %d (until %s)", user.id, until)
            return self._reject(challenge_id, REASON_BANNED, f"{BANNED_PREFIX} {until}")

        if self._requires_account_link(challenge.requested_scope, user):
            self._record(user.id, origin_ip, now, success=True)
            self._provider.reject_login(challenge_id, REASON_LINK_REQUIRED, ACCOUNT_LINK_REQUIRED)
            logger.info("User %d requested %s without a linked platform account", user.id, self.lobby_scope)
            return Outcome(redirect_url=self.account_link_url, message=ACCOUNT_LINK_REQUIRED)

        self._record(user.id, origin_ip, now, success=True)
        redirect = self._provider.accept_login(challenge_id, str(user.id))
        logger.info("Accepted login for user %d", user.id)
        return Outcome(redirect_url=redirect)

    def _requires_account_link(self, requested_scope: list[str], user: User) -> bool:
        return self.lobby_scope in requested_scope and not user.has_linked_platform

    def _reject(self, challenge_id: str, reason_code: str, message: str) -> Outcome:
        redirect = self._provider.reject_login(challenge_id, reason_code, message)
        return Outcome(redirect_url=redirect, message=message)

    def _record(self, subject_id: int | None, origin_ip: str, at: datetime, success: bool) -> None:
        self._attempts.append(
            LoginAttemptRecord(subject_id=subject_id, origin_ip=origin_ip, attempted_at=at, success=success)
        )

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    def describe_consent(self, challenge_id: str) -> ConsentPrompt:
        """Load the consent challenge and its subject for display. No accept/reject is sent."""
        challenge = self._provider.fetch_consent_challenge(challenge_id)
        user = self._load_subject(challenge.subject)
        return ConsentPrompt(
            user=user,
            requested_scope=list(challenge.requested_scope),
            client=dict(challenge.client),
        )

    def resolve_consent(
        self,
        challenge_id: str,
        decision: str,
        scopes_requested: list[str] | None = None,
    ) -> Outcome:
        """Grant or deny a consent challenge.

        permit: the subject's permissions become ScopeGrants (one per
            permission) and travel to the token as the "roles" claim. The
            granted OAuth scopes are the challenge's requested scopes,
            optionally narrowed by scopes_requested; a scope the client never
            asked for is never granted.
        deny: rejected straight away; no identity or permission lookup.
        """
        if decision not in (PERMIT, DENY):
            raise ValueError(f"Unknown consent decision: {decision!r}")

        challenge = self._provider.fetch_consent_challenge(challenge_id)
        if decision == DENY:
            redirect = self._provider.reject_consent(challenge_id, REASON_CONSENT_DENIED, "The user denied consent.")
            return Outcome(redirect_url=redirect)

        user = self._load_subject(challenge.subject)
        grants = [ScopeGrant(p) for p in sorted(self._identities.find_permissions(user.id))]

        grant_scope = list(challenge.requested_scope)
        if scopes_requested is not None:
            wanted = set(scopes_requested)
            grant_scope = [s for s in grant_scope if s in wanted]

        claims = {"username": user.username, "roles": [g.scope for g in grants]}
        redirect = self._provider.accept_consent(
            challenge_id,
            grant_scope,
            challenge.requested_access_token_audience,
            {"access_token": claims, "id_token": claims},
        )
        logger.info("Consent granted for user %d (%d scopes, %d roles)", user.id, len(grant_scope), len(grants))
        return Outcome(redirect_url=redirect)

    def _load_subject(self, subject: str) -> User:
        try:
            user_id = int(subject)
        except ValueError:
            raise SubjectNotFound(f"Consent subject {subject!r} is not a user id") from None
        user = self._identities.find_by_id(user_id)
        if user is None:
            raise SubjectNotFound(f"Consent subject {subject!r} does not exist")
        return user
