"""
core/errors.py -- Exception taxonomy for the login & consent provider.

Validation outcomes (unknown user, bad password, throttled, banned, link
required) are NOT exceptions -- the resolver turns them into a normal Outcome.
Everything here is a system fault that aborts the request; api/main.py maps
each class to an HTTP status and the shared error envelope.

Nothing in the core retries on these errors. Challenges are single-use, so
re-sending an accept/reject after an ambiguous failure is unsafe.
"""

from __future__ import annotations


class ConsentGateError(Exception):
    """Base class for all faults raised by this service."""

    code = "internal_error"


class CollaboratorUnavailable(ConsentGateError):
    """The datastore (users, bans, login log) could not be reached or queried."""

    code = "collaborator_unavailable"


class SubjectNotFound(ConsentGateError):
    """A consent challenge names a subject the identity store does not know."""

    code = "subject_not_found"


class ProviderProtocolError(ConsentGateError):
    """The authorization server admin API failed or answered something unusable."""

    code = "provider_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChallengeNotFound(ProviderProtocolError):
    """The authorization server does not know the challenge (HTTP 404)."""

    code = "challenge_not_found"
