"""
auth/passwords.py -- bcrypt credential verification.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Timing equalization: matches() with stored_hash=None still runs one
bcrypt comparison against a dummy hash, so an unknown username costs the same
as a wrong password and response time does not reveal which accounts exist.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("consentgate.auth")

_BCRYPT_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Current bcrypt releases refuse secrets over 72 bytes. The API layer
    rejects such passwords before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A stored value that is not a bcrypt hash at all counts as a mismatch, and
    so does a secret longer than bcrypt's 72-byte input limit.
    """
    secret = plain.encode("utf-8")
    if len(secret) > _BCRYPT_MAX_BYTES:
        logger.warning("Submitted password is %d bytes, over the bcrypt limit of %d", len(secret), _BCRYPT_MAX_BYTES)
        return False
    try:
        return bcrypt.checkpw(secret, hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# Computed once at module load so the first unknown-user login is not
# measurably slower than later ones.
_DUMMY_HASH: str = hash_password("consentgate_timing_dummy")


class BcryptVerifier:
    """CredentialVerifier backed by bcrypt.checkpw (constant-time comparison)."""

    def matches(self, submitted_secret: str, stored_hash: str | None) -> bool:
        if stored_hash is None:
            verify_password(submitted_secret, _DUMMY_HASH)
            return False
        return verify_password(submitted_secret, stored_hash)
