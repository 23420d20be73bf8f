"""
core/hydra.py -- REST client for the authorization server admin API (Ory Hydra).

Covers the six admin endpoints the login & consent flows need:

  GET /oauth2/auth/requests/{login,consent}?{kind}_challenge=<id>
  PUT /oauth2/auth/requests/{login,consent}/accept?{kind}_challenge=<id>
  PUT /oauth2/auth/requests/{login,consent}/reject?{kind}_challenge=<id>

Error policy: every failure (transport error, timeout, non-2xx, malformed
JSON, missing fields) raises ProviderProtocolError; HTTP 404 raises its
ChallengeNotFound subclass. Nothing is retried here -- a challenge may only be
accepted or rejected once, and after a timeout we cannot know whether the
first PUT landed.

Layer rule: core/ may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import requests

from core.errors import ChallengeNotFound, ProviderProtocolError
from core.models import ConsentChallenge, LoginChallenge

logger = logging.getLogger("consentgate.hydra")

_LOGIN = "login"
_CONSENT = "consent"


class HydraAdminClient:
    """Thin mapping between the admin API's JSON and our challenge dataclasses.

    Usage:
        client = HydraAdminClient("http://localhost:4445")
        challenge = client.fetch_login_challenge("abc")
        redirect = client.accept_login("abc", subject="42")
        client.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        # The admin API answers directly; any redirect chain is suspicious.
        self._session.max_redirects = 3

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def fetch_login_challenge(self, challenge_id: str) -> LoginChallenge:
        payload = self._request("GET", _LOGIN, "", challenge_id)
        return LoginChallenge(**_challenge_fields(payload, challenge_id))

    def accept_login(self, challenge_id: str, subject: str) -> str:
        body = {"subject": subject, "remember": False}
        return _redirect_to(self._request("PUT", _LOGIN, "/accept", challenge_id, body))

    def reject_login(self, challenge_id: str, reason_code: str, description: str = "") -> str:
        body = {"error": reason_code, "error_description": description}
        return _redirect_to(self._request("PUT", _LOGIN, "/reject", challenge_id, body))

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    def fetch_consent_challenge(self, challenge_id: str) -> ConsentChallenge:
        payload = self._request("GET", _CONSENT, "", challenge_id)
        return ConsentChallenge(**_challenge_fields(payload, challenge_id))

    def accept_consent(
        self,
        challenge_id: str,
        grant_scope: Sequence[str],
        grant_audience: Sequence[str] = (),
        session: Mapping[str, Any] | None = None,
    ) -> str:
        body: dict[str, Any] = {
            "grant_scope": list(grant_scope),
            "grant_access_token_audience": list(grant_audience),
        }
        if session is not None:
            body["session"] = dict(session)
        return _redirect_to(self._request("PUT", _CONSENT, "/accept", challenge_id, body))

    def reject_consent(self, challenge_id: str, reason_code: str = "access_denied", description: str = "") -> str:
        body = {"error": reason_code, "error_description": description}
        return _redirect_to(self._request("PUT", _CONSENT, "/reject", challenge_id, body))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        kind: str,
        action: str,
        challenge_id: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}/oauth2/auth/requests/{kind}{action}"
        try:
            resp = self._session.request(
                method,
                url,
                params={f"{kind}_challenge": challenge_id},
                json=body,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Hydra %s %s failed: %s", method, url, e)
            raise ProviderProtocolError(f"Authorization server unreachable: {e}") from e

        if resp.status_code == 404:
            raise ChallengeNotFound(f"Unknown {kind} challenge", status_code=404)
        if not 200 <= resp.status_code < 300:
            logger.error("Hydra %s %s returned HTTP %d", method, url, resp.status_code)
            raise ProviderProtocolError(
                f"Authorization server returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise ProviderProtocolError("Authorization server returned malformed JSON", resp.status_code) from e
        if not isinstance(payload, dict):
            raise ProviderProtocolError("Authorization server returned a non-object JSON body", resp.status_code)
        return payload

    def close(self) -> None:
        self._session.close()


# ---------------------------------------------------------------------------
# Payload mappers
# ---------------------------------------------------------------------------


def _challenge_fields(payload: dict[str, Any], challenge_id: str) -> dict[str, Any]:
    """Pick the challenge fields we use. requested_scope may be null for some clients."""
    try:
        return {
            "challenge": str(payload.get("challenge") or challenge_id),
            "requested_scope": list(payload.get("requested_scope") or []),
            "requested_access_token_audience": list(payload.get("requested_access_token_audience") or []),
            "client": dict(payload.get("client") or {}),
            "request_url": str(payload.get("request_url") or ""),
            "skip": bool(payload.get("skip", False)),
            "subject": str(payload.get("subject") or ""),
        }
    except (TypeError, ValueError) as e:
        raise ProviderProtocolError(f"Malformed challenge payload: {e}") from e


def _redirect_to(payload: dict[str, Any]) -> str:
    redirect = payload.get("redirect_to")
    if not isinstance(redirect, str) or not redirect:
        raise ProviderProtocolError("Authorization server response is missing redirect_to")
    return redirect
