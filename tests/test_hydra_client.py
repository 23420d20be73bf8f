"""Unit tests for core/hydra.py -- HydraAdminClient request mapping and error policy.

The requests.Session is a MagicMock, so tests see exactly what would go on
the wire (method, URL, query params, JSON body) without any network.
"""

from unittest.mock import MagicMock

import pytest
import requests

from core.errors import ChallengeNotFound, ProviderProtocolError
from core.hydra import HydraAdminClient

BASE = "http://hydra.test:4445"


def _response(status: int = 200, payload=None, bad_json: bool = False) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    if bad_json:
        resp.json.side_effect = ValueError("Expecting value")
    else:
        resp.json.return_value = payload if payload is not None else {}
    return resp


def _client(resp: MagicMock) -> tuple[HydraAdminClient, MagicMock]:
    session = MagicMock()
    session.request.return_value = resp
    return HydraAdminClient(BASE + "/", timeout=2.5, session=session), session


class TestRequests:
    def test_fetch_login_challenge(self):
        payload = {
            "challenge": "abc",
            "requested_scope": ["openid", "lobby"],
            "client": {"client_id": "faf-client"},
            "request_url": "http://hydra.test/oauth2/auth?client_id=faf-client",
            "skip": False,
            "subject": "",
        }
        client, session = _client(_response(payload=payload))
        challenge = client.fetch_login_challenge("abc")

        assert challenge.challenge == "abc"
        assert challenge.requested_scope == ["openid", "lobby"]
        assert challenge.client == {"client_id": "faf-client"}
        assert challenge.skip is False
        session.request.assert_called_once_with(
            "GET",
            f"{BASE}/oauth2/auth/requests/login",
            params={"login_challenge": "abc"},
            json=None,
            headers={"Accept": "application/json"},
            timeout=2.5,
        )

    def test_null_scope_becomes_empty_list(self):
        client, _ = _client(_response(payload={"challenge": "abc", "requested_scope": None, "skip": True, "subject": "5"}))
        challenge = client.fetch_login_challenge("abc")
        assert challenge.requested_scope == []
        assert challenge.skip is True
        assert challenge.subject == "5"

    def test_accept_login_body(self):
        client, session = _client(_response(payload={"redirect_to": "http://hydra.test/next"}))
        assert client.accept_login("abc", "42") == "http://hydra.test/next"

        args, kwargs = session.request.call_args
        assert args == ("PUT", f"{BASE}/oauth2/auth/requests/login/accept")
        assert kwargs["params"] == {"login_challenge": "abc"}
        assert kwargs["json"] == {"subject": "42", "remember": False}

    def test_reject_login_body(self):
        client, session = _client(_response(payload={"redirect_to": "http://hydra.test/denied"}))
        client.reject_login("abc", "user_banned", "You are banned.")

        args, kwargs = session.request.call_args
        assert args == ("PUT", f"{BASE}/oauth2/auth/requests/login/reject")
        assert kwargs["json"] == {"error": "user_banned", "error_description": "You are banned."}

    def test_fetch_consent_challenge(self):
        payload = {
            "challenge": "xyz",
            "requested_scope": ["openid"],
            "requested_access_token_audience": ["api"],
            "subject": "7",
        }
        client, session = _client(_response(payload=payload))
        challenge = client.fetch_consent_challenge("xyz")

        assert challenge.subject == "7"
        assert challenge.requested_access_token_audience == ["api"]
        assert session.request.call_args.kwargs["params"] == {"consent_challenge": "xyz"}

    def test_accept_consent_body_with_session(self):
        client, session = _client(_response(payload={"redirect_to": "http://hydra.test/done"}))
        claims = {"username": "alice", "roles": ["ADMIN"]}
        client.accept_consent("xyz", ["openid"], ["api"], {"access_token": claims, "id_token": claims})

        args, kwargs = session.request.call_args
        assert args == ("PUT", f"{BASE}/oauth2/auth/requests/consent/accept")
        assert kwargs["json"] == {
            "grant_scope": ["openid"],
            "grant_access_token_audience": ["api"],
            "session": {"access_token": claims, "id_token": claims},
        }

    def test_accept_consent_without_session_omits_key(self):
        client, session = _client(_response(payload={"redirect_to": "http://hydra.test/done"}))
        client.accept_consent("xyz", ["openid"])
        assert "session" not in session.request.call_args.kwargs["json"]

    def test_reject_consent_defaults(self):
        client, session = _client(_response(payload={"redirect_to": "http://hydra.test/denied"}))
        client.reject_consent("xyz")
        assert session.request.call_args.kwargs["json"] == {"error": "access_denied", "error_description": ""}

    def test_redirect_limit_set_on_session(self):
        client, session = _client(_response())
        assert session.max_redirects == 3


class TestErrors:
    def test_404_is_challenge_not_found(self):
        client, _ = _client(_response(status=404))
        with pytest.raises(ChallengeNotFound) as exc_info:
            client.fetch_login_challenge("gone")
        assert exc_info.value.status_code == 404

    def test_challenge_not_found_is_a_protocol_error(self):
        client, _ = _client(_response(status=404))
        with pytest.raises(ProviderProtocolError):
            client.fetch_consent_challenge("gone")

    def test_server_error(self):
        client, _ = _client(_response(status=500))
        with pytest.raises(ProviderProtocolError) as exc_info:
            client.accept_login("abc", "1")
        assert exc_info.value.status_code == 500

    def test_malformed_json(self):
        client, _ = _client(_response(bad_json=True))
        with pytest.raises(ProviderProtocolError, match="malformed JSON"):
            client.fetch_login_challenge("abc")

    def test_non_object_json(self):
        client, _ = _client(_response(payload=["not", "an", "object"]))
        with pytest.raises(ProviderProtocolError):
            client.fetch_login_challenge("abc")

    def test_missing_redirect_to(self):
        client, _ = _client(_response(payload={"unexpected": True}))
        with pytest.raises(ProviderProtocolError, match="redirect_to"):
            client.accept_login("abc", "1")

    def test_transport_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("connection refused")
        client = HydraAdminClient(BASE, session=session)
        with pytest.raises(ProviderProtocolError, match="unreachable"):
            client.fetch_login_challenge("abc")

    def test_timeout_is_not_retried(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout("read timed out")
        client = HydraAdminClient(BASE, session=session)
        with pytest.raises(ProviderProtocolError):
            client.accept_login("abc", "1")
        assert session.request.call_count == 1
