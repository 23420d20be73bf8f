"""
tests/conftest.py -- Shared test fixtures for the login & consent provider.

This module provides:
  - engine / user_store / ban_store / login_log: in-memory SQLite stores
  - provider: MagicMock standing in for the Hydra admin API client
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the in-memory engine uses a StaticPool (see auth.store.open_engine),
so the single in-memory database is visible to every TestClient worker
thread. Each test gets a fresh engine, so no state leaks between tests.

The Hydra client is always a MagicMock -- tests never reach the network. Its
default answers describe a non-skipped challenge for subject "1" with no
requested scopes; tests override return values where they need something
else.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import bcrypt
import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_resolver
from auth.store import BanStore, LoginLogStore, UserStore, open_engine
from core.config import Settings
from core.models import ConsentChallenge, LoginChallenge

CHALLENGE = "someChallenge"
USERNAME = "someUsername"
EMAIL = "some@email.com"
PASSWORD = "somePassword"
ACCEPT_REDIRECT = "http://hydra.test/oauth2/auth?login_verifier=accepted"
REJECT_REDIRECT = "http://hydra.test/oauth2/auth?login_verifier=rejected"
CONSENT_ACCEPT_REDIRECT = "http://hydra.test/oauth2/auth?consent_verifier=accepted"
CONSENT_REJECT_REDIRECT = "http://hydra.test/oauth2/auth?consent_verifier=rejected"
ACCOUNT_LINK_URL = "https://example.test/account/link"

# Low bcrypt cost keeps the suite fast; verification cost is irrelevant here.
PASSWORD_HASH = bcrypt.hashpw(PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


def make_provider() -> MagicMock:
    provider = MagicMock()
    provider.fetch_login_challenge.return_value = LoginChallenge(challenge=CHALLENGE, subject="1")
    provider.fetch_consent_challenge.return_value = ConsentChallenge(challenge=CHALLENGE, subject="1")
    provider.accept_login.return_value = ACCEPT_REDIRECT
    provider.reject_login.return_value = REJECT_REDIRECT
    provider.accept_consent.return_value = CONSENT_ACCEPT_REDIRECT
    provider.reject_consent.return_value = CONSENT_REJECT_REDIRECT
    return provider


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = open_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def ban_store(engine) -> BanStore:
    return BanStore(engine)


@pytest.fixture
def login_log(engine) -> LoginLogStore:
    return LoginLogStore(engine)


@pytest.fixture
def provider() -> MagicMock:
    return make_provider()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(resolver, user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test resolver into app.state so routes never build a real
    Hydra client or open the on-disk database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.resolver = resolver
        app.state.user_store = user_store
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    provider: MagicMock,
    user_store: UserStore,
    ban_store: BanStore,
    login_log: LoginLogStore,
) -> Generator[TestClient, None, None]:
    """Yield a TestClient whose resolver uses in-memory stores and the mock provider."""
    settings = Settings(account_link_url=ACCOUNT_LINK_URL)
    resolver = build_resolver(settings, provider, user_store, ban_store, login_log)
    app.router.lifespan_context = _patch_lifespan(resolver, user_store)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
