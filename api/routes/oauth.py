"""
api/routes/oauth.py -- Login and consent endpoints called by the browser.

The authorization server redirects the browser here with a challenge; the
front end shows a form and posts the user's answer back. Every decision is
made by ChallengeResolver; this module only maps HTTP to resolver calls.

Routes:
  GET  /oauth2/login?login_challenge=...      -- login prompt (auto-accepts skipped challenges)
  POST /oauth2/login                          -- submit credentials
  GET  /oauth2/consent?consent_challenge=...  -- consent prompt
  POST /oauth2/consent                        -- permit or deny

Rejected logins (bad credentials, throttled, banned, link required) are
200 responses with a message -- they are outcomes, not errors. Faults from
the datastore or the authorization server propagate to the exception
handlers in api/main.py.

Handlers are plain `def` so FastAPI runs them in its threadpool: the
resolver's collaborators are blocking I/O, and each request stays
sequential while requests run in parallel.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, origin_ip
from api.models import (
    ConsentForm,
    ConsentPromptResponse,
    LoginForm,
    LoginPromptResponse,
    OutcomeResponse,
)
from core.config import get_settings
from core.resolver import ChallengeResolver

router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _resolver(request: Request) -> ChallengeResolver:
    return request.app.state.resolver


def _no_store(payload: dict) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.get("/oauth2/login", response_model=LoginPromptResponse)
def get_login(request: Request, login_challenge: str = Query(min_length=1, max_length=255)) -> JSONResponse:
    """Describe the login challenge, or accept it when the provider already knows the user."""
    prompt = _resolver(request).describe_login(login_challenge)
    return _no_store(LoginPromptResponse.from_prompt(prompt).model_dump())


@router.post("/oauth2/login", response_model=OutcomeResponse)
@limiter.limit(_login_rate_limit)  # below @router: the wrapper enforces the limit, not the middleware
def post_login(request: Request, body: LoginForm) -> JSONResponse:
    """Resolve a login challenge with the submitted credentials."""
    outcome = _resolver(request).resolve_login(
        body.challenge,
        body.username,
        body.password,
        origin_ip(request),
    )
    return _no_store(OutcomeResponse.from_outcome(outcome).model_dump())


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------


@router.get("/oauth2/consent", response_model=ConsentPromptResponse)
def get_consent(request: Request, consent_challenge: str = Query(min_length=1, max_length=255)) -> JSONResponse:
    """Show who is consenting to what. Does not contact the provider's accept/reject endpoints."""
    prompt = _resolver(request).describe_consent(consent_challenge)
    return _no_store(ConsentPromptResponse.from_prompt(prompt).model_dump())


@router.post("/oauth2/consent", response_model=OutcomeResponse)
def post_consent(request: Request, body: ConsentForm) -> JSONResponse:
    """Permit or deny a consent challenge."""
    outcome = _resolver(request).resolve_consent(body.challenge, body.action.value, body.scopes)
    return _no_store(OutcomeResponse.from_outcome(outcome).model_dump())
