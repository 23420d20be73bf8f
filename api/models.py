"""
API request and response models for the login & consent endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in core/models.py, which own the
internal domain representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.models import ConsentPrompt, LoginPrompt, Outcome

MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConsentAction(str, Enum):
    permit = "permit"
    deny = "deny"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginForm(BaseModel):
    """Request body for POST /oauth2/login.

    username accepts either the account name or its email address. Only
    challenge and username are stripped; the password reaches bcrypt exactly
    as typed. bcrypt only reads the first 72 bytes, so longer UTF-8 encodings
    are refused here rather than silently truncated.
    """

    challenge: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)

    @field_validator("challenge", "username", mode="before")
    @classmethod
    def strip_identifiers(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return v


class ConsentForm(BaseModel):
    """Request body for POST /oauth2/consent.

    scopes optionally narrows the grant to a subset of the requested scopes.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    challenge: str = Field(min_length=1, max_length=255)
    action: ConsentAction
    scopes: Optional[list[str]] = Field(default=None, max_length=50)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class OutcomeResponse(BaseModel):
    """Result of a login or consent submission.

    message is None on success. On a rejected login it carries the text to
    show the user; redirect_to still points at the provider's failure page
    (or at the account-link page when linking is required).
    """

    model_config = ConfigDict(frozen=True)

    redirect_to: str
    message: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> "OutcomeResponse":
        return cls(redirect_to=outcome.redirect_url, message=outcome.message)


class LoginPromptResponse(BaseModel):
    """Response for GET /oauth2/login. redirect_to is set only for skipped challenges."""

    model_config = ConfigDict(frozen=True)

    challenge: str
    requested_scope: list[str]
    client: dict[str, Any]
    password_reset_url: str
    register_account_url: str
    redirect_to: Optional[str] = None

    @classmethod
    def from_prompt(cls, prompt: LoginPrompt) -> "LoginPromptResponse":
        return cls(
            challenge=prompt.challenge,
            requested_scope=prompt.requested_scope,
            client=prompt.client,
            password_reset_url=prompt.password_reset_url,
            register_account_url=prompt.register_account_url,
            redirect_to=prompt.redirect_url,
        )


class ConsentUser(BaseModel):
    """The subject shown on the consent page. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str


class ConsentPromptResponse(BaseModel):
    """Response for GET /oauth2/consent."""

    model_config = ConfigDict(frozen=True)

    user: ConsentUser
    requested_scope: list[str]
    client: dict[str, Any]

    @classmethod
    def from_prompt(cls, prompt: ConsentPrompt) -> "ConsentPromptResponse":
        return cls(
            user=ConsentUser(id=prompt.user.id, username=prompt.user.username, email=prompt.user.email),
            requested_scope=prompt.requested_scope,
            client=prompt.client,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
