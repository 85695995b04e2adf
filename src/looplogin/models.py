"""Canonical Pydantic models shared across all looplogin modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- :class:`UserConfig` is serialised as JSON in the
user's config directory; :class:`LoginConfig` is the fully resolved, validated
set of plain values handed to the protocol core.

**Flow models** -- transient values owned by a single login attempt:
    :class:`PkceParameters`, :class:`FlowState`, :class:`CallbackResult`,
    :class:`ProviderEndpoints`, and the caller-facing :class:`TokenResult`.

Secret-bearing fields (verifier, tokens) are declared with ``repr=False`` so
they never leak through ``repr()`` into tracebacks or debug logs.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"
DEFAULT_SCOPES = ["openid", "profile", "email"]


def is_loopback_host(host: str) -> bool:
    """Return True for ``localhost`` or an IPv4/IPv6 loopback literal."""
    if host.lower() == "localhost":
        return True
    try:
        return ipaddress.ip_address(host.strip("[]")).is_loopback
    except ValueError:
        return False


# --- Configuration ---


class UserConfig(BaseModel):
    """User-wide defaults persisted at ``~/.config/looplogin/config.json``.

    Loaded and saved by :func:`~looplogin.config.load_user_config` and
    :func:`~looplogin.config.save_user_config`. Every field is optional; a
    value left unset falls through to the model defaults of
    :class:`LoginConfig`. See :func:`~looplogin.config.resolve_login_config`
    for the full precedence chain.
    """

    model_config = ConfigDict(extra="forbid")

    client_id: Optional[str] = None
    tenant_id: Optional[str] = None
    authority: Optional[str] = None
    authority_host: Optional[str] = None
    authorize_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    discovery: Optional[bool] = None
    redirect_host: Optional[str] = None
    redirect_port: Optional[int] = None
    redirect_path: Optional[str] = None
    scopes: Optional[list[str]] = None
    timeout_seconds: Optional[float] = None
    open_browser: Optional[bool] = None


class LoginConfig(BaseModel):
    """Resolved configuration for one ``login`` invocation.

    Either ``authority`` or ``tenant_id`` (combined with ``authority_host``)
    identifies the provider; ``authorize_endpoint`` / ``token_endpoint``
    override endpoint resolution entirely.

    Example::

        LoginConfig(
            client_id="00000000-0000-0000-0000-000000000000",
            tenant_id="contoso.onmicrosoft.com",
        ).redirect_uri
        # 'http://localhost:3000/auth/callback'
    """

    client_id: str = Field(min_length=1, description="OAuth2 client (application) id")
    tenant_id: Optional[str] = Field(
        default=None, description="Directory tenant appended to authority_host"
    )
    authority: Optional[str] = Field(
        default=None, description="Full authority base URL (overrides tenant_id)"
    )
    authority_host: str = DEFAULT_AUTHORITY_HOST
    authorize_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    discovery: bool = Field(
        default=False,
        description="Fetch endpoints from the OpenID Connect discovery document",
    )
    redirect_host: str = "localhost"
    redirect_port: int = Field(default=3000, ge=1, le=65535)
    redirect_path: str = "/auth/callback"
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    timeout_seconds: float = Field(default=300.0, gt=0)
    open_browser: bool = True

    @field_validator("redirect_host")
    @classmethod
    def _loopback_only(cls, value: str) -> str:
        if not is_loopback_host(value):
            raise ValueError(f"redirect_host must be a loopback address, got {value!r}")
        return value

    @field_validator("redirect_path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("redirect_path must start with '/'")
        return value

    @property
    def redirect_uri(self) -> str:
        """The loopback redirect URI registered with the provider."""
        return f"http://{self.redirect_host}:{self.redirect_port}{self.redirect_path}"

    @property
    def resolved_authority(self) -> Optional[str]:
        """``authority`` if set, else ``authority_host/tenant_id``, else ``None``."""
        if self.authority:
            return self.authority.rstrip("/")
        if self.tenant_id:
            return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"
        return None


# --- Flow models ---


class PkceParameters(BaseModel):
    """PKCE (Proof Key for Code Exchange) parameters for one flow attempt.

    Immutable; created once per attempt by
    :func:`~looplogin.oauth.pkce.generate_pkce` and discarded when the flow
    ends. The verifier is only ever sent to the token endpoint.
    """

    model_config = ConfigDict(frozen=True)

    verifier: str = Field(min_length=43, max_length=128, repr=False)
    challenge: str = Field(min_length=43, max_length=128)
    method: str = "S256"

    @field_validator("method")
    @classmethod
    def _s256_only(cls, value: str) -> str:
        if value != "S256":
            raise ValueError("Only the S256 code challenge method is supported")
        return value


class FlowState(BaseModel):
    """Bookkeeping for the single in-flight login attempt."""

    model_config = ConfigDict(frozen=True)

    state: str = Field(repr=False)
    expected_redirect_uri: str
    scopes: frozenset[str]
    started_at: datetime


class CallbackResult(BaseModel):
    """Query parameters of the one redirect request accepted by the listener."""

    model_config = ConfigDict(frozen=True)

    code: Optional[str] = Field(default=None, repr=False)
    state: Optional[str] = Field(default=None, repr=False)
    error: Optional[str] = None
    error_description: Optional[str] = None
    error_uri: Optional[str] = None

    def is_error(self) -> bool:
        return self.error is not None


class ProviderEndpoints(BaseModel):
    """Authorization and token endpoints of the identity provider."""

    model_config = ConfigDict(frozen=True)

    authorization_endpoint: str
    token_endpoint: str


class TokenResult(BaseModel):
    """Tokens returned by a successful exchange.

    Handed to the caller; looplogin never caches or persists it. Token fields
    are hidden from ``repr``.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    token_type: str = "Bearer"
    expires_at: datetime
    id_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    scope: Optional[str] = None
