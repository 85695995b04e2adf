"""The ``looplogin login`` command.

Resolves configuration, runs one :class:`~looplogin.oauth.flow.LoginFlow`,
and writes the token material to the data sink:

* ``--json`` -- the full token result as JSON;
* ``--plain`` (the default when piped) -- the bare access token;
* rich -- the token result as highlighted JSON.

The sign-in URL and all status messages go to stderr.

Example::

    looplogin login --client-id 0000... --tenant contoso.onmicrosoft.com
    TOKEN=$(looplogin login --plain --no-browser)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import typer

from looplogin.exceptions import (
    AuthorizationDeniedError,
    LoginError,
    TokenExchangeError,
)
from looplogin.models import TokenResult
from looplogin.output import OutputFormat, error, get_output, success


def describe_error(exc: LoginError) -> str:
    """One-line, secret-free description of a login failure."""
    if isinstance(exc, AuthorizationDeniedError):
        if exc.description and exc.description != exc.error:
            message = f"Authorization denied ({exc.error}): {exc.description}"
        else:
            message = f"Authorization denied: {exc.error}"
        if exc.error_uri:
            message += f" (see {exc.error_uri})"
        return message
    if isinstance(exc, TokenExchangeError):
        message = f"Token exchange failed: {exc.error}"
        if exc.description:
            message += f" ({exc.description})"
        return message
    return str(exc)


def _emit(result: TokenResult) -> None:
    output = get_output()
    if output.format == OutputFormat.PLAIN:
        output.print_data(result.access_token)
    else:
        output.format_response(result.model_dump(mode="json"))


def _announce(url: str) -> None:
    get_output().link("Open this URL in your browser to sign in:", url)


def login_command(
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="OAuth2 client (application) id."
    ),
    tenant: Optional[str] = typer.Option(
        None, "--tenant", help="Directory tenant id or domain."
    ),
    authority: Optional[str] = typer.Option(
        None, "--authority", help="Full authority URL (overrides --tenant)."
    ),
    authorize_endpoint: Optional[str] = typer.Option(
        None, "--authorize-endpoint", help="Explicit authorization endpoint URL."
    ),
    token_endpoint: Optional[str] = typer.Option(
        None, "--token-endpoint", help="Explicit token endpoint URL."
    ),
    discovery: Optional[bool] = typer.Option(
        None,
        "--discovery/--no-discovery",
        help="Read endpoints from the OpenID Connect discovery document.",
    ),
    port: Optional[int] = typer.Option(
        None, "--port", min=1, max=65535, help="Loopback redirect port."
    ),
    redirect_path: Optional[str] = typer.Option(
        None, "--redirect-path", help="Loopback redirect path."
    ),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request (repeatable)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser redirect."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the sign-in URL without opening a browser."
    ),
    env_file: Optional[Path] = typer.Option(
        None, "--env-file", help="Read settings from this .env file instead of ./.env."
    ),
) -> None:
    """Sign in through the browser and print the resulting tokens.

    Exits with a distinct code per failure kind: 3 configuration, 4 timeout,
    5 authorization denied, 6 state mismatch, 7 network, 8 token exchange.
    """
    from looplogin.config import resolve_login_config, split_scopes
    from looplogin.oauth.browser import no_browser as skip_browser
    from looplogin.oauth.browser import open_browser
    from looplogin.oauth.flow import login

    overrides: dict[str, Any] = {
        "client_id": client_id,
        "tenant_id": tenant,
        "authority": authority,
        "authorize_endpoint": authorize_endpoint,
        "token_endpoint": token_endpoint,
        "discovery": discovery,
        "redirect_port": port,
        "redirect_path": redirect_path,
        "scopes": [s for entry in scope for s in split_scopes(entry)] if scope else None,
        "timeout_seconds": timeout,
        "open_browser": False if no_browser else None,
    }

    try:
        config = resolve_login_config(overrides, env_file)
        browser = open_browser if config.open_browser else skip_browser
        result = asyncio.run(login(config, browser=browser, on_authorize_url=_announce))
    except LoginError as exc:
        error(describe_error(exc))
        raise typer.Exit(code=exc.exit_code) from None

    _emit(result)
    success(f"Signed in. Access token expires at {result.expires_at.isoformat()}.")
