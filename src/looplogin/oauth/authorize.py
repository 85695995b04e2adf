"""Authorization request URL construction (:rfc:`6749` section 4.1.1).

:func:`build_authorize_url` is a pure function: it validates its inputs and
returns the URL the user's browser should visit. Query parameters already
present on the authorization endpoint (for example a B2C ``p=`` policy) are
kept, and the protocol parameters are appended after them.
"""

from __future__ import annotations

from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from looplogin.exceptions import ConfigurationError
from looplogin.models import PkceParameters, is_loopback_host


def validate_endpoint_url(url: str, label: str = "endpoint") -> None:
    """Check that *url* is an absolute ``https`` URL (``http`` only for loopback).

    Args:
        url: The URL to check.
        label: Name used in the error message.

    Raises:
        ConfigurationError: If the URL is malformed or insecure.
    """
    try:
        parsed = urlparse(url)
        host = parsed.hostname
    except ValueError as exc:
        raise ConfigurationError(f"Malformed {label} URL {url!r}: {exc}") from exc

    if parsed.scheme not in ("http", "https") or not host:
        raise ConfigurationError(
            f"Malformed {label} URL {url!r}: expected an absolute http(s) URL"
        )
    if parsed.scheme == "http" and not is_loopback_host(host):
        raise ConfigurationError(
            f"Refusing plain-http {label} URL {url!r}: use https"
        )


def join_scopes(scopes: Iterable[str]) -> str:
    """Space-join *scopes*, dropping blanks and duplicates but keeping order."""
    seen: dict[str, None] = {}
    for scope in scopes:
        scope = scope.strip()
        if scope:
            seen.setdefault(scope, None)
    return " ".join(seen)


def build_authorize_url(
    authorize_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[str],
    pkce: PkceParameters,
    state: str,
) -> str:
    """Build the provider authorization URL for the code + PKCE grant.

    Args:
        authorize_endpoint: The provider's authorization endpoint.
        client_id: The registered client (application) id.
        redirect_uri: The loopback redirect URI.
        scopes: Requested scopes, joined with spaces.
        pkce: PKCE parameters; only the challenge is sent.
        state: CSRF nonce echoed back on the redirect.

    Returns:
        The complete authorization URL.

    Raises:
        ConfigurationError: If the endpoint is malformed, or the client id or
            scope list is empty.
    """
    validate_endpoint_url(authorize_endpoint, "authorization endpoint")
    if not client_id:
        raise ConfigurationError("client_id must not be empty")
    scope = join_scopes(scopes)
    if not scope:
        raise ConfigurationError("At least one scope is required")

    parsed = urlparse(authorize_endpoint)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.extend(
        [
            ("response_type", "code"),
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
            ("scope", scope),
            ("code_challenge", pkce.challenge),
            ("code_challenge_method", pkce.method),
            ("state", state),
        ]
    )
    return urlunparse(parsed._replace(query=urlencode(query)))
