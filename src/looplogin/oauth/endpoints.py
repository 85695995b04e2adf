"""Resolve the provider's authorization and token endpoints.

Resolution order:

1. ``authorize_endpoint`` / ``token_endpoint`` set explicitly in the config;
2. the OpenID Connect discovery document, when ``discovery`` is enabled;
3. the Microsoft identity platform layout under the authority
   (``<authority>/oauth2/v2.0/authorize`` and ``/token``).

An explicit endpoint always wins over the one found by 2 or 3, so a single
endpoint can be overridden while the other is still derived.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from looplogin import __version__
from looplogin.exceptions import ConfigurationError, NetworkError
from looplogin.models import LoginConfig, ProviderEndpoints
from looplogin.oauth.authorize import validate_endpoint_url

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def discovery_url(authority: str) -> str:
    """Return the OpenID Connect discovery URL for *authority*.

    Microsoft Entra authorities publish the v2.0 document under
    ``<authority>/v2.0/.well-known/openid-configuration``; everything else
    uses the generic ``<authority>/.well-known/openid-configuration``.
    """
    base = authority.rstrip("/")
    host = (urlparse(base).hostname or "").lower()
    if "microsoftonline" in host and not base.endswith("/v2.0"):
        base = f"{base}/v2.0"
    return f"{base}{WELL_KNOWN_PATH}"


def microsoft_endpoints(authority: str) -> ProviderEndpoints:
    """Endpoints of the Microsoft identity platform v2.0 layout."""
    base = authority.rstrip("/")
    return ProviderEndpoints(
        authorization_endpoint=f"{base}/oauth2/v2.0/authorize",
        token_endpoint=f"{base}/oauth2/v2.0/token",
    )


async def fetch_discovery(
    authority: str,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> ProviderEndpoints:
    """Fetch endpoints from the authority's discovery document.

    Raises:
        NetworkError: If the document cannot be fetched.
        ConfigurationError: If the document is not JSON or lacks either
            endpoint.
    """
    url = discovery_url(authority)
    logger.debug("Fetching OpenID configuration from %s", url)

    client = http_client or httpx.AsyncClient(
        timeout=timeout, headers={"User-Agent": f"looplogin/{__version__}"}
    )
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise NetworkError(
            f"Discovery document at {url} returned HTTP {exc.response.status_code}"
        ) from exc
    except httpx.TransportError as exc:
        raise NetworkError(f"Cannot fetch discovery document at {url}: {exc}") from exc
    finally:
        if http_client is None:
            await client.aclose()

    try:
        document = response.json()
    except ValueError as exc:
        raise ConfigurationError(f"Discovery document at {url} is not valid JSON") from exc

    if not isinstance(document, dict):
        raise ConfigurationError(f"Discovery document at {url} is not a JSON object")
    missing = [
        key for key in ("authorization_endpoint", "token_endpoint")
        if not isinstance(document.get(key), str) or not document.get(key)
    ]
    if missing:
        raise ConfigurationError(
            f"Discovery document at {url} is missing: {', '.join(missing)}"
        )

    return ProviderEndpoints(
        authorization_endpoint=document["authorization_endpoint"],
        token_endpoint=document["token_endpoint"],
    )


async def resolve_endpoints(
    config: LoginConfig,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ProviderEndpoints:
    """Work out the endpoints for *config*.

    Args:
        config: The resolved login configuration.
        http_client: Client used for discovery; tests inject one backed by
            ``httpx.MockTransport``.

    Returns:
        Validated :class:`~looplogin.models.ProviderEndpoints`.

    Raises:
        ConfigurationError: If neither explicit endpoints nor an authority
            are configured, or a resulting URL is malformed.
        NetworkError: If discovery fails at the transport level.
    """
    authorize = config.authorize_endpoint
    token = config.token_endpoint

    if not (authorize and token):
        authority = config.resolved_authority
        if not authority:
            raise ConfigurationError(
                "No identity provider configured: set tenant_id or authority "
                "(or both authorize_endpoint and token_endpoint)"
            )
        validate_endpoint_url(authority, "authority")
        if config.discovery:
            derived = await fetch_discovery(authority, http_client)
        else:
            derived = microsoft_endpoints(authority)
        authorize = authorize or derived.authorization_endpoint
        token = token or derived.token_endpoint

    validate_endpoint_url(authorize, "authorization endpoint")
    validate_endpoint_url(token, "token endpoint")
    logger.debug("Using authorization endpoint %s and token endpoint %s", authorize, token)
    return ProviderEndpoints(authorization_endpoint=authorize, token_endpoint=token)
