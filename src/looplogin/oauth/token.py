"""Authorization code -> token exchange (:rfc:`6749` section 4.1.3).

:class:`TokenExchangeClient` POSTs the form-encoded code grant, including the
PKCE ``code_verifier``, and maps the provider's JSON answer onto a
:class:`~looplogin.models.TokenResult`. Exactly one request is made per
call; failures are never retried.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from looplogin import __version__
from looplogin.exceptions import NetworkError, TokenExchangeError
from looplogin.models import TokenResult
from looplogin.oauth.authorize import validate_endpoint_url

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


class TokenExchangeClient:
    """Async client for the token endpoint.

    Args:
        timeout: Request timeout in seconds.
        http_client: Optional pre-built ``httpx.AsyncClient`` (tests pass one
            with a ``MockTransport``). A client passed in is not closed by
            this object.

    Example::

        async with TokenExchangeClient() as client:
            result = await client.exchange(token_url, client_id, code, verifier, redirect_uri)
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": f"looplogin/{__version__}"},
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> TokenExchangeClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def exchange(
        self,
        token_endpoint: str,
        client_id: str,
        code: str,
        verifier: str,
        redirect_uri: str,
    ) -> TokenResult:
        """Redeem an authorization code for tokens.

        Args:
            token_endpoint: The provider's token endpoint.
            client_id: The public client id.
            code: The authorization code from the callback.
            verifier: The PKCE code verifier matching the sent challenge.
            redirect_uri: Byte-identical to the one in the authorization URL.

        Returns:
            A :class:`~looplogin.models.TokenResult` with an absolute UTC
            ``expires_at``.

        Raises:
            NetworkError: On connection failures or timeouts.
            TokenExchangeError: On a non-2xx answer or a malformed body.
        """
        validate_endpoint_url(token_endpoint, "token endpoint")
        form = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": verifier,
        }

        logger.debug("Exchanging authorization code at %s", token_endpoint)
        try:
            response = await self._client.post(
                token_endpoint,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Token request to {token_endpoint} failed: {exc}") from exc

        logger.debug("Token endpoint answered HTTP %d", response.status_code)
        payload = _json_object(response)

        if not response.is_success:
            error = payload.get("error") if payload else None
            raise TokenExchangeError(
                error if isinstance(error, str) and error else f"http_{response.status_code}",
                description=_optional_str(payload, "error_description"),
                status_code=response.status_code,
            )

        if payload is None:
            raise TokenExchangeError(
                "malformed_response",
                description="Token endpoint did not return a JSON object",
                status_code=response.status_code,
            )
        return parse_token_response(payload, status_code=response.status_code)


def parse_token_response(
    payload: dict[str, Any],
    status_code: Optional[int] = None,
    now: Optional[datetime] = None,
) -> TokenResult:
    """Build a :class:`TokenResult` from a successful token response body.

    ``expires_in`` defaults to one hour when the provider omits it.

    Raises:
        TokenExchangeError: ``malformed_response`` if ``access_token`` is
            missing or a field has the wrong type.
    """
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise TokenExchangeError(
            "malformed_response",
            description="Token response has no access_token",
            status_code=status_code,
        )

    expires_in = payload.get("expires_in", DEFAULT_EXPIRES_IN)
    try:
        seconds = int(expires_in)
        if seconds < 0:
            raise ValueError(expires_in)
    except (TypeError, ValueError):
        raise TokenExchangeError(
            "malformed_response",
            description=f"Invalid expires_in value {expires_in!r}",
            status_code=status_code,
        ) from None

    issued = now or datetime.now(timezone.utc)
    try:
        return TokenResult(
            access_token=access_token,
            token_type=_optional_str(payload, "token_type") or "Bearer",
            expires_at=issued + timedelta(seconds=seconds),
            id_token=_optional_str(payload, "id_token"),
            refresh_token=_optional_str(payload, "refresh_token"),
            scope=_optional_str(payload, "scope"),
        )
    except ValueError as exc:
        raise TokenExchangeError(
            "malformed_response", description=str(exc), status_code=status_code
        ) from exc


def _json_object(response: httpx.Response) -> Optional[dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _optional_str(payload: Optional[dict[str, Any]], key: str) -> Optional[str]:
    if not payload:
        return None
    value = payload.get(key)
    return value if isinstance(value, str) else None
