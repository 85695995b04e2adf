"""Login flow orchestration.

:class:`LoginFlow` runs one authorization code + PKCE attempt end to end:

1. resolve the provider endpoints, generate PKCE parameters and a state
   nonce;
2. bind the loopback listener;
3. build the authorization URL and hand it to the browser;
4. wait for the single callback (the only suspension point);
5. check ``error``, then ``state``, then ``code``;
6. exchange the code together with the original verifier.

Failures are raised as :class:`~looplogin.exceptions.LoginError`
subclasses; the listener is released on every exit path. Nothing is shared
between runs.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from looplogin.exceptions import AuthorizationDeniedError, CsrfValidationError
from looplogin.models import (
    CallbackResult,
    FlowState,
    LoginConfig,
    PkceParameters,
    ProviderEndpoints,
    TokenResult,
)
from looplogin.oauth.authorize import build_authorize_url
from looplogin.oauth.browser import open_browser
from looplogin.oauth.endpoints import resolve_endpoints
from looplogin.oauth.listener import CallbackListener, ListenerState
from looplogin.oauth.pkce import generate_pkce, generate_state
from looplogin.oauth.token import TokenExchangeClient

logger = logging.getLogger(__name__)

BrowserOpener = Callable[[str], None]
EndpointResolver = Callable[[LoginConfig], Awaitable[ProviderEndpoints]]


def validate_callback(callback: CallbackResult, flow_state: FlowState) -> str:
    """Check a callback against the in-flight attempt and return its code.

    Raises:
        AuthorizationDeniedError: If the provider sent ``error``, or no code.
        CsrfValidationError: If ``state`` is missing or does not match.
    """
    if callback.is_error():
        raise AuthorizationDeniedError(
            callback.error or "", callback.error_description, callback.error_uri
        )

    if callback.state is None:
        raise CsrfValidationError("Authorization callback is missing the state parameter")
    if not secrets.compare_digest(
        callback.state.encode("utf-8"), flow_state.state.encode("utf-8")
    ):
        raise CsrfValidationError("Authorization callback state does not match this login attempt")

    if not callback.code:
        raise AuthorizationDeniedError(
            "invalid_request", "Authorization callback did not include a code"
        )
    return callback.code


class LoginFlow:
    """One interactive login attempt.

    Args:
        config: Resolved configuration.
        browser: Called with the authorization URL once the listener is bound.
        token_client: Token endpoint client; one is created (and closed) per
            run when omitted.
        endpoint_resolver: Coroutine function returning the provider
            endpoints; defaults to :func:`~looplogin.oauth.endpoints.resolve_endpoints`.
        on_authorize_url: Optional hook receiving the URL, e.g. to print it.
    """

    def __init__(
        self,
        config: LoginConfig,
        *,
        browser: BrowserOpener = open_browser,
        token_client: Optional[TokenExchangeClient] = None,
        endpoint_resolver: Optional[EndpointResolver] = None,
        on_authorize_url: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config = config
        self._browser = browser
        self._token_client = token_client
        self._resolve_endpoints = endpoint_resolver or resolve_endpoints
        self._on_authorize_url = on_authorize_url
        self.listener_outcome: Optional[ListenerState] = None

    async def run(self) -> TokenResult:
        """Execute the flow and return the tokens.

        Raises:
            ConfigurationError: Bad settings, or the redirect port is taken.
            CallbackTimeoutError: No callback within ``timeout_seconds``.
            AuthorizationDeniedError: The provider refused, or sent no code.
            CsrfValidationError: The callback state does not match.
            NetworkError: The provider could not be reached.
            TokenExchangeError: The token endpoint rejected the code.
        """
        config = self.config
        endpoints = await self._resolve_endpoints(config)

        pkce = generate_pkce()
        flow_state = FlowState(
            state=generate_state(),
            expected_redirect_uri=config.redirect_uri,
            scopes=frozenset(config.scopes),
            started_at=datetime.now(timezone.utc),
        )
        listener = CallbackListener(
            config.redirect_port, config.redirect_path, config.redirect_host
        )
        try:
            async with listener:
                url = build_authorize_url(
                    endpoints.authorization_endpoint,
                    config.client_id,
                    flow_state.expected_redirect_uri,
                    config.scopes,
                    pkce,
                    flow_state.state,
                )
                logger.info("Waiting for the authorization callback on %s", config.redirect_uri)
                if self._on_authorize_url is not None:
                    self._on_authorize_url(url)
                self._browser(url)
                callback = await listener.wait(config.timeout_seconds)
        finally:
            self.listener_outcome = listener.outcome

        code = validate_callback(callback, flow_state)
        logger.debug("Callback accepted; exchanging code")
        return await self._exchange(endpoints, code, pkce, flow_state)

    async def _exchange(
        self,
        endpoints: ProviderEndpoints,
        code: str,
        pkce: PkceParameters,
        flow_state: FlowState,
    ) -> TokenResult:
        if self._token_client is not None:
            return await self._token_client.exchange(
                endpoints.token_endpoint,
                self.config.client_id,
                code,
                pkce.verifier,
                flow_state.expected_redirect_uri,
            )
        async with TokenExchangeClient() as client:
            return await client.exchange(
                endpoints.token_endpoint,
                self.config.client_id,
                code,
                pkce.verifier,
                flow_state.expected_redirect_uri,
            )


async def login(config: LoginConfig, **collaborators) -> TokenResult:
    """Run a single :class:`LoginFlow` for *config*.

    Keyword arguments are passed through to :class:`LoginFlow`.
    """
    return await LoginFlow(config, **collaborators).run()
