"""End-to-end tests for the login flow.

A fake browser reads the authorization URL and fires the redirect at the
real loopback listener from a worker thread; the token endpoint is an
``httpx.MockTransport`` that records every request.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from http.client import HTTPConnection
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from looplogin.exceptions import (
    AuthorizationDeniedError,
    CallbackTimeoutError,
    ConfigurationError,
    CsrfValidationError,
    TokenExchangeError,
)
from looplogin.models import LoginConfig
from looplogin.oauth.flow import LoginFlow, login, validate_callback
from looplogin.oauth.listener import CallbackListener, ListenerState
from looplogin.oauth.pkce import derive_challenge

AUTHORIZE = "https://idp.example.com/oauth2/v2.0/authorize"
TOKEN = "https://idp.example.com/oauth2/v2.0/token"


class FakeBrowser:
    """Stands in for the user's browser.

    ``respond`` maps the authorization URL's query to the redirect query the
    provider would send back; ``None`` means the user never finishes.
    """

    def __init__(self, respond: Optional[Callable[[dict[str, str]], dict[str, str]]]) -> None:
        self._respond = respond
        self.urls: list[str] = []
        self.statuses: list[int] = []
        self._threads: list[threading.Thread] = []

    def __call__(self, url: str) -> None:
        self.urls.append(url)
        if self._respond is None:
            return
        query = {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}
        redirect = urlparse(query["redirect_uri"])
        target = f"{redirect.path}?{urlencode(self._respond(query))}"
        thread = threading.Thread(target=self._redirect, args=(redirect.port, target))
        thread.start()
        self._threads.append(thread)

    def _redirect(self, port: int, target: str) -> None:
        conn = HTTPConnection("127.0.0.1", port, timeout=5)
        try:
            conn.request("GET", target)
            self.statuses.append(conn.getresponse().status)
        finally:
            conn.close()

    def join(self) -> None:
        for thread in self._threads:
            thread.join(timeout=5)

    @property
    def sent_query(self) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlparse(self.urls[0]).query).items()}


class TokenEndpoint:
    """Records token requests and answers with a fixed response."""

    def __init__(self, body: Any, status_code: int = 200) -> None:
        self.body = body
        self.status_code = status_code
        self.requests: list[dict[str, list[str]]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(parse_qs(request.content.decode()))
        return httpx.Response(self.status_code, json=self.body)

    def client(self):
        from looplogin.oauth.token import TokenExchangeClient

        return TokenExchangeClient(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        )


def _config(port: int, **kwargs: object) -> LoginConfig:
    defaults: dict[str, object] = {
        "client_id": "client-123",
        "authorize_endpoint": AUTHORIZE,
        "token_endpoint": TOKEN,
        "redirect_port": port,
        "timeout_seconds": 5,
    }
    defaults.update(kwargs)
    return LoginConfig(**defaults)  # type: ignore[arg-type]


def _echo_state(code: str = "auth-code") -> Callable[[dict[str, str]], dict[str, str]]:
    return lambda query: {"code": code, "state": query["state"]}


OK_TOKENS = {"access_token": "abc", "expires_in": 3600, "token_type": "Bearer"}


# -------------------------------------------------------------------------
# End-to-end scenarios
# -------------------------------------------------------------------------


class TestScenarios:
    @pytest.mark.asyncio
    async def test_scenario_a_successful_login(self, free_port: int) -> None:
        browser = FakeBrowser(_echo_state("auth-code"))
        token = TokenEndpoint(OK_TOKENS)

        before = datetime.now(timezone.utc)
        result = await login(_config(free_port), browser=browser, token_client=token.client())
        browser.join()

        assert result.access_token == "abc"
        assert result.token_type == "Bearer"
        assert abs(result.expires_at - (before + timedelta(seconds=3600))) < timedelta(seconds=5)
        assert browser.statuses == [200]

        # The verifier sent to the token endpoint matches the challenge in the URL.
        assert len(token.requests) == 1
        form = token.requests[0]
        assert form["code"] == ["auth-code"]
        assert form["redirect_uri"] == [f"http://localhost:{free_port}/auth/callback"]
        assert derive_challenge(form["code_verifier"][0]) == browser.sent_query["code_challenge"]

    @pytest.mark.asyncio
    async def test_scenario_b_authorization_denied(self, free_port: int) -> None:
        browser = FakeBrowser(
            lambda query: {"error": "access_denied", "error_description": "User cancelled"}
        )
        token = TokenEndpoint(OK_TOKENS)
        flow = LoginFlow(_config(free_port), browser=browser, token_client=token.client())

        with pytest.raises(AuthorizationDeniedError) as exc_info:
            await flow.run()
        browser.join()

        assert str(exc_info.value) == "User cancelled"
        assert exc_info.value.error == "access_denied"
        assert token.requests == []
        assert flow.listener_outcome is ListenerState.FULFILLED

    @pytest.mark.asyncio
    async def test_scenario_c_state_mismatch(self, free_port: int) -> None:
        browser = FakeBrowser(lambda query: {"code": "auth-code", "state": "WRONG"})
        token = TokenEndpoint(OK_TOKENS)

        with pytest.raises(CsrfValidationError):
            await login(_config(free_port), browser=browser, token_client=token.client())
        browser.join()

        assert token.requests == []

    @pytest.mark.asyncio
    async def test_non_ascii_state_is_csrf_failure(self, free_port: int) -> None:
        browser = FakeBrowser(lambda query: {"code": "auth-code", "state": "café"})
        token = TokenEndpoint(OK_TOKENS)

        with pytest.raises(CsrfValidationError):
            await login(_config(free_port), browser=browser, token_client=token.client())
        browser.join()

        assert token.requests == []

    @pytest.mark.asyncio
    async def test_scenario_d_invalid_grant(self, free_port: int) -> None:
        browser = FakeBrowser(_echo_state())
        token = TokenEndpoint({"error": "invalid_grant"}, status_code=400)

        with pytest.raises(TokenExchangeError) as exc_info:
            await login(_config(free_port), browser=browser, token_client=token.client())
        browser.join()

        assert str(exc_info.value) == "invalid_grant"
        assert len(token.requests) == 1


# -------------------------------------------------------------------------
# Flow properties
# -------------------------------------------------------------------------


class TestFlowProperties:
    @pytest.mark.asyncio
    async def test_timeout_releases_port(self, free_port: int) -> None:
        browser = FakeBrowser(None)
        token = TokenEndpoint(OK_TOKENS)
        flow = LoginFlow(
            _config(free_port, timeout_seconds=0.3), browser=browser, token_client=token.client()
        )

        with pytest.raises(CallbackTimeoutError):
            await flow.run()

        assert flow.listener_outcome is ListenerState.TIMED_OUT
        assert token.requests == []
        async with CallbackListener(free_port, "/auth/callback") as listener:
            assert listener.port == free_port

    @pytest.mark.asyncio
    async def test_missing_state_is_csrf_failure(self, free_port: int) -> None:
        browser = FakeBrowser(lambda query: {"code": "auth-code"})
        token = TokenEndpoint(OK_TOKENS)

        with pytest.raises(CsrfValidationError, match="missing"):
            await login(_config(free_port), browser=browser, token_client=token.client())
        browser.join()
        assert token.requests == []

    @pytest.mark.asyncio
    async def test_missing_code_is_invalid_request(self, free_port: int) -> None:
        browser = FakeBrowser(lambda query: {"state": query["state"]})
        token = TokenEndpoint(OK_TOKENS)

        with pytest.raises(AuthorizationDeniedError) as exc_info:
            await login(_config(free_port), browser=browser, token_client=token.client())
        browser.join()
        assert exc_info.value.error == "invalid_request"
        assert token.requests == []

    @pytest.mark.asyncio
    async def test_listener_bound_before_browser_opens(self, free_port: int) -> None:
        reachable: list[bool] = []

        def browser(url: str) -> None:
            conn = HTTPConnection("127.0.0.1", free_port, timeout=5)
            try:
                conn.request("GET", "/ping")
                reachable.append(conn.getresponse().status == 404)
            finally:
                conn.close()

        with pytest.raises(CallbackTimeoutError):
            await login(
                _config(free_port, timeout_seconds=0.2),
                browser=browser,
                token_client=TokenEndpoint(OK_TOKENS).client(),
            )
        assert reachable == [True]

    @pytest.mark.asyncio
    async def test_port_in_use_fails_before_browser(self, free_port: int) -> None:
        browser = FakeBrowser(_echo_state())
        async with CallbackListener(free_port, "/auth/callback"):
            with pytest.raises(ConfigurationError, match="Cannot listen"):
                await login(
                    _config(free_port),
                    browser=browser,
                    token_client=TokenEndpoint(OK_TOKENS).client(),
                )
        assert browser.urls == []

    @pytest.mark.asyncio
    async def test_fresh_state_and_verifier_per_attempt(self, free_port: int) -> None:
        first, second = FakeBrowser(_echo_state()), FakeBrowser(_echo_state())
        token = TokenEndpoint(OK_TOKENS)

        await login(_config(free_port), browser=first, token_client=token.client())
        first.join()
        await login(_config(free_port), browser=second, token_client=token.client())
        second.join()

        assert first.sent_query["state"] != second.sent_query["state"]
        assert token.requests[0]["code_verifier"] != token.requests[1]["code_verifier"]

    @pytest.mark.asyncio
    async def test_authorize_url_hook_receives_url(self, free_port: int) -> None:
        announced: list[str] = []
        browser = FakeBrowser(_echo_state())

        await login(
            _config(free_port),
            browser=browser,
            token_client=TokenEndpoint(OK_TOKENS).client(),
            on_authorize_url=announced.append,
        )
        browser.join()
        assert announced == browser.urls

    @pytest.mark.asyncio
    async def test_custom_endpoint_resolver(self, free_port: int) -> None:
        from looplogin.models import ProviderEndpoints

        async def resolver(config: LoginConfig) -> ProviderEndpoints:
            return ProviderEndpoints(
                authorization_endpoint="https://other.example.com/authorize",
                token_endpoint=TOKEN,
            )

        browser = FakeBrowser(_echo_state())
        await login(
            _config(free_port),
            browser=browser,
            token_client=TokenEndpoint(OK_TOKENS).client(),
            endpoint_resolver=resolver,
        )
        browser.join()
        assert browser.urls[0].startswith("https://other.example.com/authorize?")


class TestValidateCallback:
    def _flow_state(self):
        from looplogin.models import FlowState

        return FlowState(
            state="expected",
            expected_redirect_uri="http://localhost:3000/auth/callback",
            scopes=frozenset({"openid"}),
            started_at=datetime.now(timezone.utc),
        )

    def test_error_checked_before_state(self) -> None:
        from looplogin.models import CallbackResult

        callback = CallbackResult(error="access_denied", state="WRONG")
        with pytest.raises(AuthorizationDeniedError):
            validate_callback(callback, self._flow_state())

    def test_error_without_description_uses_code(self) -> None:
        from looplogin.models import CallbackResult

        with pytest.raises(AuthorizationDeniedError, match="^consent_required$"):
            validate_callback(CallbackResult(error="consent_required"), self._flow_state())

    def test_returns_code(self) -> None:
        from looplogin.models import CallbackResult

        callback = CallbackResult(code="c0de", state="expected")
        assert validate_callback(callback, self._flow_state()) == "c0de"

    def test_undecodable_state_is_csrf_failure(self) -> None:
        from looplogin.models import CallbackResult

        # parse_qs maps %FF to U+FFFD
        callback = CallbackResult(code="c0de", state="\ufffd")
        with pytest.raises(CsrfValidationError, match="does not match"):
            validate_callback(callback, self._flow_state())

    def test_error_uri_carried_on_denial(self) -> None:
        from looplogin.models import CallbackResult

        callback = CallbackResult(error="invalid_scope", error_uri="https://idp.example.com/e")
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            validate_callback(callback, self._flow_state())
        assert exc_info.value.error_uri == "https://idp.example.com/e"
