"""OAuth2 authorization code + PKCE protocol core for native clients."""

from looplogin.oauth.authorize import build_authorize_url
from looplogin.oauth.endpoints import resolve_endpoints
from looplogin.oauth.flow import LoginFlow, login
from looplogin.oauth.listener import CallbackListener, ListenerState, await_callback
from looplogin.oauth.pkce import derive_challenge, generate_pkce, generate_state
from looplogin.oauth.token import TokenExchangeClient

__all__ = [
    "CallbackListener",
    "ListenerState",
    "LoginFlow",
    "TokenExchangeClient",
    "await_callback",
    "build_authorize_url",
    "derive_challenge",
    "generate_pkce",
    "generate_state",
    "login",
    "resolve_endpoints",
]
