"""PKCE (Proof Key for Code Exchange) and state nonce generation.

Implements :rfc:`7636` with the ``S256`` method only: the verifier is drawn
from :mod:`secrets` and the challenge is
``BASE64URL(SHA256(ASCII(verifier)))`` without padding.

The ``state`` nonce produced by :func:`generate_state` is unrelated to the
verifier. It protects the redirect against CSRF; the verifier binds the code
to this client.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from looplogin.models import PkceParameters

# 64 random bytes -> 86 URL-safe characters, inside the 43-128 window.
_VERIFIER_ENTROPY_BYTES = 64
_STATE_ENTROPY_BYTES = 32


def derive_challenge(verifier: str) -> str:
    """Derive the ``S256`` code challenge for *verifier*.

    Args:
        verifier: The PKCE code verifier.

    Returns:
        Base64url-encoded SHA-256 digest with the ``=`` padding stripped.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> PkceParameters:
    """Generate a fresh code verifier and its derived challenge.

    Returns:
        Immutable :class:`~looplogin.models.PkceParameters` for one attempt.
    """
    # RFC 7636: 43-128 characters from the unreserved character set
    verifier = secrets.token_urlsafe(_VERIFIER_ENTROPY_BYTES)[:128]
    return PkceParameters(verifier=verifier, challenge=derive_challenge(verifier))


def generate_state() -> str:
    """Return an unguessable, URL-safe nonce for the ``state`` parameter."""
    return secrets.token_urlsafe(_STATE_ENTROPY_BYTES)
