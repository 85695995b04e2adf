"""Exception hierarchy for looplogin.

Every failure of a login attempt is raised as a :class:`LoginError`
subclass. Each subclass carries a class-level :class:`ErrorKind` tag and an
``exit_code`` from :mod:`looplogin.exit_codes`, so the command layer can
surface any failure as a single tagged result. The top-level handler in
:func:`looplogin.app.main` catches ``LoginError`` and exits with the
appropriate code, while unexpected exceptions produce a crash log.

Subclass hierarchy::

    LoginError                 (exit 1)
    +-- ConfigurationError     (exit 3)
    +-- CallbackTimeoutError   (exit 4)
    +-- AuthorizationDeniedError (exit 5)
    +-- CsrfValidationError    (exit 6)
    +-- NetworkError           (exit 7)
    +-- TokenExchangeError     (exit 8)
"""

from __future__ import annotations

import enum
from typing import Optional

from looplogin.exit_codes import (
    EXIT_AUTHORIZATION_DENIED,
    EXIT_CONFIGURATION_ERROR,
    EXIT_CSRF_VALIDATION_FAILED,
    EXIT_GENERIC_FAILURE,
    EXIT_NETWORK_ERROR,
    EXIT_TIMEOUT,
    EXIT_TOKEN_EXCHANGE_FAILED,
)


class ErrorKind(str, enum.Enum):
    """Tag identifying which stage of the login flow failed."""

    UNKNOWN = "unknown"
    CONFIGURATION_ERROR = "configuration_error"
    TIMEOUT = "timeout"
    AUTHORIZATION_DENIED = "authorization_denied"
    CSRF_VALIDATION_FAILED = "csrf_validation_failed"
    NETWORK_ERROR = "network_error"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"


class LoginError(Exception):
    """Base exception for all looplogin errors.

    Every subclass sets a class-level ``kind`` and ``exit_code``. The entry
    point catches this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(LoginError):
    """Raised for malformed or missing client, authority, or redirect settings."""

    kind = ErrorKind.CONFIGURATION_ERROR
    exit_code = EXIT_CONFIGURATION_ERROR


class CallbackTimeoutError(LoginError):
    """Raised when no callback reaches the loopback listener before the deadline.

    Named to avoid shadowing the built-in ``TimeoutError``.
    """

    kind = ErrorKind.TIMEOUT
    exit_code = EXIT_TIMEOUT


class AuthorizationDeniedError(LoginError):
    """Raised when the provider redirects back with an ``error`` parameter.

    The provider's text is kept verbatim: ``str(exc)`` is the
    ``error_description`` when one was sent, otherwise the ``error`` code.

    Args:
        error: The RFC 6749 ``error`` code (e.g. ``access_denied``).
        description: The optional ``error_description`` text.
        error_uri: The optional ``error_uri`` pointing at provider documentation.
    """

    kind = ErrorKind.AUTHORIZATION_DENIED
    exit_code = EXIT_AUTHORIZATION_DENIED

    def __init__(
        self,
        error: str,
        description: Optional[str] = None,
        error_uri: Optional[str] = None,
    ):
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.error_uri = error_uri


class CsrfValidationError(LoginError):
    """Raised when the callback ``state`` is missing or does not match."""

    kind = ErrorKind.CSRF_VALIDATION_FAILED
    exit_code = EXIT_CSRF_VALIDATION_FAILED


class NetworkError(LoginError):
    """Raised on transport failures talking to the identity provider."""

    kind = ErrorKind.NETWORK_ERROR
    exit_code = EXIT_NETWORK_ERROR


class TokenExchangeError(LoginError):
    """Raised when the token endpoint rejects the code or answers with garbage.

    ``str(exc)`` is the provider's ``error`` code (e.g. ``invalid_grant``) so
    it can be surfaced as-is; the description is kept separately.

    Args:
        error: The RFC 6749 ``error`` code, or a local marker such as
            ``malformed_response``.
        description: Provider-supplied ``error_description`` or local detail.
        status_code: HTTP status of the token response, when there was one.
    """

    kind = ErrorKind.TOKEN_EXCHANGE_FAILED
    exit_code = EXIT_TOKEN_EXCHANGE_FAILED

    def __init__(
        self,
        error: str,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(error)
        self.error = error
        self.description = description
        self.status_code = status_code
