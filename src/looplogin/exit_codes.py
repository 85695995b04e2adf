"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to one :class:`~looplogin.exceptions.ErrorKind` and is
referenced by the corresponding :class:`~looplogin.exceptions.LoginError`
subclass. Shell wrappers can branch on the exit code without parsing stderr.

Example::

    $ looplogin login
    $ echo $?
    4   # EXIT_TIMEOUT -- no browser redirect arrived in time
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_CONFIGURATION_ERROR = 3
"""Client id, authority, endpoints or redirect settings are missing or malformed."""

EXIT_TIMEOUT = 4
"""No authorization callback reached the loopback listener before the deadline."""

EXIT_AUTHORIZATION_DENIED = 5
"""The identity provider redirected back with an ``error`` parameter."""

EXIT_CSRF_VALIDATION_FAILED = 6
"""The callback ``state`` did not match the nonce sent with the request."""

EXIT_NETWORK_ERROR = 7
"""The identity provider could not be reached (DNS, TLS, connection refused)."""

EXIT_TOKEN_EXCHANGE_FAILED = 8
"""The token endpoint rejected the authorization code or returned garbage."""

EXIT_INTERRUPTED = 130
"""The user pressed Ctrl-C."""
