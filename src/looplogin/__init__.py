"""looplogin -- sign in to an OpenID Connect provider from the terminal.

This package runs the OAuth2 Authorization Code grant with PKCE
(:rfc:`7636`) against a loopback redirect (:rfc:`8252`) and hands the
resulting tokens to the caller. It talks to the identity provider directly;
no vendor SDK is involved.

Typical workflow::

    looplogin config set client_id 00000000-0000-0000-0000-000000000000
    looplogin config set tenant_id contoso.onmicrosoft.com
    export TOKEN=$(looplogin --plain login)

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the package.
    config: Layered configuration (flags, env, ``.env``, user file).
    exceptions: Error hierarchy with error kinds and exit codes.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    oauth: The authorization-code + PKCE protocol core.
"""

__version__ = "0.1.0"
