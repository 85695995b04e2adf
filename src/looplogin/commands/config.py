"""Config commands -- view and modify stored login defaults.

Provides the ``looplogin config`` sub-command group. Defaults are kept in
the user config file (:class:`~looplogin.models.UserConfig`) and sit below
CLI flags, environment variables, and ``.env`` in the precedence chain.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import typer

from looplogin.exceptions import ConfigurationError
from looplogin.output import error, info, print_table, success


config_app = typer.Typer(no_args_is_help=True)


def _display(value: Any) -> str:
    if isinstance(value, list):
        return " ".join(str(item) for item in value)
    if isinstance(value, bool):
        return str(value).lower()
    return "" if value is None else str(value)


@config_app.command("show")
def config_show(
    env_file: Optional[Path] = typer.Option(
        None, "--env-file", help="Read settings from this .env file instead of ./.env."
    ),
) -> None:
    """Show the effective configuration and where each value comes from.

    Example::

        looplogin config show
        looplogin --json config show
    """
    from looplogin.config import config_file_path, effective_settings
    from looplogin.models import LoginConfig

    try:
        settings = effective_settings(env_file=env_file)
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    rows = []
    for key, field in LoginConfig.model_fields.items():
        if key in settings:
            value, source = settings[key]
        else:
            value = field.get_default(call_default_factory=True)
            source = "default"
        rows.append([key, _display(value), source])

    info(f"Config file: {config_file_path()}")
    print_table(["key", "value", "source"], rows, title="looplogin configuration")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Setting name, e.g. 'client_id' or 'redirect_port'."),
    value: str = typer.Argument(help="Value to store."),
) -> None:
    """Set a stored default.

    The value is coerced to the setting's type and validated before saving.
    Scopes take a space- or comma-separated list.

    Example::

        looplogin config set client_id 00000000-0000-0000-0000-000000000000
        looplogin config set redirect_port 8400
        looplogin config set scopes "openid profile offline_access"
    """
    from looplogin.config import set_user_value

    try:
        config = set_user_value(key, value)
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None

    success(f"Set {key} = {_display(getattr(config, key))}")


@config_app.command("unset")
def config_unset(
    key: str = typer.Argument(help="Setting name to remove."),
) -> None:
    """Remove a stored default so the next source in line applies."""
    from looplogin.config import unset_user_value

    try:
        removed = unset_user_value(key)
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None

    if removed:
        success(f"Unset {key}")
    else:
        info(f"{key} was not set.")


@config_app.command("reset")
def config_reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete all stored defaults.

    Asks for confirmation unless ``--force`` is given.
    """
    from looplogin.config import reset_user_config

    if not force:
        confirmed = typer.confirm("Delete all stored looplogin defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    if reset_user_config():
        success("Configuration reset to defaults.")
    else:
        info("No stored configuration to reset.")
