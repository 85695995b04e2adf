"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module turns the scattered sources of login settings into one validated
:class:`~looplogin.models.LoginConfig`:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.looplogin/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- a single :class:`~looplogin.models.UserConfig` JSON
  file of defaults, written atomically (:func:`_atomic_write`).
* **Environment** -- ``LOOPLOGIN_*`` variables (plus the legacy
  ``AZURE_APP_CLIENT_ID`` / ``AZURE_DIRECTORY_TENANT_ID`` names) from the
  process environment and from a ``.env`` file read with python-dotenv.
  The ``.env`` file never modifies ``os.environ``.
* **Precedence resolution** -- :func:`resolve_login_config` merges CLI
  overrides, environment, ``.env``, and the user config on top of the model
  defaults.
"""

from __future__ import annotations

import json
import os
import platform
import re
import tempfile
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import dotenv_values
from pydantic import ValidationError

from looplogin.exceptions import ConfigurationError
from looplogin.models import LoginConfig, UserConfig

_APP_NAME = "looplogin"
_CONFIG_FILENAME = "config.json"
_DOTENV_FILENAME = ".env"

# Field -> environment variable names, highest priority first.
ENV_VARS: dict[str, tuple[str, ...]] = {
    "client_id": ("LOOPLOGIN_CLIENT_ID", "AZURE_APP_CLIENT_ID"),
    "tenant_id": ("LOOPLOGIN_TENANT_ID", "AZURE_DIRECTORY_TENANT_ID"),
    "authority": ("LOOPLOGIN_AUTHORITY",),
    "redirect_port": ("LOOPLOGIN_REDIRECT_PORT",),
    "scopes": ("LOOPLOGIN_SCOPES",),
    "timeout_seconds": ("LOOPLOGIN_TIMEOUT",),
}

_SCOPE_SEPARATORS = re.compile(r"[\s,]+")


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    return Path.home().joinpath(*default_segments)


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/looplogin/`` (default ``~/.config/looplogin/``).
    On macOS/Windows: ``~/.looplogin/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/looplogin/`` (default ``~/.local/share/looplogin/``).
    On macOS/Windows: ``~/.looplogin/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_file_path() -> Path:
    """Path to the user config file (it may not exist yet)."""
    return get_config_dir() / _CONFIG_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file lives next to *path* so ``os.replace`` is an atomic
    rename on POSIX. On any failure the temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- User config ---


def load_user_config() -> UserConfig:
    """Load the user defaults from the config directory.

    Returns:
        The stored :class:`~looplogin.models.UserConfig`, or an empty one if
        the file does not exist.

    Raises:
        ConfigurationError: If the file holds invalid JSON or unknown keys.
    """
    path = config_file_path()
    if not path.is_file():
        return UserConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return UserConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid config file at {path}: {exc}") from exc


def save_user_config(config: UserConfig) -> None:
    """Persist *config* atomically, omitting unset fields."""
    data = config.model_dump(mode="json", exclude_none=True)
    _atomic_write(config_file_path(), json.dumps(data, indent=2) + "\n")


def reset_user_config() -> bool:
    """Delete the user config file. Returns False if there was none."""
    path = config_file_path()
    if not path.is_file():
        return False
    path.unlink()
    return True


def parse_config_value(key: str, raw: str) -> Any:
    """Convert the string *raw* into a value for the ``UserConfig`` field *key*.

    Scopes accept space- or comma-separated lists; everything else is left
    to pydantic's coercion (``"3000"`` -> ``3000``, ``"false"`` -> ``False``).

    Raises:
        ConfigurationError: If *key* is not a known setting.
    """
    if key not in UserConfig.model_fields:
        known = ", ".join(sorted(UserConfig.model_fields))
        raise ConfigurationError(f"Unknown config key '{key}' (known keys: {known})")
    if key == "scopes":
        return split_scopes(raw)
    return raw


def validate_user_config(data: Mapping[str, Any]) -> UserConfig:
    """Validate *data* as user defaults, including the login-level rules.

    A loopback-only ``redirect_host`` or a port outside 1-65535 is rejected
    here rather than at the next ``login``.

    Raises:
        ConfigurationError: If any value is invalid.
    """
    try:
        config = UserConfig.model_validate(dict(data))
        LoginConfig.model_validate(
            {"client_id": "-", **config.model_dump(exclude_none=True)}
        )
    except ValidationError as exc:
        raise ConfigurationError(_format_validation_error(exc)) from exc
    return config


def set_user_value(key: str, raw: str) -> UserConfig:
    """Set one user default from its string form and save the file."""
    current = load_user_config().model_dump(exclude_none=True)
    current[key] = parse_config_value(key, raw)
    config = validate_user_config(current)
    save_user_config(config)
    return config


def unset_user_value(key: str) -> bool:
    """Remove one user default. Returns False if it was not set."""
    if key not in UserConfig.model_fields:
        raise ConfigurationError(f"Unknown config key '{key}'")
    current = load_user_config().model_dump(exclude_none=True)
    if key not in current:
        return False
    del current[key]
    save_user_config(UserConfig.model_validate(current))
    return True


# --- Environment ---


def split_scopes(raw: str) -> list[str]:
    """Split a space- or comma-separated scope string."""
    return [scope for scope in _SCOPE_SEPARATORS.split(raw) if scope]


def load_dotenv_file(env_file: Optional[Path] = None) -> dict[str, str]:
    """Read variables from *env_file* (default ``./.env``) without exporting them.

    Raises:
        ConfigurationError: If an explicitly named file does not exist.
    """
    if env_file is None:
        path = Path.cwd() / _DOTENV_FILENAME
        if not path.is_file():
            return {}
    else:
        path = Path(env_file).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Environment file not found: {path}")
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def environment_settings(
    environ: Mapping[str, str],
    dotenv: Mapping[str, str],
) -> dict[str, tuple[Any, str]]:
    """Collect settings from the environment and ``.env`` values.

    Returns:
        ``{field: (value, source)}`` where *source* names the variable and
        where it came from, e.g. ``"env:LOOPLOGIN_CLIENT_ID"``.
    """
    found: dict[str, tuple[Any, str]] = {}
    for field, names in ENV_VARS.items():
        for label, source in (("env", environ), (".env", dotenv)):
            value = next(
                ((name, source[name]) for name in names if source.get(name)), None
            )
            if value is not None:
                name, raw = value
                found[field] = (
                    split_scopes(raw) if field == "scopes" else raw,
                    f"{label}:{name}",
                )
                break
    return found


# --- Precedence resolution ---


def effective_settings(
    overrides: Optional[Mapping[str, Any]] = None,
    env_file: Optional[Path] = None,
) -> dict[str, tuple[Any, str]]:
    """Merge every configuration source, remembering where each value came from.

    Precedence (high to low):
        1. CLI overrides (``None`` values are ignored)
        2. Process environment
        3. ``.env`` file
        4. User config file
        5. Model defaults (not included in the result)

    Returns:
        ``{field: (value, source)}`` for every field set by some source.
    """
    settings: dict[str, tuple[Any, str]] = {
        key: (value, "config")
        for key, value in load_user_config().model_dump(exclude_none=True).items()
    }
    settings.update(environment_settings(os.environ, load_dotenv_file(env_file)))
    for key, value in (overrides or {}).items():
        if value is not None:
            settings[key] = (value, "cli")
    return settings


def resolve_login_config(
    overrides: Optional[Mapping[str, Any]] = None,
    env_file: Optional[Path] = None,
) -> LoginConfig:
    """Resolve the final :class:`~looplogin.models.LoginConfig` for ``login``.

    Args:
        overrides: Values from CLI flags, keyed by ``LoginConfig`` field name.
        env_file: Explicit ``.env`` path; ``./.env`` is used when omitted.

    Raises:
        ConfigurationError: If the client id or provider is missing, or any
            value fails validation.
    """
    data = {key: value for key, (value, _) in effective_settings(overrides, env_file).items()}

    if not data.get("client_id"):
        raise ConfigurationError(
            "No client id configured: pass --client-id or set LOOPLOGIN_CLIENT_ID"
        )
    if not (
        data.get("tenant_id")
        or data.get("authority")
        or (data.get("authorize_endpoint") and data.get("token_endpoint"))
    ):
        raise ConfigurationError(
            "No identity provider configured: pass --tenant or set LOOPLOGIN_TENANT_ID "
            "(or LOOPLOGIN_AUTHORITY)"
        )

    try:
        return LoginConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(_format_validation_error(exc)) from exc


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "config"
        problems.append(f"{location}: {err['msg']}")
    return "Invalid configuration: " + "; ".join(problems)
