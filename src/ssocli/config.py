"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for ssocli:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.ssocli/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir` and :func:`get_sso_cache_dir`.
* **Profile store** -- a single :class:`~ssocli.models.AppConfig` JSON
  file holding profiles, SSO sessions and the current profile name.
  Managed via :func:`load_config` and :func:`save_config`.
* **Precedence resolution** -- :func:`resolve_profile_name` picks the
  active profile from the CLI flag, the ``SSOCLI_PROFILE`` environment
  variable, or the stored ``current`` profile.
* **Registration scopes** -- :func:`normalize_registration_scopes`
  validates an SSO session's scopes against the allowed set.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so that a crash never leaves a half-written file,
and files are created with ``0o600`` because they hold secrets.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from ssocli.exceptions import ConfigError
from ssocli.models import AppConfig, SsoSession

_APP_NAME = "ssocli"
_CONFIG_FILENAME = "config.json"

ALLOWED_REGISTRATION_SCOPES = ("cloudidentity:account:access", "offline_access")
DEFAULT_REGISTRATION_SCOPES = list(ALLOWED_REGISTRATION_SCOPES)


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/ssocli/`` (default ``~/.config/ssocli/``).
    On macOS/Windows: ``~/.ssocli/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/ssocli/`` (default ``~/.local/share/ssocli/``).
    On macOS/Windows: ``~/.ssocli/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_sso_cache_dir() -> Path:
    """Return ``<config_dir>/sso/cache``, where token and registration records live.

    The directory itself is created lazily by
    :class:`~ssocli.auth.cache_store.CredentialCache` with mode ``0o700``.
    """
    return get_config_dir() / "sso" / "cache"


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: int = 0o600) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems, and its
    permissions are restricted to *mode* before any content is written.
    On platforms where replacing an existing file fails, the target is
    removed and the rename retried once. On any failure the temp file is
    cleaned up.
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
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in the except branch
        try:
            os.replace(tmp_path, path)
        except OSError:
            if not path.exists():
                raise
            path.unlink()
            os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Profile store ---


def config_path() -> Path:
    """Path to the profile store file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load the profile store.

    Args:
        path: Explicit file to read. Defaults to :func:`config_path`.

    Returns:
        The deserialised :class:`~ssocli.models.AppConfig`. If the file
        does not exist, an empty instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = path or config_path()
    if not path.is_file():
        return AppConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return AppConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    """Persist the profile store atomically to disk.

    Args:
        config: The configuration to save.
        path: Explicit file to write. Defaults to :func:`config_path`.
    """
    data = config.model_dump(mode="json")
    atomic_write(path or config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def resolve_profile_name(config: AppConfig, cli_profile: Optional[str] = None) -> Optional[str]:
    """Resolve which profile is active.

    Precedence (high to low):
        1. CLI flag (``--profile``)
        2. Environment variable (``SSOCLI_PROFILE``)
        3. ``current`` in the profile store

    Returns:
        The profile name, or ``None`` if nothing selects one.
    """
    if cli_profile:
        return cli_profile
    env_profile = os.environ.get("SSOCLI_PROFILE")
    if env_profile:
        return env_profile
    return config.current


def get_sso_session(config: AppConfig, name: str) -> SsoSession:
    """Look up an SSO session by name.

    Raises:
        ConfigError: If *name* is empty or no such session is configured.
    """
    if not name:
        raise ConfigError("the SSO session must be specified")
    session = config.sso_sessions.get(name)
    if session is None:
        raise ConfigError(
            f"there is no SSO session named '{name}'; "
            "run `ssocli configure sso-session` to create it"
        )
    return session


# --- Registration scopes ---


def normalize_registration_scopes(scopes: Iterable[str]) -> list[str]:
    """Trim, de-duplicate and validate requested registration scopes.

    An empty request yields the default scopes. Order of first appearance
    is preserved.

    Raises:
        ConfigError: If any scope is not an allowed value.
    """
    result: list[str] = []
    for raw in scopes:
        scope = raw.strip()
        if not scope or scope in result:
            continue
        if scope not in ALLOWED_REGISTRATION_SCOPES:
            raise ConfigError(
                f"invalid SSO registration scope '{scope}', allowed values: "
                + ", ".join(ALLOWED_REGISTRATION_SCOPES)
            )
        result.append(scope)
    return result or list(DEFAULT_REGISTRATION_SCOPES)
