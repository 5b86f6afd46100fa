"""Deploy-time settings for the session subsystem.

Settings are read once from ``config/settings.yaml`` and never mutated at
runtime.  Two environment variables override the file so that a deployment
can point at a different identity service or storage location without
editing it: ``MAMUK_API_URL`` and ``MAMUK_STORAGE_PATH``.

Durations use the same short codes the identity service uses for token
lifetimes (``"5m"``, ``"60s"``).
"""

from __future__ import annotations

import dataclasses
import datetime
import os
import pathlib
from typing import Any

import yaml

from mamuk_session.errors import ConfigError
from mamuk_session.tokens.expiry import parse_duration

DEFAULT_CONFIG_PATH = pathlib.Path(__file__).resolve().parents[2] / "config" / "settings.yaml"
DEFAULT_ROUTES_PATH = pathlib.Path(__file__).resolve().parents[2] / "policies" / "routes.yaml"


@dataclasses.dataclass(frozen=True)
class Settings:
    """Resolved configuration.

    Attributes:
        api_base_url:      Base URL of the identity service / application API.
        refresh_threshold: Refresh once less than this remains on the token.
        refresh_interval:  Period of the background expiry check.
        request_timeout:   Transport timeout per call, in seconds.
        sign_in_path:      Sign-in view; receives ``returnUrl``.
        default_path:      Landing view for users who fail a role check.
        storage_path:      JSON file holding the persisted session.
        storage_namespace: Prefix for every persisted key.
        routes_path:       Route table consumed by the route guard.
    """

    api_base_url: str = "http://localhost:5000/api"
    refresh_threshold: datetime.timedelta = datetime.timedelta(minutes=5)
    refresh_interval: datetime.timedelta = datetime.timedelta(seconds=60)
    request_timeout: float = 10.0
    sign_in_path: str = "/login"
    default_path: str = "/"
    storage_path: pathlib.Path = pathlib.Path("~/.mamuk/session.json")
    storage_namespace: str = "mamuk_"
    routes_path: pathlib.Path = DEFAULT_ROUTES_PATH


def load_settings(
    path: str | pathlib.Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """Load ``Settings`` from *path* (default ``config/settings.yaml``).

    A missing default file yields the built-in defaults; a missing explicit
    file, or a malformed one, raises ``ConfigError``.
    """
    environ = dict(os.environ) if environ is None else environ
    data = _read_yaml(path)

    api_cfg: dict[str, Any] = data.get("api") or {}
    session_cfg: dict[str, Any] = data.get("session") or {}
    routing_cfg: dict[str, Any] = data.get("routing") or {}
    defaults = Settings()

    try:
        timeout = float(api_cfg.get("timeout", defaults.request_timeout))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"api.timeout must be a number: {exc}") from exc

    return Settings(
        api_base_url=environ.get("MAMUK_API_URL") or api_cfg.get("base_url", defaults.api_base_url),
        refresh_threshold=_duration(session_cfg, "refresh_threshold", defaults.refresh_threshold),
        refresh_interval=_duration(session_cfg, "refresh_interval", defaults.refresh_interval),
        request_timeout=timeout,
        sign_in_path=routing_cfg.get("sign_in_path", defaults.sign_in_path),
        default_path=routing_cfg.get("default_path", defaults.default_path),
        storage_path=pathlib.Path(
            environ.get("MAMUK_STORAGE_PATH") or session_cfg.get("storage_path", defaults.storage_path)
        ).expanduser(),
        storage_namespace=session_cfg.get("storage_namespace", defaults.storage_namespace),
        routes_path=pathlib.Path(routing_cfg.get("routes_path", defaults.routes_path)),
    )


# -- private helpers ---------------------------------------------------------

def _read_yaml(path: str | pathlib.Path | None) -> dict[str, Any]:
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return {}
        path = DEFAULT_CONFIG_PATH
    config_path = pathlib.Path(path)
    if not config_path.exists():
        raise ConfigError(f"Settings file not found: {config_path}")
    try:
        with open(config_path) as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Settings file is not valid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Settings file must contain a mapping at the top level")
    return data


def _duration(section: dict[str, Any], key: str, default: datetime.timedelta) -> datetime.timedelta:
    raw = section.get(key)
    if raw is None:
        return default
    delta = parse_duration(str(raw))
    if delta is None:
        raise ConfigError(f"session.{key} must be a duration like '5m' or '60s', got {raw!r}")
    return delta
