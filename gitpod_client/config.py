"""Configuration management for the workspace-service client."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import httpx
import yaml

DEFAULT_HOST = "gitpod.io"
API_PATH = "/api/v1"


class ConfigurationError(ValueError):
    """Raised when client settings are missing or malformed."""


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _env_float(value: Optional[str], default: Optional[float]) -> Optional[float]:
    if value is None or value.strip() == "":
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid number {value!r} for timeout setting") from exc
    if parsed <= 0:
        raise ConfigurationError("Timeout must be a positive number of seconds")
    return parsed


def normalise_host(host: str) -> str:
    """Strip any scheme, path and trailing slash from ``host``."""

    value = (host or "").strip()
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0].strip()
    if not value:
        raise ConfigurationError("Host must not be empty")
    return value


@dataclass(frozen=True)
class ClientSettings:
    """Connection settings for one workspace-service host."""

    host: str = DEFAULT_HOST
    token: Optional[str] = None
    timeout: Optional[float] = None
    use_tls: bool = True
    origin: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def endpoint_url(self) -> str:
        scheme = "wss" if self.use_tls else "ws"
        return str(httpx.URL(f"{scheme}://{self.host}{API_PATH}"))

    @property
    def origin_header(self) -> str:
        if self.origin:
            return self.origin
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.host}/"

    def for_host(self, host: str) -> "ClientSettings":
        return replace(self, host=normalise_host(host))

    def __repr__(self) -> str:
        token = "<set>" if self.token else None
        return (
            f"ClientSettings(host={self.host!r}, token={token!r}, timeout={self.timeout!r}, "
            f"use_tls={self.use_tls!r})"
        )

    @staticmethod
    def from_dict(data: Mapping[str, object], base: Optional["ClientSettings"] = None) -> "ClientSettings":
        """Overlay the keys present in ``data`` on ``base``."""

        settings = base or ClientSettings()
        updates: Dict[str, object] = {}
        if data.get("host") is not None:
            updates["host"] = normalise_host(str(data["host"]))
        if data.get("token") is not None:
            updates["token"] = str(data["token"]).strip() or None
        if data.get("timeout") is not None:
            updates["timeout"] = _env_float(str(data["timeout"]), None)
        if data.get("use_tls") is not None:
            updates["use_tls"] = _env_bool(str(data["use_tls"]), True)
        if data.get("origin") is not None:
            updates["origin"] = str(data["origin"]).strip() or None
        if data.get("user_agent") is not None:
            updates["user_agent"] = str(data["user_agent"]).strip() or None
        return replace(settings, **updates)


def load_settings_file(config_path: Path, base: Optional[ClientSettings] = None) -> ClientSettings:
    """Load settings from a YAML file."""

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration file {config_path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration file must contain a mapping of settings")
    return ClientSettings.from_dict(raw, base)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the configuration file, if one is configured or present."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = Path("~/.config/gitpod/client.yaml").expanduser()
    return candidate if candidate.is_file() else None


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> ClientSettings:
    """Build settings from defaults, a YAML file, then ``GITPOD_*`` environment variables."""

    env = os.environ if environ is None else environ
    settings = ClientSettings()

    path = config_path or resolve_config_path(env.get("GITPOD_CONFIG"))
    if path is not None:
        settings = load_settings_file(path, settings)

    overrides = {
        "host": env.get("GITPOD_HOST") or None,
        "token": env.get("GITPOD_TOKEN") or None,
        "timeout": env.get("GITPOD_TIMEOUT") or None,
        "use_tls": env.get("GITPOD_USE_TLS") or None,
    }
    return ClientSettings.from_dict(overrides, settings)


__all__ = [
    "API_PATH",
    "ClientSettings",
    "ConfigurationError",
    "DEFAULT_HOST",
    "load_settings",
    "load_settings_file",
    "normalise_host",
    "resolve_config_path",
]
