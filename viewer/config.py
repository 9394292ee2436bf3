"""
Viewer configuration loaded from YAML.

The file mirrors the keys the streaming server itself is configured with, so
a single deployment description can be shared between both ends::

    server: 192.168.1.20
    port: 8080
    signalling: websocket        # or "http"
    signalling_uses_tls: false
    url: /stream
    ws_path: /ws
    credentials:
      user: viewer
      password: secret
    turn:
      server: 192.168.1.20
      port: 3478
      username: turnuser
      password: turnpass
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

LOG = logging.getLogger(__name__)

ENV_CONFIG_VAR = "VIEWER_CONFIG"
SIGNALLING_MODES = ("http", "websocket")


class ConfigError(ValueError):
    """Raised when the configuration file is missing required data or is invalid."""


@dataclass(frozen=True)
class Credentials:
    user: str
    password: str


@dataclass(frozen=True)
class OpenRelayConfig:
    app_name: str
    api_key: str

    @property
    def credentials_url(self) -> str:
        return f"https://{self.app_name}/api/v1/turn/credentials"


@dataclass(frozen=True)
class TurnConfig:
    server: str
    port: int
    username: str
    password: str


@dataclass(frozen=True)
class IceServerConfig:
    urls: Tuple[str, ...]
    username: Optional[str] = None
    credential: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        descriptor: Dict[str, Any] = {"urls": list(self.urls)}
        if self.username is not None:
            descriptor["username"] = self.username
        if self.credential is not None:
            descriptor["credential"] = self.credential
        return descriptor


@dataclass(frozen=True)
class ViewerConfig:
    server: str = "127.0.0.1"
    port: int = 8080
    signalling: str = "websocket"
    signalling_uses_tls: bool = False
    url: str = "/stream"
    ws_path: str = "/ws"
    credentials: Optional[Credentials] = None
    open_relay: Optional[OpenRelayConfig] = None
    turn: Optional[TurnConfig] = None
    ice_servers: Tuple[IceServerConfig, ...] = field(default_factory=tuple)
    handshake_delay: float = 2.0
    request_timeout: Optional[float] = None
    buffer_early_candidates: bool = True
    record_to: Optional[str] = None
    log_level: str = "INFO"

    @property
    def http_base_url(self) -> str:
        scheme = "https" if self.signalling_uses_tls else "http"
        return f"{scheme}://{self.server}:{self.port}"

    @property
    def stream_url(self) -> str:
        return self.http_base_url + _normalise_path(self.url)

    @property
    def ws_url(self) -> str:
        scheme = "wss" if self.signalling_uses_tls else "ws"
        return f"{scheme}://{self.server}:{self.port}{_normalise_path(self.ws_path)}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ViewerConfig":
        if not isinstance(data, Mapping):
            raise ConfigError("configuration root must be a mapping")
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            LOG.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))

        values: Dict[str, Any] = {}
        for key in ("server", "url", "ws_path", "record_to", "log_level"):
            if data.get(key) is not None:
                values[key] = str(data[key])
        if "port" in data:
            values["port"] = _parse_port(data["port"], "port")
        if "signalling" in data:
            values["signalling"] = str(data["signalling"] or "").strip().lower()
        for key in ("signalling_uses_tls", "buffer_early_candidates"):
            if key in data:
                values[key] = bool(data[key])
        if "handshake_delay" in data:
            values["handshake_delay"] = _parse_seconds(data["handshake_delay"], "handshake_delay")
        if data.get("request_timeout") is not None:
            values["request_timeout"] = _parse_seconds(data["request_timeout"], "request_timeout")

        if data.get("credentials"):
            section = _section(data, "credentials")
            values["credentials"] = Credentials(
                user=_required(section, "user", "credentials"),
                password=_required(section, "password", "credentials"),
            )
        if data.get("open_relay"):
            section = _section(data, "open_relay")
            values["open_relay"] = OpenRelayConfig(
                app_name=_required(section, "app_name", "open_relay"),
                api_key=_required(section, "api_key", "open_relay"),
            )
        if data.get("turn"):
            section = _section(data, "turn")
            values["turn"] = TurnConfig(
                server=_required(section, "server", "turn"),
                port=_parse_port(section.get("port", 3478), "turn.port"),
                username=_required(section, "username", "turn"),
                password=_required(section, "password", "turn"),
            )
        if data.get("ice_servers"):
            values["ice_servers"] = tuple(_parse_ice_server(entry) for entry in data["ice_servers"])

        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        if self.signalling not in SIGNALLING_MODES:
            raise ConfigError(
                f"signalling must be one of {', '.join(SIGNALLING_MODES)}, got {self.signalling!r}"
            )
        _parse_port(self.port, "port")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ConfigError(f"unknown log_level {self.log_level!r}")
        if self.signalling == "websocket" and self.credentials is None:
            LOG.info("No signalling credentials configured; sending empty user/password.")

    def with_overrides(self, **overrides: Any) -> "ViewerConfig":
        cleaned = {key: value for key, value in overrides.items() if value is not None}
        if not cleaned:
            return self
        updated = replace(self, **cleaned)
        updated.validate()
        return updated


def _normalise_path(path: str) -> str:
    return path if path.startswith("/") else "/" + path


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = data.get(key)
    if not isinstance(section, Mapping):
        raise ConfigError(f"'{key}' must be a mapping")
    return section


def _required(section: Mapping[str, Any], key: str, where: str) -> str:
    value = section.get(key)
    if value is None or str(value) == "":
        raise ConfigError(f"'{where}.{key}' is required")
    return str(value)


def _parse_port(value: Any, where: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{where}' must be an integer") from None
    if not 1 <= port <= 65535:
        raise ConfigError(f"'{where}' must be between 1 and 65535")
    return port


def _parse_seconds(value: Any, where: str) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{where}' must be a number of seconds") from None
    if seconds < 0:
        raise ConfigError(f"'{where}' must be non-negative")
    return seconds


def _parse_ice_server(entry: Any) -> IceServerConfig:
    if not isinstance(entry, Mapping) or "urls" not in entry:
        raise ConfigError("each ice_servers entry needs 'urls'")
    urls = entry["urls"]
    if isinstance(urls, str):
        urls = [urls]
    return IceServerConfig(
        urls=tuple(str(url) for url in urls),
        username=entry.get("username"),
        credential=entry.get("credential"),
    )


def load_config(path: Optional[Union[str, Path]] = None) -> ViewerConfig:
    """
    Read the configuration file, falling back to ``$VIEWER_CONFIG``.

    With neither available the defaults are returned.
    """

    if path is None:
        env_path = os.environ.get(ENV_CONFIG_VAR)
        if not env_path:
            return ViewerConfig()
        path = env_path

    config_path = Path(path).expanduser()
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        raise ConfigError(f"configuration file {config_path} does not exist") from None
    except yaml.YAMLError as exc:
        raise ConfigError(f"configuration file {config_path} is not valid YAML: {exc}") from exc

    LOG.debug("Loaded configuration from %s", config_path)
    return ViewerConfig.from_mapping(data)


__all__ = [
    "ConfigError",
    "Credentials",
    "ENV_CONFIG_VAR",
    "IceServerConfig",
    "OpenRelayConfig",
    "TurnConfig",
    "ViewerConfig",
    "load_config",
]
