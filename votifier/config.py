"""
Configuration loader for the vote receiver.

One JSON file, every section optional; missing keys fall back to the
defaults below. Two environment variables override the file so a
container can flip them without editing it:

    VOTIFIER_KEY_PATH   directory holding rsa.key / rsa.pub
    VOTIFIER_DEBUG      "1"/"true" turns on debug logging
"""

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError
from .tokens import ServiceTokenTable

STORAGE_TYPES = ("memory", "sqlite")
DEFAULT_CONTEXT_PATH = "/Hyvote/HytaleVotifier"


@dataclass(frozen=True)
class ProtocolConfig:
    v1_enabled: bool = True
    v2_enabled: bool = True


@dataclass(frozen=True)
class SocketConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8192


@dataclass(frozen=True)
class HttpServerConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    context_path: str = DEFAULT_CONTEXT_PATH


@dataclass(frozen=True)
class VoteStorageConfig:
    type: str = "sqlite"
    file_path: str = "votes.db"
    cleanup_interval_hours: int = 6


@dataclass(frozen=True)
class VotifierConfig:
    debug: bool = False
    key_path: str = "keys"
    data_dir: str = "."
    vote_expiry_hours: int = 24
    protocols: ProtocolConfig = field(default_factory=ProtocolConfig)
    socket: SocketConfig = field(default_factory=SocketConfig)
    http: HttpServerConfig = field(default_factory=HttpServerConfig)
    storage: VoteStorageConfig = field(default_factory=VoteStorageConfig)
    vote_sites: ServiceTokenTable = field(default_factory=ServiceTokenTable)

    @property
    def v2_active(self) -> bool:
        """V2 is only usable when it's switched on *and* a site has a token."""
        return self.protocols.v2_enabled and self.vote_sites.v2_enabled


def load_config(path: Optional[str]) -> VotifierConfig:
    """Load and validate a config file. path=None gives the defaults."""
    if path is None:
        return apply_env_overrides(parse_config({}))

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    with config_path.open("r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a JSON object")

    return apply_env_overrides(parse_config(raw))


def parse_config(raw: Dict[str, Any]) -> VotifierConfig:
    defaults = VotifierConfig()

    protocols = _section(raw, "protocols")
    socket = _section(raw, "socket")
    http = _section(raw, "http")
    storage = _section(raw, "storage")

    config = VotifierConfig(
        debug=_bool(raw, "debug", defaults.debug),
        key_path=_str(raw, "keyPath", defaults.key_path),
        data_dir=_str(raw, "dataDir", defaults.data_dir),
        vote_expiry_hours=_int(raw, "voteExpiryInterval", defaults.vote_expiry_hours),
        protocols=ProtocolConfig(
            v1_enabled=_bool(protocols, "v1Enabled", True),
            v2_enabled=_bool(protocols, "v2Enabled", True),
        ),
        socket=SocketConfig(
            enabled=_bool(socket, "enabled", SocketConfig.enabled),
            host=_str(socket, "host", SocketConfig.host),
            port=_int(socket, "port", SocketConfig.port),
        ),
        http=HttpServerConfig(
            enabled=_bool(http, "enabled", HttpServerConfig.enabled),
            host=_str(http, "host", HttpServerConfig.host),
            port=_int(http, "port", HttpServerConfig.port),
            context_path=_str(http, "contextPath", HttpServerConfig.context_path),
        ),
        storage=VoteStorageConfig(
            type=_str(storage, "type", VoteStorageConfig.type).lower(),
            file_path=_str(storage, "filePath", VoteStorageConfig.file_path),
            cleanup_interval_hours=_int(storage, "cleanupIntervalHours", VoteStorageConfig.cleanup_interval_hours),
        ),
        vote_sites=_tokens(raw.get("voteSites")),
    )
    validate_config(config)
    return config


def validate_config(config: VotifierConfig) -> None:
    for name, port in (("socket", config.socket.port), ("http", config.http.port)):
        if not 0 < port <= 65535:
            raise ConfigError(f"{name}.port must be between 1 and 65535, got {port}")

    if config.storage.type not in STORAGE_TYPES:
        raise ConfigError(
            f"Unknown storage type: {config.storage.type}. Supported types: {', '.join(STORAGE_TYPES)}"
        )
    if config.storage.cleanup_interval_hours <= 0:
        raise ConfigError("storage.cleanupIntervalHours must be positive")
    if config.vote_expiry_hours <= 0:
        raise ConfigError("voteExpiryInterval must be positive")
    if not config.http.context_path.startswith("/"):
        raise ConfigError("http.contextPath must start with '/'")


def apply_env_overrides(config: VotifierConfig) -> VotifierConfig:
    key_path = os.environ.get("VOTIFIER_KEY_PATH")
    debug = os.environ.get("VOTIFIER_DEBUG")
    if key_path:
        config = replace(config, key_path=key_path)
    if debug is not None and debug != "":
        config = replace(config, debug=debug.strip().lower() in ("1", "true", "yes", "on"))
    return config


# -------------------------
# Small typed getters
# -------------------------

def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be an object")
    return value


def _bool(raw: Dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false")
    return value


def _int(raw: Dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{key}' must be an integer")
    return value


def _str(raw: Dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' must be a string")
    return value


def _tokens(value: Any) -> ServiceTokenTable:
    if value is None:
        return ServiceTokenTable()
    if not isinstance(value, dict):
        raise ConfigError("'voteSites' must be an object of service name -> token")
    for service, token in value.items():
        if not isinstance(token, str) or not token:
            raise ConfigError(f"Token for vote site '{service}' must be a non-empty string")
    return ServiceTokenTable(value)
