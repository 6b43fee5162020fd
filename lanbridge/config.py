"""
Configuration Management

Handles loading the bridge configuration from a JSON file and from
environment variables (optionally via a .env file).

The result is an immutable AddressConfig that is built once at startup
and handed to every component. Nothing in the relay core mutates it;
`with_overrides` returns a new instance instead.
"""

import os
import json
import random
import dataclasses
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv


# Default Minecraft Bedrock port (discovery and game traffic)
BEDROCK_PORT = 19132

ENV_PREFIX = 'LANBRIDGE_'

ANNOUNCE_FORMATS = ('structured', 'simple')

# JSON config key -> AddressConfig attribute
# The first block is the legacy bridge schema.
FILE_KEYS = {
    'local_address': 'bind_address',
    'target_server_ip': 'remote_host',
    'target_server_port': 'remote_port',
    'broadcast_interval': 'broadcast_interval',
    'server_name': 'display_name',
    'debug': 'debug',

    'local_port': 'bind_port',
    'broadcast_address': 'broadcast_address',
    'broadcast_port': 'broadcast_port',
    'announce_format': 'announce_format',
    'answer_probes': 'answer_probes',
    'relay_timeout': 'relay_timeout',
    'connect_timeout': 'connect_timeout',
    'max_sessions': 'max_sessions',
    'subtitle': 'subtitle',
    'game_mode': 'game_mode',
    'protocol_version': 'protocol_version',
    'game_version': 'game_version',
    'online_players': 'online_players',
    'max_players': 'max_players',
    'server_guid': 'server_guid',
    'api_port': 'api_port',
    'log_level': 'log_level',
}


class ConfigError(ValueError):
    """Raised when a configuration value is missing or out of range."""


def _generate_guid() -> int:
    return random.getrandbits(63)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class AddressConfig:
    """
    LAN bridge configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (LANBRIDGE_*)
    2. Config file (lanbridge.json)
    3. Default values
    """
    # Local listeners (UDP and TCP share the address and port)
    bind_address: str = '0.0.0.0'
    bind_port: int = BEDROCK_PORT

    # Remote endpoint
    remote_host: str = '127.0.0.1'
    remote_port: int = BEDROCK_PORT

    # Announcer
    broadcast_interval: int = 5
    broadcast_address: str = '255.255.255.255'
    broadcast_port: int = BEDROCK_PORT
    display_name: str = 'Remote Bedrock'
    announce_format: str = 'structured'
    answer_probes: bool = True

    # Announcement descriptor (structured layout only)
    subtitle: str = 'Bedrock level'
    game_mode: str = 'Survival'
    protocol_version: int = 594
    game_version: str = '1.20.10'
    online_players: int = 0
    max_players: int = 10
    server_guid: int = field(default_factory=_generate_guid)

    # Relay timing (seconds)
    relay_timeout: float = 5.0
    connect_timeout: float = 5.0

    # 0 means unbounded
    max_sessions: int = 0

    # Status API
    api_port: int = 8080

    # Logging
    debug: bool = False
    log_level: str = 'INFO'

    def __post_init__(self):
        self._check_types()

        for name in ('remote_port', 'broadcast_port', 'api_port'):
            port = getattr(self, name)
            if not isinstance(port, int) or not 1 <= port <= 65535:
                raise ConfigError(f"{name} must be between 1 and 65535, got {port!r}")

        # 0 lets the OS pick a port
        if not isinstance(self.bind_port, int) or not 0 <= self.bind_port <= 65535:
            raise ConfigError(f"bind_port must be between 0 and 65535, got {self.bind_port!r}")

        if not self.remote_host:
            raise ConfigError("remote_host must not be empty")
        if not isinstance(self.broadcast_interval, int) or self.broadcast_interval <= 0:
            raise ConfigError(
                f"broadcast_interval must be a positive integer, got {self.broadcast_interval!r}"
            )
        if self.relay_timeout <= 0 or self.connect_timeout <= 0:
            raise ConfigError("relay_timeout and connect_timeout must be positive")
        if self.max_sessions < 0:
            raise ConfigError(f"max_sessions must be >= 0, got {self.max_sessions}")
        if self.announce_format not in ANNOUNCE_FORMATS:
            raise ConfigError(
                f"announce_format must be one of {', '.join(ANNOUNCE_FORMATS)}, "
                f"got {self.announce_format!r}"
            )
        if not 0 <= self.server_guid < 2 ** 64:
            raise ConfigError("server_guid must fit in 64 bits")

    def _check_types(self):
        # JSON gives us whatever the user typed; bool is an int subclass
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.type is float:
                valid = isinstance(value, (int, float)) and not isinstance(value, bool)
            elif f.type is int:
                valid = isinstance(value, int) and not isinstance(value, bool)
            else:
                valid = isinstance(value, f.type)

            if not valid:
                raise ConfigError(
                    f"{f.name} must be of type {f.type.__name__}, got {value!r}"
                )

    @property
    def remote_address(self):
        return (self.remote_host, self.remote_port)

    @property
    def bind(self):
        return (self.bind_address, self.bind_port)

    @property
    def effective_log_level(self) -> str:
        return 'DEBUG' if self.debug else self.log_level.upper()

    def with_overrides(self, **overrides) -> 'AddressConfig':
        """Return a copy with the given non-None values replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        try:
            return dataclasses.replace(self, **changes)
        except TypeError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AddressConfig':
        """Build a config from a dict using the JSON file schema."""
        kwargs = {}
        for key, value in data.items():
            attr = FILE_KEYS.get(key)
            if attr is None:
                raise ConfigError(f"Unknown configuration key: {key}")
            kwargs[attr] = value
        return cls(**kwargs)

    @classmethod
    def from_env(cls, base: Optional['AddressConfig'] = None) -> 'AddressConfig':
        """
        Load configuration from environment variables.

        Each JSON key maps to LANBRIDGE_<KEY>, e.g. LANBRIDGE_TARGET_SERVER_IP.
        Values not present in the environment are taken from `base`.
        """
        load_dotenv()

        config = base or cls()
        types = {f.name: f.type for f in dataclasses.fields(cls)}

        overrides = {}
        for key, attr in FILE_KEYS.items():
            raw = os.getenv(ENV_PREFIX + key.upper())
            if raw is None:
                continue

            try:
                if types[attr] is bool:
                    overrides[attr] = _parse_bool(raw)
                elif types[attr] in (int, float):
                    overrides[attr] = types[attr](raw)
                else:
                    overrides[attr] = raw
            except ValueError:
                raise ConfigError(
                    f"Invalid value for {ENV_PREFIX + key.upper()}: {raw!r}"
                ) from None

        return config.with_overrides(**overrides)

    @classmethod
    def from_file(cls, path: Path) -> 'AddressConfig':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a JSON object")

        return cls.from_dict(data)

    def to_dict(self) -> dict:
        """Convert to a dictionary using the JSON file schema."""
        return {key: getattr(self, attr) for key, attr in FILE_KEYS.items()}

    def public_dict(self) -> dict:
        """Values safe to expose over the status API."""
        data = self.to_dict()
        data['server_guid'] = str(self.server_guid)
        return data

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> AddressConfig:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = AddressConfig()

    if config_path and config_path.exists():
        config = AddressConfig.from_file(config_path)

    return AddressConfig.from_env(base=config)


# Example config file template
EXAMPLE_CONFIG = """
{
  "local_address": "0.0.0.0",
  "local_port": 19132,
  "target_server_ip": "play.example.net",
  "target_server_port": 19132,
  "broadcast_interval": 5,
  "server_name": "Remote Bedrock",
  "announce_format": "structured",
  "relay_timeout": 5.0,
  "max_sessions": 0,
  "debug": false
}
"""
