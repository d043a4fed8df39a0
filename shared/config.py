"""
Client configuration.

Values come from the built-in defaults, then an optional YAML file, then the
environment. Example ``~/.relaychat/config.yaml``::

    host: chat.example.org
    port: 54038
    # url overrides host/port entirely
    url: wss://chat.example.org/ws
    connect_timeout: 5
    message_max_length: 500
    demo_users: [Demo User 1, Demo User 2]
    demo_script:
      - {author: Demo User 1, text: "Welcome!", delay_ms: 2000}
"""

from __future__ import annotations
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".relaychat" / "config.yaml"

ENV_SERVER = "RELAYCHAT_SERVER"
ENV_CONNECT_TIMEOUT = "RELAYCHAT_CONNECT_TIMEOUT"


class ConfigError(Exception):
    """Raised when a configuration file or override holds an unusable value."""
    pass


@dataclass(frozen=True)
class ScriptedMessage:
    author: str
    text: str
    delay_ms: int


DEFAULT_DEMO_USERS: Tuple[str, ...] = ("Demo User 1", "Demo User 2")
DEFAULT_DEMO_SCRIPT: Tuple[ScriptedMessage, ...] = (
    ScriptedMessage("Demo User 1", "Welcome to the chat room! 👋", 2000),
    ScriptedMessage("Demo User 2", "This chat client falls back to demo mode when the relay is offline", 4000),
)


@dataclass(frozen=True)
class ClientConfig:
    host: str = "localhost"
    port: int = 54038
    url: Optional[str] = None
    connect_timeout: float = 5.0
    message_max_length: int = 500
    demo_users: Tuple[str, ...] = DEFAULT_DEMO_USERS
    demo_script: Tuple[ScriptedMessage, ...] = DEFAULT_DEMO_SCRIPT

    @property
    def relay_url(self) -> str:
        """Full WebSocket URL of the relay; ``url`` wins over host/port."""
        if self.url:
            return self.url
        return f"ws://{self.host}:{self.port}"


def _parse_script(entries: Any) -> Tuple[ScriptedMessage, ...]:
    if not isinstance(entries, list):
        raise ConfigError("'demo_script' must be a list")
    script: List[ScriptedMessage] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError("'demo_script' entries must be mappings")
        author = entry.get("author")
        text = entry.get("text")
        delay_ms = entry.get("delay_ms")
        if not isinstance(author, str) or not isinstance(text, str):
            raise ConfigError("'demo_script' entries need string 'author' and 'text'")
        if not isinstance(delay_ms, int) or isinstance(delay_ms, bool) or delay_ms < 0:
            raise ConfigError("'demo_script' entries need a non-negative integer 'delay_ms'")
        script.append(ScriptedMessage(author, text, delay_ms))
    # playback order is delay order
    return tuple(sorted(script, key=lambda m: m.delay_ms))


def _from_mapping(base: ClientConfig, data: Dict[str, Any]) -> ClientConfig:
    changes: Dict[str, Any] = {}

    if "host" in data:
        if not isinstance(data["host"], str) or not data["host"]:
            raise ConfigError("'host' must be a non-empty string")
        changes["host"] = data["host"]
    if "port" in data:
        port = data["port"]
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port <= 65535:
            raise ConfigError("'port' must be an integer between 1 and 65535")
        changes["port"] = port
    if "url" in data:
        if data["url"] is not None and not isinstance(data["url"], str):
            raise ConfigError("'url' must be a string")
        changes["url"] = data["url"] or None
    if "connect_timeout" in data:
        timeout = data["connect_timeout"]
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
            raise ConfigError("'connect_timeout' must be a positive number")
        changes["connect_timeout"] = float(timeout)
    if "message_max_length" in data:
        limit = data["message_max_length"]
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            raise ConfigError("'message_max_length' must be a positive integer")
        changes["message_max_length"] = limit
    if "demo_users" in data:
        users = data["demo_users"]
        if not isinstance(users, list) or not all(isinstance(u, str) for u in users):
            raise ConfigError("'demo_users' must be a list of strings")
        changes["demo_users"] = tuple(users)
    if "demo_script" in data:
        changes["demo_script"] = _parse_script(data["demo_script"])

    unknown = set(data) - {"host", "port", "url", "connect_timeout", "message_max_length",
                           "demo_users", "demo_script"}
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    return replace(base, **changes)


def _apply_env(config: ClientConfig) -> ClientConfig:
    server = os.getenv(ENV_SERVER)
    if server:
        config = replace(config, url=server)

    timeout = os.getenv(ENV_CONNECT_TIMEOUT)
    if timeout:
        try:
            value = float(timeout)
        except ValueError:
            raise ConfigError(f"{ENV_CONNECT_TIMEOUT} must be a number, got {timeout!r}")
        if value <= 0:
            raise ConfigError(f"{ENV_CONNECT_TIMEOUT} must be positive")
        config = replace(config, connect_timeout=value)

    return config


def load_config(path: Optional[Path] = None) -> ClientConfig:
    """Load configuration from YAML (if present) and the environment."""
    path = path or DEFAULT_CONFIG_PATH
    config = ClientConfig()

    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")
        config = _from_mapping(config, data)
        logger.debug("Loaded config from %s", path)
    else:
        logger.debug("No config file at %s; using defaults", path)

    return _apply_env(config)
