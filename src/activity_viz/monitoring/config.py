"""Configuration for the activity streaming service.

This module defines the configuration dataclass that controls the poll loop,
liveness probing, the listening socket and logging. Values come from the
defaults below, the environment, or an optional YAML file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_HEARTBEAT_INTERVAL_MS = 30000
DEFAULT_PORT = 3503


@dataclass
class StreamerConfig:
    """Configuration for the activity streaming server.

    Attributes:
        data_dir: Root of the on-disk agent data (default: ~/.openclaw).
        poll_interval_ms: Milliseconds between snapshot polls (default: 2000).
        heartbeat_interval_ms: Milliseconds between liveness probes (default: 30000).
        host: Interface to bind (default: 0.0.0.0).
        port: Port to listen on (default: 3503).
        max_missed_probes: Consecutive unanswered probes before eviction (default: 2).
        send_queue_size: Per-connection outbound queue bound (default: 1000).
        send_timeout_seconds: Time allowed for one frame send (default: 10).
        log_dir: Directory for the JSON log file.
        log_level: Console log level name (default: INFO).
    """

    data_dir: str = "~/.openclaw"
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    heartbeat_interval_ms: int = DEFAULT_HEARTBEAT_INTERVAL_MS
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    max_missed_probes: int = 2
    send_queue_size: int = 1000
    send_timeout_seconds: float = 10.0
    log_dir: str = "/tmp/agent_activity_viz/logs"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.heartbeat_interval_ms <= 0:
            raise ValueError(
                f"heartbeat_interval_ms must be positive, got {self.heartbeat_interval_ms}"
            )
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if self.max_missed_probes < 1:
            raise ValueError("max_missed_probes must be at least 1")
        if self.send_queue_size < 1:
            raise ValueError("send_queue_size must be at least 1")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000

    @property
    def heartbeat_interval(self) -> float:
        """Heartbeat interval in seconds."""
        return self.heartbeat_interval_ms / 1000

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> StreamerConfig:
        """Build a configuration from environment variables.

        Recognised variables: POLL_INTERVAL_MS, PORT, HOST, OPENCLAW_DIR,
        HEARTBEAT_INTERVAL_MS, LOG_DIR, LOG_LEVEL. When AGENT_VIZ_CONFIG names
        a YAML file, it is loaded first and the environment overrides it.

        Raises:
            ValueError: If a variable cannot be parsed or a value is invalid.
        """
        env = os.environ if environ is None else environ

        values: dict[str, Any] = {}
        config_file = env.get("AGENT_VIZ_CONFIG")
        if config_file:
            values.update(_load_yaml_values(Path(config_file)))

        env_map = {
            "OPENCLAW_DIR": ("data_dir", str),
            "POLL_INTERVAL_MS": ("poll_interval_ms", int),
            "HEARTBEAT_INTERVAL_MS": ("heartbeat_interval_ms", int),
            "HOST": ("host", str),
            "PORT": ("port", int),
            "LOG_DIR": ("log_dir", str),
            "LOG_LEVEL": ("log_level", str),
        }
        for var, (name, convert) in env_map.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[name] = convert(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {var}: {raw!r}") from e

        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> StreamerConfig:
        """Load a configuration from a YAML mapping of field names to values.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the YAML is invalid or names unknown settings.
        """
        return cls(**_load_yaml_values(Path(path)))


def _load_yaml_values(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse configuration YAML: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")

    known = {f.name for f in fields(StreamerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys in {path}: {', '.join(unknown)}")

    logger.debug(f"Loaded configuration from {path}")
    return data
