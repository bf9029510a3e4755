"""Configuration management for ipsync."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


DEFAULT_LISTEN_ADDRESS = ":8090"


@dataclass
class ListenerConfig:
    """Receiving peer configuration."""

    listen_address: str = DEFAULT_LISTEN_ADDRESS
    max_skew_seconds: float = 600.0  # freshness window, each direction
    action_timeout: float | None = None  # seconds, None waits forever


@dataclass
class ReporterConfig:
    """Reporting peer configuration."""

    interval: float | None = None  # seconds between reports, None reports once
    request_timeout: float = 10.0  # seconds


@dataclass
class Config:
    """ipsync configuration."""

    log_level: str = "INFO"
    log_file: str | None = None
    listener: ListenerConfig = field(default_factory=ListenerConfig)
    reporter: ReporterConfig = field(default_factory=ReporterConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "ipsync" / "config.yaml"


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict):
        return None
    return data


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if data is None:
        return Config()

    listener_data = data.get("listener") or {}
    listener_config = ListenerConfig(
        listen_address=str(
            listener_data.get("listen_address", ListenerConfig.listen_address)
        ),
        max_skew_seconds=float(
            listener_data.get("max_skew_seconds", ListenerConfig.max_skew_seconds)
        ),
        action_timeout=_optional_float(
            listener_data.get("action_timeout", ListenerConfig.action_timeout)
        ),
    )

    reporter_data = data.get("reporter") or {}
    reporter_config = ReporterConfig(
        interval=_optional_float(
            reporter_data.get("interval", ReporterConfig.interval)
        ),
        request_timeout=float(
            reporter_data.get("request_timeout", ReporterConfig.request_timeout)
        ),
    )

    return Config(
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        listener=listener_config,
        reporter=reporter_config,
    )
