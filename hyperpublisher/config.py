"""Configuration loading for hyperpublisher."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class TimeoutsConfig:
    """Bounds on each waiting phase of a session, in seconds.

    None (or 0 in YAML / env) means wait forever.
    """

    peer_seconds: float | None = 30.0
    update_seconds: float | None = 10.0
    ack_seconds: float | None = 60.0


@dataclass
class StorageConfig:
    """Where the publisher keeps its own copy of the logs."""

    db_path: str = ":memory:"


@dataclass
class MirrorConfig:
    """In-process mirror peer standing in for a pinning service."""

    enabled: bool = False
    db_path: str = "~/.hyperpublisher/mirror.db"


@dataclass
class PinningConfig:
    """Remote pinning service to register newly created drives with."""

    url: str = ""
    name: str = ""
    token: str = ""
    max_retries: int = 3
    timeout: float = 30.0


@dataclass
class PublishConfig:
    compare_content: bool = True
    ignore: list[str] = field(default_factory=list)
    delete: bool = False
    min_metadata_length: int = 1


@dataclass
class Config:
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)
    pinning: PinningConfig = field(default_factory=PinningConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with HYPERPUB_ prefix."""
    return os.environ.get(f"HYPERPUB_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _parse_timeout(value: Any) -> float | None:
    """Timeouts of None or 0 disable the bound."""
    if value is None:
        return None
    value = float(value)
    return value if value > 0 else None


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Timeout overrides
    if peer := _get_env("PEER_TIMEOUT"):
        config.timeouts.peer_seconds = _parse_timeout(peer)
    if update := _get_env("UPDATE_TIMEOUT"):
        config.timeouts.update_seconds = _parse_timeout(update)
    if ack := _get_env("ACK_TIMEOUT"):
        config.timeouts.ack_seconds = _parse_timeout(ack)

    # Storage overrides
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Mirror overrides
    if mirror_enabled := _get_env("MIRROR_ENABLED"):
        config.mirror.enabled = _parse_bool(mirror_enabled)
    if mirror_db := _get_env("MIRROR_DB_PATH"):
        config.mirror.db_path = mirror_db

    # Pinning overrides
    if pinning_url := _get_env("PINNING_URL"):
        config.pinning.url = pinning_url
    if pinning_token := _get_env("PINNING_TOKEN"):
        config.pinning.token = pinning_token

    # Publish overrides
    if ignore := _get_env("IGNORE"):
        config.publish.ignore = [p for p in ignore.split(",") if p]
    if compare := _get_env("COMPARE_CONTENT"):
        config.publish.compare_content = _parse_bool(compare)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse timeouts
            if "timeouts" in data:
                timeouts_data = data["timeouts"]
                config.timeouts = TimeoutsConfig(
                    peer_seconds=_parse_timeout(
                        timeouts_data.get("peer_seconds", config.timeouts.peer_seconds)
                    ),
                    update_seconds=_parse_timeout(
                        timeouts_data.get("update_seconds", config.timeouts.update_seconds)
                    ),
                    ack_seconds=_parse_timeout(
                        timeouts_data.get("ack_seconds", config.timeouts.ack_seconds)
                    ),
                )

            # Parse storage config
            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path)
                )

            # Parse mirror config
            if "mirror" in data:
                mirror_data = data["mirror"]
                config.mirror = MirrorConfig(
                    enabled=mirror_data.get("enabled", config.mirror.enabled),
                    db_path=mirror_data.get("db_path", config.mirror.db_path),
                )

            # Parse pinning config
            if "pinning" in data:
                pinning_data = data["pinning"]
                config.pinning = PinningConfig(
                    url=pinning_data.get("url", config.pinning.url),
                    name=pinning_data.get("name", config.pinning.name),
                    token=pinning_data.get("token", config.pinning.token),
                    max_retries=pinning_data.get(
                        "max_retries", config.pinning.max_retries
                    ),
                    timeout=pinning_data.get("timeout", config.pinning.timeout),
                )

            # Parse publish config
            if "publish" in data:
                publish_data = data["publish"]
                config.publish = PublishConfig(
                    compare_content=publish_data.get(
                        "compare_content", config.publish.compare_content
                    ),
                    ignore=list(publish_data.get("ignore", config.publish.ignore) or []),
                    delete=publish_data.get("delete", config.publish.delete),
                    min_metadata_length=publish_data.get(
                        "min_metadata_length", config.publish.min_metadata_length
                    ),
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)
