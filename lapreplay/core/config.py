# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
lapreplay Configuration System

Centralized configuration management supporting:
- Environment variables (LAPREPLAY_*)
- Config files (~/.lapreplay/config.yaml, ./.lapreplay.yaml)
- Programmatic defaults
- Pydantic validation
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError
from .models import RemoteTargetSource

logger = logging.getLogger("lapreplay.config")


# ============================================================================
# Configuration Models
# ============================================================================


class ConnectionConfig(BaseModel):
    """Mixer connection settings"""

    host: str = Field(default="localhost", description="obs-websocket host")
    port: int = Field(default=4455, description="obs-websocket port", ge=1, le=65535)
    password: Optional[str] = Field(default=None, description="obs-websocket password")
    request_timeout_seconds: float = Field(
        default=10.0, description="Per-request response timeout", gt=0
    )

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"


class RecorderConfig(BaseModel):
    """Lap capture and buffer autosave settings"""

    max_replay_seconds: int = Field(
        default=300, description="Replay buffer length configured in the mixer", ge=1
    )
    lap_duration_ms: int = Field(
        default=3000, description="Look-back window attached to each lap", ge=0
    )
    limit_margin_ms: int = Field(
        default=5000, description="Force a save this long before the buffer fills", ge=0
    )
    limit_check_interval_ms: int = Field(
        default=100, description="Autosave deadline check interval", ge=1
    )
    auto_save: bool = Field(default=True, description="Force a save near the limit")
    stash_policy: Literal["overwrite", "reject"] = Field(
        default="overwrite",
        description="What save() does while a previous save is unacknowledged",
    )

    @property
    def max_replay_ms(self) -> int:
        return self.max_replay_seconds * 1000


class RetryPolicy(BaseModel):
    """Fixed-interval polling budget"""

    attempts: int = Field(ge=1)
    interval_ms: int = Field(ge=0)


class SyncConfig(BaseModel):
    """Convergence budgets for the remote media source"""

    load_poll: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(attempts=10, interval_ms=200)
    )
    pause_poll: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(attempts=20, interval_ms=80)
    )
    seek_verify: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(attempts=10, interval_ms=50)
    )
    scene_check: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(attempts=5, interval_ms=20)
    )
    transition_timeout_ms: Optional[int] = Field(
        default=None, description="Give up waiting for transition events", ge=0
    )


class TransitionInOptions(BaseModel):
    """How playback start is choreographed with the scene transition"""

    auto_transition: bool = True
    play_before_transition: bool = True
    transition_point_ms: Optional[int] = Field(default=2000, ge=0)


class TransitionOutOptions(BaseModel):
    """How playback end hands the program back"""

    auto_transition: bool = True
    scene_name: str = Field(default="Game", description="Scene restored after playback")
    keep_playing_during_transition: bool = False
    transition_point_ms: Optional[int] = Field(default=None, ge=0)


class AdapterOptions(BaseModel):
    """Transition coordination for one remote media adapter"""

    model_config = ConfigDict(populate_by_name=True)

    in_: TransitionInOptions = Field(default_factory=TransitionInOptions, alias="in")
    out: TransitionOutOptions = Field(default_factory=TransitionOutOptions)


class SourceConfig(BaseModel):
    """The media source replays are played through"""

    scene_name: str
    item_name: str
    scene_item_id: Optional[int] = None

    def to_target(self) -> Optional[RemoteTargetSource]:
        if self.scene_item_id is None:
            return None
        return RemoteTargetSource(
            scene_name=self.scene_name,
            item_name=self.item_name,
            scene_item_id=self.scene_item_id,
        )


class ObservabilityConfig(BaseModel):
    """Logging configuration"""

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper


class ReplayConfig(BaseModel):
    """Complete lapreplay configuration"""

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    transition: AdapterOptions = Field(default_factory=AdapterOptions)
    source: Optional[SourceConfig] = None
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# ============================================================================
# Configuration Loader
# ============================================================================


class ConfigLoader:
    """Load configuration from multiple sources"""

    @staticmethod
    def load_from_env() -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        host = os.getenv("LAPREPLAY_HOST")
        if host:
            config.setdefault("connection", {})["host"] = host

        port = os.getenv("LAPREPLAY_PORT")
        if port:
            config.setdefault("connection", {})["port"] = int(port)

        password = os.getenv("LAPREPLAY_PASSWORD")
        if password:
            config.setdefault("connection", {})["password"] = password

        max_replay = os.getenv("LAPREPLAY_MAX_REPLAY_SECONDS")
        if max_replay:
            config.setdefault("recorder", {})["max_replay_seconds"] = int(max_replay)

        auto_save = os.getenv("LAPREPLAY_AUTO_SAVE")
        if auto_save:
            config.setdefault("recorder", {})["auto_save"] = auto_save.lower() == "true"

        fallback_scene = os.getenv("LAPREPLAY_FALLBACK_SCENE")
        if fallback_scene:
            config.setdefault("transition", {}).setdefault("out", {})[
                "scene_name"
            ] = fallback_scene

        log_level = os.getenv("LAPREPLAY_LOG_LEVEL")
        if log_level:
            config.setdefault("observability", {})["log_level"] = log_level

        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {file_path}", cause=e)

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


# ============================================================================
# Global Configuration Instance
# ============================================================================

_config: Optional[ReplayConfig] = None


def get_config() -> ReplayConfig:
    """
    Get global lapreplay configuration

    Configuration is loaded from (in order of precedence):
    1. Environment variables (LAPREPLAY_*)
    2. .lapreplay.yaml in current directory
    3. ~/.lapreplay/config.yaml
    4. Default values
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def load_config(
    config_file: Optional[Path] = None, env_override: bool = True
) -> ReplayConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config

    Returns:
        ReplayConfig instance

    Raises:
        ConfigError: If a file cannot be parsed or the merged result is invalid
    """
    configs = []

    default_locations = [
        Path.home() / ".lapreplay" / "config.yaml",
        Path.cwd() / ".lapreplay.yaml",
    ]

    for location in default_locations:
        if location.exists():
            file_config = ConfigLoader.load_from_file(location)
            if file_config:
                configs.append(file_config)
                logger.debug(f"Loaded config from {location}")

    if config_file:
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        file_config = ConfigLoader.load_from_file(config_file)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    try:
        return ReplayConfig(**merged)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(f"{field}: {error['msg']}")
        raise ConfigError(
            f"Configuration validation failed: {'; '.join(errors)}",
            errors=errors,
            cause=e,
        )


def reload_config() -> ReplayConfig:
    """Reload global configuration"""
    global _config
    _config = load_config()
    logger.info("Configuration reloaded")
    return _config
