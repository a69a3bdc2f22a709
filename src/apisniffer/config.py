"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
optionally seeded from a config.yaml file.
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get("APISNIFFER_CONFIG_FILE")

    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",
            "apisniffer.yaml",
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class StoreSettings(BaseSettings):
    """In-memory ring buffer and masking configuration."""

    max_logs: int = Field(default=1000, description="Maximum entries kept in memory")
    mask_fields: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Field names to mask in addition to the built-in defaults",
    )
    top_endpoints: int = Field(default=10, description="Endpoints listed in statistics")

    @field_validator("mask_fields", mode="before")
    def parse_mask_fields(cls, v: Any) -> List[Any]:
        """Accept a JSON list or a comma separated string."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(",") if item.strip()]
            v = parsed if isinstance(parsed, list) else []
        if isinstance(v, (list, tuple, set)):
            # Non-string entries are dropped rather than rejected
            return [item for item in v if isinstance(item, str)]
        return []

    model_config = SettingsConfigDict(env_prefix="APISNIFFER_STORE_")


class PersistenceSettings(BaseSettings):
    """File persistence and write coalescing configuration."""

    enabled: bool = Field(default=True, description="Persist the buffer to a file")
    file_path: Path = Field(
        default=Path("./api-sniffer-logs.json"),
        description="Destination JSON file",
    )
    write_interval_ms: int = Field(
        default=1000, description="Maximum staleness of the persisted file"
    )
    write_batch_size: int = Field(
        default=50, description="Unflushed entries that force an immediate write"
    )
    write_debounce_ms: int = Field(
        default=100, description="Quiet period after the last entry before writing"
    )
    refresh_on_startup: bool = Field(
        default=True, description="Load the persisted file when the store starts"
    )

    model_config = SettingsConfigDict(env_prefix="APISNIFFER_PERSISTENCE_")


class CaptureSettings(BaseSettings):
    """Capture middleware configuration."""

    log_level: Literal["minimal", "headers-only", "full"] = Field(
        default="headers-only", description="How much of each exchange to record"
    )
    max_body_bytes: int = Field(
        default=65536, description="Bodies larger than this are not recorded"
    )
    route_prefix: str = Field(
        default="/_sniffer", description="Dashboard API prefix, never captured"
    )

    model_config = SettingsConfigDict(env_prefix="APISNIFFER_CAPTURE_")


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=3333, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    store: StoreSettings = Field(default_factory=StoreSettings)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)

    model_config = SettingsConfigDict(env_prefix="APISNIFFER_", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "APISNIFFER_HOST",
        ("server", "port"): "APISNIFFER_PORT",
        ("server", "debug"): "APISNIFFER_DEBUG",
        ("server", "log_level"): "APISNIFFER_LOG_LEVEL",
        ("store", "max_logs"): "APISNIFFER_STORE_MAX_LOGS",
        ("store", "top_endpoints"): "APISNIFFER_STORE_TOP_ENDPOINTS",
        ("persistence", "enabled"): "APISNIFFER_PERSISTENCE_ENABLED",
        ("persistence", "file_path"): "APISNIFFER_PERSISTENCE_FILE_PATH",
        ("persistence", "write_interval_ms"): "APISNIFFER_PERSISTENCE_WRITE_INTERVAL_MS",
        ("persistence", "write_batch_size"): "APISNIFFER_PERSISTENCE_WRITE_BATCH_SIZE",
        ("persistence", "write_debounce_ms"): "APISNIFFER_PERSISTENCE_WRITE_DEBOUNCE_MS",
        ("persistence", "refresh_on_startup"): "APISNIFFER_PERSISTENCE_REFRESH_ON_STARTUP",
        ("capture", "log_level"): "APISNIFFER_CAPTURE_LOG_LEVEL",
        ("capture", "max_body_bytes"): "APISNIFFER_CAPTURE_MAX_BODY_BYTES",
        ("capture", "route_prefix"): "APISNIFFER_CAPTURE_ROUTE_PREFIX",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)

    # Lists travel through the environment as JSON
    if "APISNIFFER_STORE_MASK_FIELDS" not in os.environ:
        mask_fields = (config_data.get("store") or {}).get("mask_fields")
        if mask_fields:
            os.environ["APISNIFFER_STORE_MASK_FIELDS"] = json.dumps(mask_fields)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
