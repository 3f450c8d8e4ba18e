"""Configuration loader and settings helpers for Feed Courier."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic import (
    ValidationError as PydanticValidationError,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Upstream API ceiling for the posts endpoint ``limit`` parameter.
MAX_POSTS_PER_REQUEST = 20


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Read one YAML mapping from ``config_path``.

    An empty file yields an empty mapping.

    Raises:
        ConfigurationError: If the file is missing, unparsable or not a mapping
    """
    path = Path(config_path)
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return loaded


class RelayDefinition(BaseModel):
    """A public forwarding relay used to reach the upstream API."""

    model_config = ConfigDict(extra="forbid")

    name: str
    template: str = Field(..., description="URL template containing a '{url}' placeholder")
    unwrap: str | None = Field(
        default=None,
        description="Wrapper key holding the upstream body as a JSON string",
    )
    encode_target: bool = True

    @field_validator("template")
    @classmethod
    def _require_placeholder(cls, value: str) -> str:
        if "{url}" not in value:
            raise ValueError("relay template must contain a '{url}' placeholder")
        return value


DEFAULT_RELAYS: tuple[RelayDefinition, ...] = (
    RelayDefinition(
        name="allorigins-get",
        template="https://api.allorigins.win/get?url={url}",
        unwrap="contents",
    ),
    RelayDefinition(
        name="codetabs",
        template="https://api.codetabs.com/v1/proxy?quest={url}",
    ),
    RelayDefinition(
        name="corsproxy-org",
        template="https://corsproxy.org/?{url}",
    ),
)


class ServiceConfiguration(BaseModel):
    """Validated runtime configuration merged from base and profile templates."""

    version: int = Field(default=1, ge=1)
    environment: str = "development"
    relays: list[RelayDefinition] = Field(default_factory=lambda: list(DEFAULT_RELAYS))

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()

    @field_validator("relays")
    @classmethod
    def _unique_relay_names(cls, value: list[RelayDefinition]) -> list[RelayDefinition]:
        names = [relay.name for relay in value]
        if len(names) != len(set(names)):
            raise ValueError("relay names must be unique")
        if "custom" in names or "direct" in names:
            raise ValueError("relay names 'custom' and 'direct' are reserved")
        return value


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    config_profile: str | None = None
    log_level: str = "INFO"
    database_url: str | None = None
    config_dir: Path = Path("config")

    # Upstream feed API
    api_base: str = "https://api.tumblr.com/v2"
    api_key: str | None = None
    page_size: int = Field(default=MAX_POSTS_PER_REQUEST, ge=1, le=MAX_POSTS_PER_REQUEST)
    request_timeout_seconds: float = Field(default=15.0, gt=0, le=300)
    blog_info_cache_seconds: int = Field(default=300, ge=0)
    enable_direct_relay: bool = False

    # Pagination pacing and safety limits
    fetch_delay_seconds: float = Field(default=0.5, ge=0)
    backfill_page_delay_seconds: float = Field(default=1.0, ge=0)
    page_retry_delay_seconds: float = Field(default=2.0, ge=0)
    max_consecutive_page_failures: int = Field(default=2, ge=1)
    incremental_item_limit: int = Field(default=200, ge=1)
    backfill_item_limit: int = Field(default=500, ge=1)
    default_lookback_hours: int = Field(default=24, ge=1)
    default_history_days: int = Field(default=30, ge=1)

    # Webhook delivery
    delivery_delay_seconds: float = Field(default=1.0, ge=0)
    default_retry_after_seconds: float = Field(default=5.0, ge=0)

    # Self-hosted relay endpoints
    relay_upstream_host: str = "api.tumblr.com"
    lookup_secret: str | None = None
    lookup_database_url: str | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("config_dir")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("api_base")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("api_key", "lookup_secret", "lookup_database_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("config_profile", mode="before")
    @classmethod
    def _normalize_config_profile(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("config_profile must be a non-empty string if provided")
        return value.strip().lower()


def _merge_layers(*layers: dict[str, Any]) -> dict[str, Any]:
    """Merge mappings left to right, recursing into nested mappings. Inputs are not mutated."""

    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged[key] = _merge_layers(current, value)
            else:
                merged[key] = value
    return merged


@lru_cache(maxsize=8)
def _load_service_configuration_cached(config_dir: str, profile: str) -> ServiceConfiguration:
    """Load and cache the service configuration for a given profile."""

    directory = Path(config_dir)
    layers: list[dict[str, Any]] = []
    for filename in ("settings.base.yaml", f"settings.{profile}.yaml"):
        path = directory / filename
        if path.exists():
            layers.append(load_yaml_config(path))
        else:
            logger.debug("No configuration file at '%s'; skipping", path)

    merged = _merge_layers(*layers)
    merged.setdefault("environment", profile)

    try:
        return ServiceConfiguration.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigurationError(
            "Invalid configuration template for profile "
            f"'{profile}': {exc}"
        ) from exc


def get_service_configuration(
    settings: GlobalSettings | None = None,
    *,
    reload: bool = False,
) -> ServiceConfiguration:
    """Return the merged service configuration for the active profile."""

    if settings is None:
        settings = get_settings()

    profile = settings.config_profile or settings.environment

    if reload:
        _load_service_configuration_cached.cache_clear()

    return _load_service_configuration_cached(str(settings.config_dir), profile.lower())


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    try:
        return GlobalSettings()
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Configuration validation failed: {exc}") from exc


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()


def clear_settings_cache() -> None:
    """Drop cached settings and service configuration so the next read re-parses them."""

    _get_settings_cached.cache_clear()
    _load_service_configuration_cached.cache_clear()
