"""
Application configuration management for mailtrust.

This module provides configuration loading from environment variables
and configuration files, with type-safe settings classes. A Settings
instance is built once at process start and handed to each component's
constructor.
"""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .exceptions import InvalidConfigError, MissingConfigError


def _split_csv(v: Any) -> Any:
    if isinstance(v, str):
        if not v.strip():
            return []
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class EncryptionSettings(BaseSettings):
    """Secret vault configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="MAILTRUST_ENCRYPTION_",
        extra="ignore",
    )

    key: Optional[str] = Field(
        None,
        description="Vault key: 32-byte text, base64:<value>, 64 hex chars or base64",
    )


class DNSSettings(BaseSettings):
    """DNS resolver configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="DNS_",
        extra="ignore",
    )

    nameservers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Resolver addresses; empty uses the system resolver",
    )
    timeout: float = Field(default=5.0, gt=0, description="DNS query lifetime in seconds")

    @field_validator("nameservers", mode="before")
    @classmethod
    def parse_nameservers(cls, v: Any) -> list[str]:
        """Parse nameservers from comma-separated string or list."""
        return _split_csv(v)


class CloudflareSettings(BaseSettings):
    """Cloudflare API configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDFLARE_",
        extra="ignore",
    )

    api_base_url: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Cloudflare REST API base URL",
    )
    timeout: float = Field(default=15.0, gt=0, description="Request timeout in seconds")

    @field_validator("api_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate API URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")


class Route53Settings(BaseSettings):
    """AWS Route53 configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTE53_",
        extra="ignore",
    )

    default_region: str = Field(
        default="us-east-1", description="Region used when credentials omit one"
    )


class MTASettings(BaseSettings):
    """Mail-transfer-agent configuration endpoint settings."""

    model_config = SettingsConfigDict(
        env_prefix="MTA_",
        extra="ignore",
    )

    service_url: str = Field(
        default="http://localhost:8090", description="MTA configuration API base URL"
    )
    timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")

    @field_validator("service_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate service URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")


class SchedulerSettings(BaseSettings):
    """Scheduled verification settings."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Run scheduled verification")
    interval_seconds: int = Field(
        default=3600, ge=1, description="Seconds between verification runs"
    )


class UpstreamSettings(BaseSettings):
    """Upstream service health aggregation settings."""

    model_config = SettingsConfigDict(
        env_prefix="UPSTREAM_",
        extra="ignore",
    )

    services: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=lambda: {"mta": "http://localhost:8090"},
        description="Service name to base URL",
    )
    timeout: float = Field(default=5.0, gt=0, description="Per-service probe timeout")

    @field_validator("services", mode="before")
    @classmethod
    def parse_services(cls, v: Any) -> dict[str, str]:
        """Parse services from 'name=url,name=url' or a mapping."""
        if isinstance(v, str):
            services = {}
            for item in _split_csv(v):
                if "=" not in item:
                    raise ValueError(f"Expected name=url, got '{item}'")
                name, url = item.split("=", 1)
                services[name.strip()] = url.strip()
            return services
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper


class Settings(BaseSettings):
    """Main application settings aggregating all configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MAILTRUST_",
        extra="ignore",
    )

    app_name: str = Field(default="mailtrust", description="Application name")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    dns: DNSSettings = Field(default_factory=DNSSettings)
    cloudflare: CloudflareSettings = Field(default_factory=CloudflareSettings)
    route53: Route53Settings = Field(default_factory=Route53Settings)
    mta: MTASettings = Field(default_factory=MTASettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_toml(cls, path: str | Path) -> "Settings":
        """
        Load settings from a TOML configuration file.

        Args:
            path: Path to the TOML configuration file.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            MissingConfigError: If the file does not exist.
            InvalidConfigError: If the file cannot be parsed.
        """
        path = Path(path)
        if not path.exists():
            raise MissingConfigError(f"Configuration file not found: {path}")

        try:
            with open(path, "rb") as f:
                config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=f"Failed to parse TOML: {e}",
            )

        return cls._from_dict(config_data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Create settings from a dictionary.

        Args:
            data: Configuration dictionary.

        Returns:
            Settings instance.
        """
        sections = {
            "encryption": EncryptionSettings,
            "dns": DNSSettings,
            "cloudflare": CloudflareSettings,
            "route53": Route53Settings,
            "mta": MTASettings,
            "scheduler": SchedulerSettings,
            "upstream": UpstreamSettings,
            "logging": LoggingSettings,
        }
        settings_kwargs: dict[str, Any] = {}

        if "app" in data:
            settings_kwargs.update(data["app"])

        for name, settings_cls in sections.items():
            if name in data:
                settings_kwargs[name] = settings_cls(**data[name])

        return cls(**settings_kwargs)

    def validate_required(self) -> None:
        """
        Validate that all required configuration is present.

        Raises:
            MissingConfigError: If required configuration is missing.
        """
        if not self.encryption.key:
            raise MissingConfigError("MAILTRUST_ENCRYPTION_KEY")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Loads from MAILTRUST_CONFIG_FILE when it points at an existing file,
    otherwise from environment variables.

    Returns:
        Settings instance.
    """
    config_file = os.getenv("MAILTRUST_CONFIG_FILE")

    if config_file and Path(config_file).exists():
        return Settings.from_toml(config_file)
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        Fresh Settings instance.
    """
    get_settings.cache_clear()
    return get_settings()
