"""Configuration types with environment variable support.

The tunnel credential and listener port use the bare ``CLOUDFLARED_TOKEN`` and
``PORT`` variables. Everything else can be set with the ``SUBSERVE_`` prefix.
Example: SUBSERVE_CONTENT_ROOT=/srv/sites serves content from /srv/sites.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

DEFAULT_PORT = 4545
DEFAULT_SUBDOMAIN = "www"
DEFAULT_CONTENT_ROOT = "./content"


class ServeConfig(BaseSettings):
    """Runtime configuration for the content server and its tunnel.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.port)
        print(config.content_root)
    """

    model_config = SettingsConfigDict(
        env_prefix="SUBSERVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    cloudflared_token: str = Field(
        default="",
        repr=False,
        validation_alias=AliasChoices("CLOUDFLARED_TOKEN", "cloudflared_token"),
        description="Bearer token of the named Cloudflare tunnel.",
    )
    port: int = Field(
        default=DEFAULT_PORT,
        validation_alias=AliasChoices("PORT", "port"),
        description="TCP port of the local HTTP listener.",
    )
    host: str = Field(
        default="0.0.0.0",
        description="Interface the local HTTP listener binds to.",
    )
    content_root: Path = Field(
        default=Path(DEFAULT_CONTENT_ROOT),
        description="Directory holding one folder per subdomain.",
    )
    default_subdomain: str = Field(
        default=DEFAULT_SUBDOMAIN,
        description="Subdomain served for loopback and bare-domain requests.",
    )
    cloudflared_bin: Path | None = Field(
        default=None,
        description="Path of the cloudflared binary. Defaults to a per-user install location.",
    )
    cloudflared_version: str = Field(
        default="latest",
        description="cloudflared release to download when the binary is missing.",
    )
    connect_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Seconds to wait for the tunnel to register a connection.",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )

    @field_validator("port", mode="before")
    @classmethod
    def _parse_port(cls, value: Any) -> int:
        if value is None or value == "":
            return DEFAULT_PORT
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring unparseable PORT", value=value, default=DEFAULT_PORT)
            return DEFAULT_PORT

    @field_validator("default_subdomain")
    @classmethod
    def _check_default_subdomain(cls, value: str) -> str:
        from subserve.routing.subdomain import is_valid_label

        if not is_valid_label(value):
            raise ValueError(f"Invalid default subdomain: {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.lower()
        if level not in ("debug", "info", "warning", "error"):
            raise ValueError(f"Unsupported log level: {value}")
        return level

    def resolved_binary(self) -> Path:
        """Return the configured cloudflared path or the default install path."""
        from subserve.client.installer import default_binary_path

        return self.cloudflared_bin or default_binary_path()

    def to_display_dict(self) -> dict[str, Any]:
        """Export the configuration for display, with the token masked."""
        return {
            "cloudflared_token": "***" if self.cloudflared_token else "",
            "port": self.port,
            "host": self.host,
            "content_root": str(self.content_root),
            "default_subdomain": self.default_subdomain,
            "cloudflared_bin": str(self.resolved_binary()),
            "cloudflared_version": self.cloudflared_version,
            "connect_timeout": self.connect_timeout,
            "log_level": self.log_level,
        }


_config: ServeConfig | None = None


def get_config() -> ServeConfig:
    """Get the global configuration instance.

    The instance is created once and cached for the lifetime of the process.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = ServeConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration."""
    global _config
    _config = None
