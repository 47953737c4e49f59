"""Configuration management for the FastNow MCP gateway.

Supports a YAML configuration file and environment variable overrides.
Configuration is loaded once and cached for the process lifetime.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CATALOG_DIR = Path(__file__).resolve().parent.parent / "fastnow_mcp" / "catalog"

DEFAULT_SCOPES = [
    "read:fasting",
    "write:fasting",
    "read:food",
    "write:food",
    "read:profile",
    "write:profile",
    "read:goals",
    "write:goals",
    "read:activity",
    "write:activity",
    "read:journey",
    "write:journey",
    "read:stats",
    "read:settings",
    "write:settings",
]


class ServerSettings(BaseSettings):
    """Gateway HTTP listener configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    public_url: str = Field(
        default="https://mcp.fastnow.app",
        description="Externally visible base URL, used for the auth realm and discovery links"
    )
    tools_catalog: str = Field(default=str(CATALOG_DIR / "tools.yaml"))
    widgets_catalog: str = Field(default=str(CATALOG_DIR / "widgets.yaml"))
    data_resources_catalog: str = Field(default=str(CATALOG_DIR / "data_resources.yaml"))
    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/audit.log")

    model_config = SettingsConfigDict(
        env_prefix="FASTNOW_SERVER_",
        env_file=".env",
        extra="ignore"
    )


class UpstreamSettings(BaseSettings):
    """Upstream functions host that owns the business endpoints."""
    base_url: str = Field(default="https://texnkijwcygodtywgedm.supabase.co/functions/v1")
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    token_header: str = Field(
        default="X-OAuth-Token",
        description="Header the caller's bearer token is forwarded under"
    )

    model_config = SettingsConfigDict(
        env_prefix="FASTNOW_UPSTREAM_",
        env_file=".env",
        extra="ignore"
    )


class TokenStoreSettings(BaseSettings):
    """REST endpoint of the access-token store."""
    rest_url: str = Field(default="https://texnkijwcygodtywgedm.supabase.co/rest/v1")
    service_key: Optional[str] = Field(default=None)
    table: str = Field(default="oauth_access_tokens")
    timeout_seconds: float = Field(default=10.0, gt=0, le=60)
    retry_attempts: int = Field(default=3, ge=1, le=10)

    model_config = SettingsConfigDict(
        env_prefix="FASTNOW_TOKEN_STORE_",
        env_file=".env",
        extra="ignore"
    )


class OAuthSettings(BaseSettings):
    """Authorization server metadata advertised to clients."""
    issuer: str = Field(default="https://go.fastnow.app")
    authorization_endpoint: str = Field(default="https://go.fastnow.app/oauth/authorize")
    token_endpoint: str = Field(
        default="https://texnkijwcygodtywgedm.supabase.co/functions/v1/oauth-token"
    )
    registration_endpoint: str = Field(
        default="https://texnkijwcygodtywgedm.supabase.co/functions/v1/oauth-register"
    )
    client_id: str = Field(default="chatgpt-fastnow")
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))

    model_config = SettingsConfigDict(
        env_prefix="FASTNOW_OAUTH_",
        env_file=".env",
        extra="ignore"
    )


class WidgetSettings(BaseSettings):
    """Where widget HTML documents load their bundles from."""
    cdn_url: str = Field(default="https://5663f26e.fastnow-components.pages.dev")

    model_config = SettingsConfigDict(
        env_prefix="FASTNOW_WIDGETS_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    token_store: TokenStoreSettings = Field(default_factory=TokenStoreSettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    widgets: WidgetSettings = Field(default_factory=WidgetSettings)

    model_config = SettingsConfigDict(
        env_prefix="FASTNOW_",
        env_file=".env",
        extra="ignore"
    )

    @property
    def effective_log_level(self) -> str:
        """Debug mode forces DEBUG regardless of log_level."""
        return "DEBUG" if self.debug else self.log_level

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file, falling back to defaults."""
        data = load_yaml_config(path)
        return cls(**data)


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML mapping; a missing file yields an empty dict."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_yaml_list(path: str | Path, key: str) -> list[dict[str, Any]]:
    """Load the list stored under ``key`` in a YAML catalog file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog not found: {path}")

    entries = load_yaml_config(path).get(key) or []
    if not isinstance(entries, list):
        raise ValueError(f"{path}: '{key}' must be a list")
    return entries


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("FASTNOW_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
