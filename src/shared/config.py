"""Configuration management for the action MCP server.

Settings come from an optional YAML file with environment variable
overrides, and are loaded once and cached.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models import DEFAULT_PROTOCOL_VERSION


class MCPServerSettings(BaseSettings):
    """MCP server configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8001)
    path: str = Field(default="/mcp", description="Mount path of the MCP endpoint")

    name: Optional[str] = Field(default=None, description="Server name reported on initialize")
    version: str = Field(default="0.1.0")
    protocol_version: str = Field(default=DEFAULT_PROTOCOL_VERSION)
    keepalive_interval: float = Field(default=30.0, gt=0, description="Seconds between SSE pings")

    backend: Optional[str] = Field(
        default=None,
        description="Import path of the backend, as `module:attribute`"
    )
    app: Optional[str] = Field(default=None, description="Application whose domains are exposed")
    show_raised_errors: bool = Field(default=False)

    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/audit.log")

    # Security
    require_auth: bool = Field(default=False)
    secret_key: Optional[str] = Field(default=None, description="Secret used to verify bearer JWTs")
    algorithm: str = Field(default="HS256")

    model_config = SettingsConfigDict(
        env_prefix="MCP_SERVER_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    mcp_server: MCPServerSettings = Field(default_factory=MCPServerSettings)

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file, falling back to defaults when it is missing."""
        return cls(**load_yaml_config(path))


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("MCP_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
