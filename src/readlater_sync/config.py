"""Configuration management for readlater-sync.

All configuration comes from environment variables. Uses pydantic-settings
for validation so a missing API token or a nonsensical page size fails at
startup rather than halfway through a sync cycle.
"""

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_PATH = Path.home() / ".local" / "share" / "readlater-sync" / "articles.db"

# Upper bound the bookmarking service accepts for a single listing page.
MAX_PAGE_SIZE = 500


class Config(BaseSettings):
    """Client configuration loaded from environment variables."""

    api_url: str = Field(alias="READLATER_API_URL")
    api_token: SecretStr = Field(alias="READLATER_API_TOKEN")
    database_path: Path = Field(default=DEFAULT_DATABASE_PATH, alias="READLATER_DB_PATH")
    page_size: int = Field(default=30, ge=1, le=MAX_PAGE_SIZE, alias="READLATER_PAGE_SIZE")
    request_timeout: float = Field(default=30.0, gt=0, alias="READLATER_REQUEST_TIMEOUT")
    max_retries: int = Field(default=3, ge=0, alias="READLATER_MAX_RETRIES")
    server_host: str = Field(default="127.0.0.1", alias="MCP_SERVER_HOST")
    server_port: int = Field(default=8000, alias="MCP_SERVER_PORT")

    model_config = SettingsConfigDict(
        populate_by_name=True,
        extra="ignore",
    )


def load_config() -> Config:
    """Load and validate config from environment. Raises on missing required vars."""
    return Config()
