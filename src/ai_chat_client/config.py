"""Client configuration using pydantic settings management.

Values are loaded from environment variables prefixed with ``CHAT_CLIENT_``
(or an .env file) and exposed through the cached `get_settings()`.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client configuration loaded from env or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_CLIENT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Backend REST contract
    api_base_url: str = "http://localhost:8080/api"
    request_timeout: float = Field(default=30.0, gt=0)

    # Chat session engine
    reconcile_delay: float = Field(default=0.5, ge=0)
    health_poll_interval: float = Field(default=0.0, ge=0)  # 0 disables polling

    # Durable identity storage
    storage_path: str = "~/.ai_chat_client/session.json"
    storage_key: str = "user"

    # Presentation shell
    sidebar_breakpoint: int = Field(default=768, gt=0)
    max_notices: int = Field(default=20, ge=1)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def storage_file(self) -> Path:
        """Expanded path of the identity storage file."""
        return Path(self.storage_path).expanduser()


@lru_cache()
def get_settings() -> Settings:
    return Settings()
