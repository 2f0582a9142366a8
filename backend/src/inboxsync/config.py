"""Configuration management."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field


class Settings(BaseSettings):
    """Application settings."""

    # Database (PostgreSQL) - constructed from parts
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "inbox"
    db_user: str = "inbox"
    db_password: str = ""

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from parts."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Realtime change feed (LISTEN/NOTIFY channel fed by table triggers)
    realtime_channel: str = "inbox_changes"

    # Edge functions
    functions_base_url: str = "http://localhost:54321/functions/v1"
    functions_api_key: str = ""
    send_proxy_path: str = "/test-loopmessage/"
    upload_url_path: str = "/r2-upload-url"
    completion_path: str = "/grok-chat"

    # AI completion
    completion_model: str = "grok-3-mini"
    completion_temperature: float = 0.7
    completion_max_tokens: int = 200

    # HTTP behaviour
    request_timeout: float = 30.0
    retry_attempts: int = 3
    retry_base_wait: float = 0.5
    retry_max_wait: float = 8.0

    # Pagination
    threads_page_size: int = 100
    messages_page_size: int = 50

    # Local preference storage
    preferences_path: Path = Path.home() / ".inbox-sync" / "preferences.json"

    # Webhook server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def function_url(self, path: str) -> str:
        return f"{self.functions_base_url.rstrip('/')}/{path.lstrip('/')}"


# Global settings instance
settings = Settings()
