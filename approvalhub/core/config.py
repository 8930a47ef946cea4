from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "ApprovalHub"
    debug: bool = False

    # CORS
    cors_origins: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Database
    database_url: str = "sqlite:///./approvalhub.db"
    database_echo: bool = False

    # Live events
    event_backend: str = "memory"  # memory, redis
    redis_url: str = "redis://localhost:6379/0"
    event_channel_prefix: str = "approvalhub:notifications"
    sse_heartbeat_seconds: int = 30

    # Webhooks
    webhook_urls: str = ""
    webhook_timeout: int = 10
    webhook_payload_template: Optional[str] = None  # Jinja2 template rendering to JSON

    @property
    def webhook_urls_list(self) -> list[str]:
        return [url.strip() for url in self.webhook_urls.split(",") if url.strip()]

    # Workflow behaviour
    remarks_required: bool = True
    enforce_route_role: bool = False
    workflow_definitions_path: Optional[str] = None  # YAML provisioned at start-up

    # Logging
    log_level: str = "INFO"
    log_dir: str = "./logs"
    log_to_file: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
