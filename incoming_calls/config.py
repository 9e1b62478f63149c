from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"
    # Empty secret means webhooks are accepted unauthenticated (warned once).
    pbx_webhook_secret: str = ""
    api_token: str = ""
    # Directory lookup is disabled when no database is configured.
    database_url: str = ""
    max_history: int = 500
    default_log_limit: int = 100
    heartbeat_interval_seconds: float = 25.0
    stream_retry_ms: int = 4000
    subscriber_buffer_size: int = 256
    cors_origins: list[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"


settings = Settings()
