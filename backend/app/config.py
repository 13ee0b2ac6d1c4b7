from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Pipeline Webhook Gateway"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENV: str = "dev"  # Environment: "dev", "staging", "prod"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3001"]
    FRONTEND_BASE_URL: str = "http://localhost:3000"

    # Database (MongoDB)
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "pipelinehub"
    MONGODB_HEALTHCHECK_TIMEOUT_MS: int = 2000  # Ping timeout for availability checks
    MONGODB_HEALTHCHECK_CACHE_SECONDS: float = 5.0  # Reuse a ping verdict this long

    # Redis pub/sub (real-time build events)
    REDIS_URL: str = "redis://localhost:6379/0"
    EVENTS_CHANNEL_PREFIX: str = ""  # Topics become "<prefix>build:<id>" etc.
    EVENTS_BROADCAST_CHANNEL: str = "events"
    WEBSOCKET_HEARTBEAT_SECONDS: float = 30.0

    # ==========================================================================
    # Webhook Ingestion
    # ==========================================================================

    # Reject events for pipelines without a webhook secret, even for providers
    # that otherwise accept unsigned deliveries (GitLab, Jenkins, CircleCI, ...)
    WEBHOOK_REQUIRE_SECRET: bool = False
    WEBHOOK_BUILD_EVENT_NAME: str = "build:updated"
    WEBHOOK_MAX_BODY_BYTES: int = 5 * 1024 * 1024  # 5 MB

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
