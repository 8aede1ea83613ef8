"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file="../.env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./mediagen.db", alias="DATABASE_URL"
    )
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # External compute backend
    compute_backend: str = Field(default="pixio", alias="COMPUTE_BACKEND")
    pixio_api_url: str = Field(default="https://api.myapps.ai/api/run", alias="PIXIO_API_URL")
    pixio_api_key: str = Field(default="", alias="PIXIO_API_KEY")
    pixio_deployment_image: str = Field(
        default="8f96cb86-5cbb-4ad0-9837-8a79eeb5103a", alias="PIXIO_DEPLOYMENT_IMAGE"
    )
    pixio_deployment_video: str = Field(
        default="d07cf1d5-412c-4270-b925-ffd6416abd1c", alias="PIXIO_DEPLOYMENT_VIDEO"
    )
    pixio_deployment_first_last_frame_video: str = Field(
        default="8c463102-0525-4cf1-8535-731fee0f93b4",
        alias="PIXIO_DEPLOYMENT_FIRST_LAST_FRAME_VIDEO",
    )
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_deployment_image: str = Field(default="", alias="REPLICATE_DEPLOYMENT_IMAGE")
    replicate_deployment_video: str = Field(default="", alias="REPLICATE_DEPLOYMENT_VIDEO")
    replicate_deployment_first_last_frame_video: str = Field(
        default="", alias="REPLICATE_DEPLOYMENT_FIRST_LAST_FRAME_VIDEO"
    )

    # Object storage (Supabase Storage)
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_service_role_key: str = Field(default="", alias="SUPABASE_SERVICE_ROLE_KEY")
    storage_bucket: str = Field(default="generated-media", alias="STORAGE_BUCKET")

    # Stage scheduling
    stage_scheduler: str = Field(default="inprocess", alias="STAGE_SCHEDULER")
    stage_base_url: str = Field(default="http://localhost:8000", alias="STAGE_BASE_URL")
    internal_api_key: str = Field(default="", alias="INTERNAL_API_KEY")

    # Poller
    poll_interval_seconds: float = Field(default=10.0, alias="POLL_INTERVAL_SECONDS")
    poll_error_interval_seconds: float = Field(default=15.0, alias="POLL_ERROR_INTERVAL_SECONDS")
    poll_max_attempts: int = Field(default=120, ge=1, alias="POLL_MAX_ATTEMPTS")
    poll_max_consecutive_errors: int = Field(
        default=10, ge=1, alias="POLL_MAX_CONSECUTIVE_ERRORS"
    )

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")
    download_timeout_seconds: float = Field(default=120.0, alias="DOWNLOAD_TIMEOUT_SECONDS")

    # Credit costs per generation mode
    credit_cost_image: int = Field(default=10, ge=0, alias="CREDIT_COST_IMAGE")
    credit_cost_video: int = Field(default=100, ge=0, alias="CREDIT_COST_VIDEO")
    credit_cost_first_last_frame_video: int = Field(
        default=100, ge=0, alias="CREDIT_COST_FIRST_LAST_FRAME_VIDEO"
    )

    # Startup resume of jobs whose dispatch never happened
    resume_pending_after_seconds: int = Field(default=300, alias="RESUME_PENDING_AFTER_SECONDS")
    # A dispatch claim older than this is abandoned and may be taken over
    dispatch_claim_ttl_seconds: int = Field(
        default=300, ge=1, alias="DISPATCH_CLAIM_TTL_SECONDS"
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if configuration is incomplete.
        Validation is skipped in test/development environments.
        """
        if self.app_env in ("test", "testing", "development"):
            return self

        missing = []

        if self.compute_backend == "pixio" and not self.pixio_api_key:
            missing.append("PIXIO_API_KEY: API key for the Pixio/ComfyDeploy run endpoint")
        elif self.compute_backend == "replicate" and not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )
        elif self.compute_backend not in ("pixio", "replicate"):
            missing.append(f"COMPUTE_BACKEND: unsupported value {self.compute_backend!r}")

        if not self.supabase_url:
            missing.append("SUPABASE_URL: Base URL of the Supabase project hosting storage")
        if not self.supabase_service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY: Service role key for storage uploads")

        if self.stage_scheduler == "http":
            if not self.internal_api_key:
                missing.append("INTERNAL_API_KEY: Shared secret for /internal/stages calls")
            if not self.stage_base_url:
                missing.append("STAGE_BASE_URL: Public base URL of this service")
        elif self.stage_scheduler != "inprocess":
            missing.append(f"STAGE_SCHEDULER: unsupported value {self.stage_scheduler!r}")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        renderer = structlog.processors.JSONRenderer()
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ]
    else:
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
