# core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """
    Centralized application configuration.
    Grouped logically for readability.
    """

    # ------------------------------------------------------------
    # Project / Runtime
    # ------------------------------------------------------------
    PROJECT_NAME: str = "SHD Enqueue Gateway"
    SERVICE_NAME: str = "enqueue-transcode"
    DEBUG: bool = False

    # HTTP / API
    CORS_ORIGIN: str = "*"
    RATE_LIMIT_MIN: str = "60"
    RATE_LIMIT_ENABLED: bool = True

    # ------------------------------------------------------------
    # Redis Configuration
    # ------------------------------------------------------------

    """
    Redis holds the work queue, status records and idempotency mappings.
    An unset URL leaves the gateway unconfigured: admissions are refused.
    """
    REDIS_URL: Optional[str] = Field(
        default=None,
        description="Redis connection URL, redis:// or rediss:// for TLS"
    )
    REDIS_SOCKET_TIMEOUT: float = Field(
        default=5,
        description="Socket timeout in seconds"
    )
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(
        default=5,
        description="Socket connect timeout in seconds"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=50,
        description="Maximum connections in the pool"
    )
    REDIS_SSL_VERIFY: bool = Field(
        default=True,
        description="Verify the server certificate on rediss:// connections"
    )

    # ------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------
    QUEUE_KEY: str = Field(
        default="shd:transcode:jobs",
        description="Redis list the worker pops jobs from"
    )
    JOB_TYPE: str = "transcode"
    DEFAULT_OUT_FOLDER: str = "uploads-shd"
    JOB_STATUS_TTL_SECONDS: int = Field(
        default=7 * 24 * 3600,
        description="Retention window for status records and idempotency mappings"
    )
    STATUS_KEY_PREFIX: str = "job:status:"

    # ------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------
    IDEMPOTENCY_KEY_PREFIX: str = "job:idem:"
    IDEMPOTENCY_HEADER: str = "Idempotency-Key"
    IDEMPOTENCY_KEY_MAX_LENGTH: int = 200

    """
    When enabled the token is claimed with SET NX before the job is written,
    closing the race between concurrent first submissions of one token.
    """
    IDEMPOTENCY_RESERVE: bool = False
    IDEMPOTENCY_CLAIM_TTL_SECONDS: int = Field(
        default=60,
        description="Lifetime of a reservation until the job is queued and the mapping extended"
    )

    # ------------------------------------------------------------
    # Security
    # ------------------------------------------------------------
    ENQUEUE_SHARED_SECRET: Optional[str] = Field(default=None)
    AUTH_HEADER: str = "x-api-key"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()


def get_settings() -> Settings:
    """
    FastAPI dependency returning the process settings.
    Tests override it through app.dependency_overrides.
    """
    return settings
