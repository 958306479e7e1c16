"""Application settings and configuration.

This module defines all configuration options for the Nova webhook service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Nova Webhooks", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./nova_webhooks.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Chain event source
    chain_rpc_url: str = Field(
        default="https://horizon-testnet.stellar.org",
        alias="CHAIN_RPC_URL",
    )
    factory_contract_id: str = Field(default="", alias="FACTORY_CONTRACT_ID")
    chain_source_id: str = Field(default="factory-events", alias="CHAIN_SOURCE_ID")
    chain_start_ledger: int | None = Field(default=None, alias="CHAIN_START_LEDGER")
    chain_page_limit: int = Field(default=100, alias="CHAIN_PAGE_LIMIT")
    chain_http_timeout_seconds: float = Field(default=10.0, alias="CHAIN_HTTP_TIMEOUT_SECONDS")
    chain_poll_interval_seconds: float = Field(default=5.0, alias="CHAIN_POLL_INTERVAL_SECONDS")
    chain_max_poll_retries: int = Field(default=5, alias="CHAIN_MAX_POLL_RETRIES")
    chain_retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="CHAIN_RETRY_BASE_DELAY_SECONDS",
    )
    chain_retry_max_delay_seconds: float = Field(
        default=30.0,
        alias="CHAIN_RETRY_MAX_DELAY_SECONDS",
    )
    listener_enabled: bool = Field(default=False, alias="WEBHOOK_LISTENER_ENABLED")

    # Webhook delivery
    webhook_timeout_seconds: float = Field(default=5.0, alias="WEBHOOK_TIMEOUT_SECONDS")
    webhook_max_attempts: int = Field(default=3, ge=1, alias="WEBHOOK_MAX_RETRIES")
    webhook_retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="WEBHOOK_RETRY_DELAY_SECONDS",
    )
    webhook_sequence_timeout_seconds: float = Field(
        default=60.0,
        alias="WEBHOOK_SEQUENCE_TIMEOUT_SECONDS",
    )
    webhook_max_concurrency: int = Field(default=20, ge=1, alias="WEBHOOK_MAX_CONCURRENCY")
    webhook_rate_limit_requests: int = Field(
        default=60,
        ge=1,
        alias="WEBHOOK_RATE_LIMIT_REQUESTS",
    )
    webhook_rate_limit_window_seconds: float = Field(
        default=60.0,
        alias="WEBHOOK_RATE_LIMIT_WINDOW_SECONDS",
    )
    webhook_user_agent: str = Field(
        default="Nova-Launch-Webhook/1.0",
        alias="WEBHOOK_USER_AGENT",
    )
    webhook_signature_header: str = Field(
        default="X-Webhook-Signature",
        alias="WEBHOOK_SIGNATURE_HEADER",
    )

    # Registry and read API
    registry_cache_ttl_seconds: float = Field(
        default=5.0,
        alias="WEBHOOK_REGISTRY_CACHE_TTL_SECONDS",
    )
    delivery_log_default_limit: int = Field(default=50, alias="WEBHOOK_LOG_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        if self.webhook_timeout_seconds >= self.webhook_sequence_timeout_seconds:
            raise ValueError(
                "WEBHOOK_TIMEOUT_SECONDS must be shorter than WEBHOOK_SEQUENCE_TIMEOUT_SECONDS"
            )
        return self

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def chain_events_path(self) -> str:
        """Return the contract events path queried by the chain event source."""
        return f"/contracts/{self.factory_contract_id}/events"


settings = Settings()
