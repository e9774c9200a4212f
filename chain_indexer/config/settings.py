"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chain_indexer.config import constants

VALID_LOG_LEVELS = {
    "TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL",
}
VALID_ENVIRONMENTS = {"development", "staging", "production"}


class Settings(BaseSettings):
    """Indexer settings from environment variables."""

    # Indexing
    chunk_size: int = Field(
        default=constants.DEFAULT_CHUNK_SIZE,
        gt=0,
        description="Blocks per historical chunk",
    )
    polling_interval: float = Field(
        default=constants.DEFAULT_POLLING_INTERVAL,
        gt=0,
        description="Seconds between incremental polling ticks",
    )

    # Retry / timeouts
    max_retries: int = Field(
        default=constants.RPC_MAX_RETRIES,
        ge=0,
        description="Retries after the first attempt of an RPC call",
    )
    retry_delay_base: float = Field(
        default=constants.RPC_RETRY_DELAY_BASE,
        ge=0,
        description="Base backoff delay in seconds",
    )
    retry_max_delay: float = Field(
        default=constants.RPC_RETRY_MAX_DELAY,
        ge=0,
        description="Backoff delay cap in seconds",
    )
    retry_jitter: float = Field(
        default=constants.RPC_RETRY_JITTER,
        ge=0,
        description="Maximum uniform jitter added to each backoff delay",
    )
    rpc_timeout: float = Field(
        default=constants.RPC_DATA_TIMEOUT,
        gt=0,
        description="Timeout for log and block-height queries",
    )
    health_probe_timeout: float = Field(
        default=constants.RPC_PROBE_TIMEOUT,
        gt=0,
        description="Timeout for background endpoint probes",
    )

    # Health
    health_check_interval: float = Field(
        default=constants.HEALTH_CHECK_INTERVAL,
        gt=0,
        description="Seconds between endpoint probe rounds",
    )
    health_monitor_interval: float = Field(
        default=constants.HEALTH_MONITOR_INTERVAL,
        gt=0,
        description="Seconds between system health checks",
    )
    endpoint_failure_threshold: int = Field(
        default=constants.ENDPOINT_FAILURE_THRESHOLD,
        ge=1,
        description="Consecutive failures before an endpoint is demoted",
    )
    circuit_breaker_threshold: int = Field(
        default=constants.CIRCUIT_BREAKER_THRESHOLD,
        ge=1,
        description="Consecutive failures before a circuit opens",
    )
    circuit_breaker_timeout: float = Field(
        default=constants.CIRCUIT_BREAKER_TIMEOUT,
        gt=0,
        description="Seconds an open circuit waits before a trial call",
    )
    min_free_disk_percent: float = Field(
        default=constants.MIN_FREE_DISK_PERCENT,
        ge=0,
        le=100,
        description="Storage is unhealthy below this free-space percentage",
    )

    # Notifications / shutdown
    notification_queue_size: int = Field(
        default=constants.NOTIFICATION_QUEUE_SIZE,
        ge=1,
        description="Bounded progress queue size (events beyond are dropped)",
    )
    shutdown_timeout: float = Field(
        default=constants.SHUTDOWN_TIMEOUT,
        gt=0,
        description="Seconds to wait for one session to drain on shutdown",
    )

    # Chains
    ethereum_rpc_urls: str = Field(
        default="",
        description="Comma-separated Ethereum RPC endpoints (overrides defaults)",
    )
    lisk_rpc_urls: str = Field(
        default="",
        description="Comma-separated Lisk RPC endpoints (overrides defaults)",
    )
    explorer_api_key: str | None = Field(
        default=None,
        description="Optional block explorer API key",
    )

    # Storage
    data_dir: str = Field(
        default="data",
        description="Directory for file-backed session snapshots",
    )
    database_url: str | None = Field(
        default=None,
        description="Async SQLAlchemy URL; snapshots use SQL when set",
    )
    database_echo: bool = False

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    log_dir: str = "logs"
    health_server_host: str = "0.0.0.0"
    health_server_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port for the HTTP health server",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level against loguru level names."""
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{v}'. "
                f"Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return level

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate deployment environment name."""
        env = v.lower()
        if env not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"Invalid environment '{v}'. "
                f"Must be one of: {', '.join(sorted(VALID_ENVIRONMENTS))}"
            )
        return env

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_rpc_overrides(self, chain_id: str) -> list[str]:
        """
        Get RPC endpoint overrides for a chain.

        Args:
            chain_id: Chain identifier (e.g. "ethereum")

        Returns:
            List of endpoint URLs, empty if no override is configured
        """
        raw = getattr(self, f"{chain_id}_rpc_urls", "") or ""
        return [url.strip() for url in raw.split(",") if url.strip()]


# Global settings instance
settings = Settings()
