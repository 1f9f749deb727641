"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(
        default="postgresql+asyncpg://postgres@localhost:5432/plug_n_pay",
        description="PostgreSQL connection URL",
    )
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Avalanche C-Chain RPC
    avalanche_rpc_url: str = Field(
        default="https://api.avax-test.network/ext/bc/C/rpc",
        description="Avalanche C-Chain JSON-RPC endpoint (Fuji testnet by default)",
    )
    rpc_timeout_seconds: float = Field(default=10.0, description="RPC request timeout (seconds)")
    rpc_retry_max_attempts: int = Field(default=3, description="Max RPC attempts per call")
    rpc_retry_base_delay: float = Field(
        default=0.5, description="Base delay for RPC retry backoff (seconds)"
    )
    rpc_circuit_failure_threshold: int = Field(
        default=5, description="Consecutive RPC failures before opening the circuit"
    )
    rpc_circuit_timeout_seconds: int = Field(
        default=60, description="Seconds before an open circuit is half-opened"
    )

    # x402 payment intents
    webhook_base_url: str = Field(
        default="http://localhost:3001", description="Base URL for payment callbacks"
    )

    # Application Configuration
    app_name: str = Field(default="plug-n-pay", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=3001, description="API port")
    api_workers: int = Field(default=1, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
    )

    # Security
    api_key_header: str = Field(default="X-API-Key", description="API key header name")
    api_key_prefix: str = Field(default="pn_", description="Prefix of issued developer API keys")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("webhook_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def payment_callback_url(self) -> str:
        """URL embedded in x402 payment intents."""
        return f"{self.webhook_base_url}/payment/callback"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
