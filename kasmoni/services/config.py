"""Engine configuration from environment variables and .env file."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment variables (prefix ``KASMONI_``)."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="KASMONI_")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./kasmoni.db",
        description="SQLAlchemy async connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Settlement
    admin_fee: Decimal = Field(
        default=Decimal("200"),
        ge=0,
        decimal_places=2,
        description="Fixed administration fee deducted from every payout",
    )
    currency: str = Field(default="SRD", description="Currency code used for display")

    # Reconciler
    recompute_debounce_seconds: float = Field(
        default=0.3,
        ge=0,
        description="Delay before a pending toggle recompute is written",
    )
    reject_stale_writes: bool = Field(
        default=False,
        description="Reject saves whose expected version is stale instead of overwriting",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/kasmoni.log", description="Log file path")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


__all__ = ["Settings", "get_settings"]
