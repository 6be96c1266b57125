"""Configuration management for the Library Circulation Service.

All settings are read from the environment (prefix ``LIBRARY_``) or a local
``.env`` file and validated with Pydantic v2:

1. Service metadata - name, version and deployment environment
2. Database - connection URL and pool limits
3. Authentication - JWT verification settings
4. Circulation policy - loan period and pagination bounds
5. Overdue scanner - enable flag and interval
"""

import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "change-me-in-production"


class ServerConfig(BaseSettings):
    """Library Circulation Service configuration."""

    model_config = SettingsConfigDict(
        # LIBRARY_ prefix keeps our variables apart from other services
        env_prefix="LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Service Metadata ===

    service_name: str = Field(
        default="library-circulation",
        description="Service name used in logs and traces",
        pattern=r"^[a-z0-9-]+$",
    )

    service_version: str = Field(
        default="0.1.0",
        description="Service version",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    environment: str = Field(
        default="development",
        description="Deployment environment",
        pattern=r"^(development|test|production)$",
    )

    # === Storage ===

    database_url: str = Field(
        default="sqlite:///./data/library.db",
        description="SQLAlchemy database URL",
        validate_default=True,
    )

    pool_size: int = Field(default=10, ge=1, le=100)

    max_overflow: int = Field(default=20, ge=0, le=100)

    pool_timeout_seconds: float = Field(
        default=10.0,
        description="How long a request waits for a pooled connection before failing",
        gt=0,
    )

    sqlite_busy_timeout_seconds: float = Field(
        default=5.0,
        description="How long SQLite waits for the write lock held by another transaction",
        gt=0,
    )

    # === Authentication ===

    jwt_secret: str = Field(
        default=DEFAULT_JWT_SECRET,
        description="HS256 secret used to verify bearer tokens",
        repr=False,
        validate_default=True,
    )

    jwt_algorithm: str = Field(default="HS256", pattern=r"^HS(256|384|512)$")

    access_token_expire_minutes: int = Field(default=60, ge=1)

    # === Circulation Policy ===

    loan_period_days: int = Field(
        default=14,
        description="Days between borrow date and due date",
        ge=1,
    )

    default_page_size: int = Field(default=25, ge=1)

    max_page_size: int = Field(default=100, ge=1, le=1000)

    # === Overdue Scanner ===

    overdue_checks_enabled: bool = Field(default=True)

    overdue_check_interval_minutes: int = Field(default=60, ge=1)

    # === HTTP ===

    http_host: str = Field(default="127.0.0.1")

    http_port: int = Field(default=3001, ge=1024, le=65535)

    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
    )

    # === Development / Observability ===

    debug: bool = Field(default=False)

    log_level: str = Field(
        default="INFO",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    logfire_enabled: bool = Field(default=True)

    logfire_token: str | None = Field(default=None, repr=False)

    # === Validators ===

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Create the parent directory of file-backed SQLite databases."""
        if v.startswith("sqlite:///") and ":memory:" not in v:
            Path(v.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if not v:
            raise ValueError("jwt_secret must not be empty")
        if v == DEFAULT_JWT_SECRET:
            logger.warning("LIBRARY_JWT_SECRET is not set, using the insecure default")
        elif len(v) < 32:
            logger.warning("LIBRARY_JWT_SECRET is shorter than 32 characters")
        return v

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "ServerConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return self

    # === Derived Values ===

    @property
    def is_development(self) -> bool:
        return self.debug or self.environment == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def service_info(self) -> dict[str, str]:
        return {
            "name": self.service_name,
            "version": self.service_version,
            "environment": self.environment,
        }


# === Process-wide Settings ===


class _ConfigStore:
    """Holds the process-wide settings object."""

    _instance: ServerConfig | None = None


def get_config() -> ServerConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = ServerConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def set_config(config: ServerConfig) -> None:
    """Install an explicit configuration (used by the app factory and tests)."""
    _ConfigStore._instance = config  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
