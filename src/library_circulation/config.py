"""Configuration management for the library circulation engine.

Every tunable of the circulation rules lives here so that loan periods, hold
windows and the fine rate are declared once and validated on load:
1. Server Metadata - Name and version announced by the tool server
2. Store Configuration - Database location and connection timeout
3. Circulation Policy - Loan period, reservation windows, fine rate
4. Observability - Logging level and logfire settings
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CirculationConfig(BaseSettings):
    """Circulation engine configuration.

    Values are read from ``LIBRARY_CIRCULATION_*`` environment variables or a
    local ``.env`` file; anything not provided falls back to the library's
    standard policy.
    """

    model_config = SettingsConfigDict(
        # Use LIBRARY_CIRCULATION_ prefix for all env vars
        env_prefix="LIBRARY_CIRCULATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="Name announced by the tool server",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    transport: str = Field(
        default="stdio",
        description="Transport used by the tool server",
        pattern=r"^stdio$",
    )

    # === Store Configuration ===

    database_path: Path = Field(
        default=Path("data/circulation.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    store_timeout_seconds: float = Field(
        default=5.0,
        description="Seconds to wait for a lock or pooled connection before failing",
        gt=0,
        le=120,
    )

    # === Circulation Policy ===

    loan_period_days: int = Field(
        default=14,
        description="Days between issue and due date",
        ge=1,
        le=365,
    )

    reservation_hold_days: int = Field(
        default=7,
        description="Days a pending reservation stays in the queue",
        ge=1,
        le=365,
    )

    pickup_window_days: int = Field(
        default=3,
        description="Days a member has to collect a copy held for them",
        ge=1,
        le=60,
    )

    fine_rate_per_day: float = Field(
        default=1.0,
        description="Fine charged per calendar day overdue",
        ge=0.0,
    )

    # === Observability ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    observability_enabled: bool = Field(
        default=False,
        description="Send spans and metrics through logfire",
    )

    logfire_token: str | None = Field(
        default=None,
        description="Logfire write token",
        repr=False,
    )

    environment: str = Field(
        default="development",
        description="Deployment environment reported to logfire",
    )

    # === Validation Methods ===

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path and make sure its directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)

        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")

        return abs_path

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    # === Computed Properties ===

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    def get_database_url(self) -> str:
        """Get the SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: CirculationConfig | None = None


def get_config() -> CirculationConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = CirculationConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
