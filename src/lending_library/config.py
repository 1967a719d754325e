"""Configuration management for the Lending Library server.

Settings come from environment variables (``LENDING_LIBRARY_*``), an optional
``.env`` file, or constructor arguments in tests. The lending rules that the
policy layer enforces live here too so deployments can tune loan periods and
limits without code changes.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .policy import LendingRules


class LibraryConfig(BaseSettings):
    """Server configuration.

    Groups:
    - Server metadata used in the MCP handshake
    - Transport and persistence settings
    - Lending rules (loan period, limits, fines)
    - Concurrency retry budget for conflicting writes
    """

    model_config = SettingsConfigDict(
        env_prefix="LENDING_LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="lending-library",
        description="Server name used in protocol handshake",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version for capability negotiation",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/library.db"),
        description="SQLite database file path",
    )

    # === Transport Configuration ===

    transport: str = Field(
        default="stdio",
        description="Primary transport mechanism",
        pattern=r"^(stdio|streamable_http)$",
    )

    http_host: str = Field(
        default="127.0.0.1",
        description="HTTP server host for Streamable HTTP transport",
    )

    http_port: int = Field(
        default=8080,
        description="HTTP server port for Streamable HTTP transport",
        ge=1024,
        le=65535,
    )

    # === Lending Rules ===

    loan_period_days: int = Field(
        default=14,
        description="Default loan period when no due date is requested",
        ge=1,
        le=365,
    )

    renewal_period_days: int = Field(
        default=14,
        description="Days added to the due date by each renewal",
        ge=1,
        le=365,
    )

    max_open_loans: int = Field(
        default=5,
        description="Maximum number of Borrowed/Overdue loans per user",
        ge=1,
        le=50,
    )

    max_renewals: int = Field(
        default=3,
        description="Maximum renewals per loan",
        ge=0,
        le=3,
    )

    fine_per_day: float = Field(
        default=1.0,
        description="Fine charged per started day past the due date",
        ge=0.0,
    )

    # === Concurrency ===

    conflict_retry_attempts: int = Field(
        default=3,
        description="Attempts for a unit of work that loses a write conflict",
        ge=1,
        le=10,
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
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

    @field_validator("server_name")
    @classmethod
    def validate_server_name(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Server name must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Server name must not exceed 50 characters")
        return v

    @field_validator("http_port")
    @classmethod
    def validate_http_port(cls, v: int) -> int:
        """Reject ports that commonly belong to other services."""
        reserved_ports = {22, 25, 80, 443, 3306, 5432}
        if v in reserved_ports:
            raise ValueError(f"Port {v} is commonly reserved, choose another")
        return v

    # === Computed Properties ===

    @property
    def lending_rules(self) -> LendingRules:
        """Lending rules for the policy layer."""
        return LendingRules(
            loan_period_days=self.loan_period_days,
            renewal_period_days=self.renewal_period_days,
            max_open_loans=self.max_open_loans,
            max_renewals=self.max_renewals,
            fine_per_day=self.fine_per_day,
        )

    def get_database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        return f"sqlite:///{self.database_path}"


# === Global Configuration Instance ===


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: LibraryConfig | None = None


def get_config() -> LibraryConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = LibraryConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Drop the cached configuration so the next access re-reads the environment."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
