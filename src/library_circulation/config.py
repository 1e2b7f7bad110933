"""Configuration management for the library circulation core.

Every circulation policy constant (loan periods, fine rates, ceilings) is a
configuration value rather than a literal in the services. Values are read from
``LIBRARY_CIRCULATION_*`` environment variables or a ``.env`` file, validated by
Pydantic, and shared through a process-wide singleton.
"""

from decimal import Decimal
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CirculationConfig(BaseSettings):
    """Circulation policy and runtime settings.

    The defaults reproduce the standard lending policy: five concurrent loans,
    fourteen day loans, fifty cents per overdue day, and borrowing blocked once a
    member owes more than ten dollars.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_CIRCULATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Borrowing Policy ===

    max_outstanding_fines: Decimal = Field(
        default=Decimal("10.00"),
        description="Members owing more than this amount cannot borrow",
        ge=0,
        decimal_places=2,
    )

    max_active_loans: int = Field(
        default=5,
        description="Maximum number of Active or Overdue loans per member",
        ge=1,
    )

    default_loan_days: int = Field(
        default=14,
        description="Loan period used when no due date is supplied",
        ge=1,
    )

    max_loan_days: int = Field(
        default=30,
        description="Latest allowed due date at checkout, in days from now",
        ge=1,
    )

    max_extension_days: int = Field(
        default=30,
        description="Latest allowed renewed due date, in days from now",
        ge=1,
    )

    # === Fines ===

    daily_fine_rate: Decimal = Field(
        default=Decimal("0.50"),
        description="Fine charged per whole day overdue",
        ge=0,
        decimal_places=2,
    )

    max_fine_amount: Decimal | None = Field(
        default=None,
        description="Optional cap on the overdue fine for a single loan",
        ge=0,
        decimal_places=2,
    )

    # === Reservations ===

    pickup_window_days: int = Field(
        default=3,
        description="Days a fulfilled reservation is held for pickup",
        ge=1,
    )

    # === Background Sweeps ===

    sweep_interval_seconds: float = Field(
        default=86400.0,
        description="Delay between periodic circulation sweeps",
        gt=0,
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/circulation.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    db_timeout_seconds: float = Field(
        default=30.0,
        description="How long a connection waits on a locked database",
        gt=0,
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

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path and make sure its directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)
        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")
        return abs_path

    @model_validator(mode="after")
    def validate_loan_periods(self) -> "CirculationConfig":
        """The default loan period must itself be a valid checkout due date."""
        if self.default_loan_days > self.max_loan_days:
            raise ValueError(
                f"default_loan_days ({self.default_loan_days}) cannot exceed "
                f"max_loan_days ({self.max_loan_days})"
            )
        return self

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
    """Reset configuration so the next access re-reads the environment."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
