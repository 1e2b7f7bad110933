"""Where circulation spans and metrics are sent.

Tracing belongs to the deployment rather than to the lending policy, so it is
configured apart from ``CirculationConfig`` through
``LIBRARY_CIRCULATION_TRACE_*`` environment variables or a ``.env`` file.
``LOGFIRE_TOKEN`` and ``ENVIRONMENT`` are read as well.

Spans leave the process only when a Logfire token is present and export has
not been switched off. Printing spans to the console defaults to on in
development and off everywhere else.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ObservabilityConfig(BaseSettings):
    """Logfire settings for the circulation core."""

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_CIRCULATION_TRACE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    enabled: bool = Field(
        default=True,
        description="Record spans and metrics at all",
    )

    service_name: str = Field(
        default="library-circulation",
        description="Service name attached to every span",
    )

    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("LIBRARY_CIRCULATION_TRACE_ENVIRONMENT", "ENVIRONMENT"),
    )

    token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LIBRARY_CIRCULATION_TRACE_TOKEN", "LOGFIRE_TOKEN"),
        description="Logfire write token",
    )

    export: bool = Field(
        default=True,
        description="Send spans to Logfire when a token is available",
    )

    console: bool | None = Field(
        default=None,
        description="Print spans to the console; unset means only in development",
    )

    @property
    def send_to_logfire(self) -> bool:
        return self.enabled and self.export and bool(self.token)

    @property
    def console_output(self) -> bool:
        if self.console is None:
            return self.environment == "development"
        return self.console
