"""Logging and Logfire observability for the circulation core."""

import logging
import sys

import logfire

from ..config import CirculationConfig, get_config
from .config import ObservabilityConfig
from .decorators import traced

logger = logging.getLogger(__name__)

_config: ObservabilityConfig | None = None

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(config: CirculationConfig | None = None) -> None:
    """Send log records to stderr at the configured level."""
    config = config or get_config()
    level = logging.DEBUG if config.is_development else getattr(logging, config.log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)
    # SQLAlchemy is chatty at DEBUG; keep it at WARNING unless asked for
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def initialize_observability(config: ObservabilityConfig | None = None) -> None:
    """Initialize Logfire with configuration."""
    global _config  # noqa: PLW0603
    _config = config or ObservabilityConfig()

    if not _config.enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=_config.token or None,
        service_name=_config.service_name,
        environment=_config.environment,
        send_to_logfire=_config.send_to_logfire,
        console=None if _config.console_output else False,
    )
    # Route stdlib log records into Logfire as well
    logging.getLogger().addHandler(logfire.LogfireLoggingHandler())


def get_observability_config() -> ObservabilityConfig:
    """Get current observability configuration."""
    global _config  # noqa: PLW0603
    if _config is None:
        _config = ObservabilityConfig()
    return _config


__all__ = [
    "ObservabilityConfig",
    "configure_logging",
    "get_observability_config",
    "initialize_observability",
    "logfire",
    "traced",
]
