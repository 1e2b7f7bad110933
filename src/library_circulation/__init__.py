"""
Library Circulation Core.

This package implements the circulation state machine of a library: how book
copies move between Available, Borrowed, Reserved, Lost and Damaged, how loans
are opened, renewed, returned or go overdue, how reservation queues are
formed, fulfilled and expired, and how fines are calculated, paid and waived.

Key Components:
- services: the circulation rules, one service per concern
- desk: the caller-facing entry point, one unit of work per operation
- jobs: the overdue, pickup and availability sweeps and their scheduler
- database: SQLAlchemy schema, repositories and the unit of work
- models: Pydantic models returned to callers
- config: Configuration management with Pydantic v2
- observability: logging and Logfire tracing
"""

__version__ = "0.1.0"

from . import database
from .config import CirculationConfig, get_config, reset_config
from .desk import BulkItemResult, BulkOperationReport, CirculationDesk
from .errors import (
    CirculationError,
    ConflictError,
    ErrorKind,
    Failure,
    FailureReason,
    Result,
    TransientError,
)
from .jobs import CirculationScheduler, SweepSummary

__all__ = [
    "BulkItemResult",
    "BulkOperationReport",
    "CirculationConfig",
    "CirculationDesk",
    "CirculationError",
    "CirculationScheduler",
    "ConflictError",
    "ErrorKind",
    "Failure",
    "FailureReason",
    "Result",
    "SweepSummary",
    "TransientError",
    "__version__",
    "database",
    "get_config",
    "reset_config",
]
