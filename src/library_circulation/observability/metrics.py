"""Circulation metrics recorded through Logfire."""

import logfire

circulation_operations = logfire.metric_counter(
    "circulation.operations.total",
    description="Circulation operations by name and outcome",
)

circulation_operation_duration = logfire.metric_histogram(
    "circulation.operation.duration_ms",
    unit="milliseconds",
    description="Circulation operation duration by name",
)


def record_operation(operation: str, outcome: str, duration_ms: float) -> None:
    """Record one finished circulation operation."""
    circulation_operations.add(1, {"operation": operation, "outcome": outcome})
    circulation_operation_duration.record(duration_ms, {"operation": operation})
