"""Decorators for tracing circulation operations."""

import functools
import time
from collections.abc import Callable
from typing import Any

import logfire

from .metrics import record_operation


def traced(operation: str):
    """Wrap a circulation operation in a Logfire span and record its outcome.

    Operations return ``Result`` objects, so a business-rule refusal is not an
    exception: the span is marked unsuccessful and tagged with the failure
    reason instead. Real exceptions are recorded and re-raised.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with logfire.span(
                "circulation.{operation}",
                operation=operation,
                category=_categorize_operation(operation),
            ) as span:
                start = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("circulation.success", False)
                    span.set_attribute("circulation.error", str(e))
                    record_operation(operation, "error", _elapsed_ms(start))
                    raise

                ok = getattr(result, "ok", True)
                span.set_attribute("circulation.success", ok)
                if not ok:
                    _add_failure_attributes(span, result)
                record_operation(operation, "success" if ok else "failure", _elapsed_ms(start))
                return result

        return wrapper

    return decorator


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _add_failure_attributes(span: Any, result: Any) -> None:
    error = getattr(result, "error", None)
    if error is None:
        return
    span.set_attribute("circulation.failure_reason", error.reason.value)
    span.set_attribute("circulation.failure_kind", error.kind.value)


def _categorize_operation(operation: str) -> str:
    """Group operations for dashboards."""
    if operation in {"checkout", "return", "renew", "declare_lost"}:
        return "loans"
    if "reservation" in operation or "pickup" in operation or operation == "reserve":
        return "reservations"
    if "fine" in operation:
        return "fines"
    if "sweep" in operation:
        return "jobs"
    if "member" in operation:
        return "members"
    return "catalog"
