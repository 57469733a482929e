"""
Logging and metrics helpers for flag operations.
"""

import contextlib
import logging
import time
from typing import Any, Callable, Iterator

from flagkeeper.core.logging import get_logger
from flagkeeper.monitoring.prometheus import (
    get_flag_evaluations_total,
    get_flag_mutations_total,
    get_flag_operation_duration_seconds,
)

logger = get_logger("flagkeeper.flags")


def log_mutation(
    operation: str,
    key: str,
    status: str,
    exc_info: bool = False,
    **meta: Any
) -> None:
    """
    Emit one ``[flags]`` record for a mutation step.

    ``status`` is start, success or error. Errors of kind ``internal`` log at
    ERROR, other error kinds at WARNING.
    """
    level = logging.INFO
    if status == "error":
        level = logging.ERROR if meta.get("kind") == "internal" else logging.WARNING

    logger.log(
        level,
        f"[flags] {operation} {status}",
        exc_info=exc_info,
        extra={"operation": operation, "flag_key": key, "status": status, **meta}
    )

    if status != "start":
        outcome = "success" if status == "success" else meta.get("kind", "internal")
        get_flag_mutations_total().labels(operation=operation, outcome=outcome).inc()


def record_evaluations(environment: str, results: dict) -> None:
    counter = get_flag_evaluations_total()
    for enabled in results.values():
        counter.labels(environment=environment, result="on" if enabled else "off").inc()


@contextlib.contextmanager
def operation_timer(operation: str) -> Iterator[Callable[[], float]]:
    """Yields a callable returning elapsed milliseconds; observes the duration histogram on exit."""
    start = time.perf_counter()

    def elapsed_ms() -> float:
        return round((time.perf_counter() - start) * 1000, 3)

    try:
        yield elapsed_ms
    finally:
        get_flag_operation_duration_seconds().labels(operation=operation).observe(
            time.perf_counter() - start
        )
