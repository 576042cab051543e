"""
API Call Tracking Module

Counts calls made from the exporter to the Sentry API, split by outcome:
    - ApiCallMetrics: thread-safe success/failure counters
    - track_collection_cycle(): context manager that resets the counters for a
      collection cycle and logs a summary when it finishes

The counters are exported as ``sentry_api_calls{status="success|failure"}``.
"""

import threading
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sentry_exporter.core.logging_config import get_logger, log_with_context

logger = get_logger(__name__)


class ApiCallMetrics:
    """
    Success and failure counters for Sentry API calls.

    Increments are guarded by a lock, so concurrent stat fetches can record
    outcomes without losing updates.

    Example:
        >>> metrics = ApiCallMetrics()
        >>> metrics.record_success()
        >>> metrics.record_failure()
        >>> metrics.snapshot()
        (1, 1)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._success_count = 0
        self._failure_count = 0

    @property
    def success_count(self) -> int:
        with self._lock:
            return self._success_count

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def record_success(self) -> None:
        with self._lock:
            self._success_count += 1

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1

    def reset(self) -> None:
        with self._lock:
            self._success_count = 0
            self._failure_count = 0

    def snapshot(self) -> tuple[int, int]:
        """
        Read both counters atomically.

        Returns:
            (success_count, failure_count)
        """
        with self._lock:
            return self._success_count, self._failure_count

    def to_dict(self) -> dict[str, Any]:
        success, failure = self.snapshot()
        return {"success": success, "failure": failure}


@contextmanager
def track_collection_cycle(metrics: ApiCallMetrics, organisation: str) -> Generator[ApiCallMetrics, None, None]:
    """
    Scope API call counting to a single collection cycle.

    Resets the counters on entry and logs duration and call counts on exit,
    whether the cycle finished normally or not.

    Args:
        metrics: Counters shared with the hierarchy cache and stat fetchers
        organisation: Organisation being collected (for log context)

    Yields:
        The same ApiCallMetrics instance

    Example:
        >>> with track_collection_cycle(metrics, "acme"):
        ...     await cache.refresh_all(client, "acme", ttls)
    """
    metrics.reset()
    start = time.monotonic()
    logger.debug("Compiling metrics", extra={"organisation": organisation})

    try:
        yield metrics
    finally:
        success, failure = metrics.snapshot()
        log_with_context(
            logger,
            "debug",
            "Done compiling metrics",
            organisation=organisation,
            duration_s=round(time.monotonic() - start, 3),
            api_calls_success=success,
            api_calls_failure=failure,
        )
