"""
Stat Fetcher - error count for one (project, query kind) pair

Fetches 10-second buckets for the lookback window with bounded retry
(3 attempts, 3 seconds apart) and sums them into a ScalarStat.
Every attempt records its outcome on the shared ApiCallMetrics.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from sentry_exporter.collectors.sentry_rest_client import SentryAPIError, SentryRESTClient
from sentry_exporter.core import ApiCallMetrics, get_logger
from sentry_exporter.domain.sentry import Organisation, Project, QueryKind, ScalarStat, StatBucket
from sentry_exporter.utils.error_handling import with_async_retry

logger = get_logger(__name__)


class StatFetcher:
    """Fetches and reduces project stats for a single collection cycle."""

    MAX_ATTEMPTS = 3
    RETRY_BACKOFF_SECONDS = 3.0
    RESOLUTION = "10s"

    def __init__(
        self,
        client: SentryRESTClient,
        call_metrics: ApiCallMetrics,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    ):
        """
        Args:
            client: Open Sentry client for this cycle
            call_metrics: Counters incremented once per attempt
            sleep: Awaitable sleep used between attempts (injectable for tests)
            max_attempts: Total attempts per fetch, including the first
            backoff_seconds: Fixed wait between attempts
        """
        self._client = client
        self._call_metrics = call_metrics
        self._fetch_with_retry = with_async_retry(
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            exceptions=(SentryAPIError,),
            sleep=sleep,
        )(self._fetch_buckets)

    async def fetch_scalar(
        self,
        organisation: Organisation,
        project: Project,
        query_kind: QueryKind,
        window_start: float,
        window_end: float,
    ) -> ScalarStat:
        """
        Sum the error counts of one project and query kind over [window_start, window_end).

        Returns:
            ScalarStat with the summed count (0.0 when Sentry returns no buckets)

        Raises:
            SentryAPIError: The last failure, once every attempt has failed
        """
        buckets = await self._fetch_with_retry(organisation, project, query_kind, window_start, window_end)
        return ScalarStat.from_buckets(project.slug, query_kind, buckets)

    async def _fetch_buckets(
        self,
        organisation: Organisation,
        project: Project,
        query_kind: QueryKind,
        window_start: float,
        window_end: float,
    ) -> list[StatBucket]:
        logger.debug(
            f"Fetching {query_kind.value} error counts for {project.slug}",
            extra={"project": project.slug, "query": query_kind.value},
        )
        try:
            buckets = await self._client.get_project_stats(
                organisation, project, query_kind, window_start, window_end, self.RESOLUTION
            )
        except SentryAPIError:
            self._call_metrics.record_failure()
            raise

        self._call_metrics.record_success()
        return buckets
