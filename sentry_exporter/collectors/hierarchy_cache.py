"""
Hierarchy Cache - TTL-gated snapshots of the Sentry organisation hierarchy

Holds the last fetched organisation, team list and project list. Each segment
is refreshed only once its TTL has expired, which keeps Sentry API traffic
bounded regardless of scrape frequency.

Refresh rules:
    - A successful fetch replaces the segment wholesale and stamps RefreshState
    - A failed fetch keeps the previous snapshot and leaves RefreshState alone,
      so the next cycle retries immediately
    - Teams and projects are never fetched before an organisation is known

Usage:
    cache = HierarchyCache(call_metrics)
    await cache.refresh_all(client, "acme", CacheTTLs())
    snapshot = cache.snapshot()
"""

import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sentry_exporter.collectors.sentry_rest_client import SentryAPIError, SentryRESTClient
from sentry_exporter.core import ApiCallMetrics, get_logger
from sentry_exporter.domain.sentry import CacheSegment, CacheTTLs, Organisation, Project, RefreshState, Team

logger = get_logger(__name__)


@dataclass(frozen=True)
class HierarchySnapshot:
    """Consistent view of all three segments, taken under the cache lock."""

    organisation: Organisation | None
    teams: tuple[Team, ...]
    projects: tuple[Project, ...]


class HierarchyCache:
    """
    Owns the cached hierarchy and its RefreshState.

    Segment swaps and snapshot reads share one lock, so a reader sees either
    the old or the new segment, never a half-replaced one.
    """

    def __init__(self, call_metrics: ApiCallMetrics, clock: Callable[[], float] = time.time):
        """
        Args:
            call_metrics: Counters incremented once per remote call outcome
            clock: Returns the current Unix time (injectable for tests)
        """
        self._call_metrics = call_metrics
        self._clock = clock
        self._lock = threading.Lock()
        self._organisation: Organisation | None = None
        self._teams: tuple[Team, ...] = ()
        self._projects: tuple[Project, ...] = ()
        self.refresh_state = RefreshState()

    @property
    def organisation(self) -> Organisation | None:
        with self._lock:
            return self._organisation

    @property
    def teams(self) -> tuple[Team, ...]:
        with self._lock:
            return self._teams

    @property
    def projects(self) -> tuple[Project, ...]:
        with self._lock:
            return self._projects

    def snapshot(self) -> HierarchySnapshot:
        with self._lock:
            return HierarchySnapshot(self._organisation, self._teams, self._projects)

    def is_stale(self, segment: CacheSegment, ttl: int) -> bool:
        """True once more than ``ttl`` seconds have passed since the last successful refresh."""
        return self._clock() - self.refresh_state.last_refresh(segment) > ttl

    async def refresh_if_stale(
        self,
        segment: CacheSegment,
        ttl: int,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> bool:
        """
        Refresh one segment if its TTL has expired.

        Args:
            segment: Segment to refresh
            ttl: Maximum age of the segment in seconds
            fetch_fn: Coroutine function returning the new segment value

        Returns:
            True if the segment was replaced, False on a cache hit or a failed fetch
        """
        if not self.is_stale(segment, ttl):
            logger.debug(f"{segment.value.capitalize()} cache is fresh, skipping refresh")
            return False

        logger.info(f"{segment.value.capitalize()} TTL expired, refreshing")
        try:
            value = await fetch_fn()
        except SentryAPIError as e:
            self._call_metrics.record_failure()
            logger.error(
                f"Could not fetch {segment.value}: {e}",
                extra={"segment": segment.value, "exception_class": e.__class__.__name__},
            )
            return False

        self._call_metrics.record_success()
        self._store(segment, value)
        return True

    def _store(self, segment: CacheSegment, value: Any) -> None:
        with self._lock:
            if segment is CacheSegment.ORGANISATION:
                self._organisation = value
            elif segment is CacheSegment.TEAMS:
                self._teams = tuple(value)
            else:
                self._projects = tuple(value)
            self.refresh_state.mark_refreshed(segment, self._clock())

    async def refresh_organisation(self, client: SentryRESTClient, organisation_name: str, ttl: int) -> bool:
        return await self.refresh_if_stale(
            CacheSegment.ORGANISATION, ttl, lambda: client.get_organisation(organisation_name)
        )

    async def refresh_teams(self, client: SentryRESTClient, ttl: int) -> bool:
        organisation = self.organisation
        if organisation is None:
            logger.warning("No organisation resolved yet, skipping teams refresh")
            return False
        return await self.refresh_if_stale(CacheSegment.TEAMS, ttl, lambda: client.get_organisation_teams(organisation))

    async def refresh_projects(self, client: SentryRESTClient, ttl: int) -> bool:
        organisation = self.organisation
        if organisation is None:
            logger.warning("No organisation resolved yet, skipping projects refresh")
            return False
        return await self.refresh_if_stale(CacheSegment.PROJECTS, ttl, lambda: client.get_org_projects(organisation))

    async def refresh_all(self, client: SentryRESTClient, organisation_name: str, ttls: CacheTTLs) -> None:
        """Refresh organisation, then teams, then projects; each gated by its own TTL."""
        await self.refresh_organisation(client, organisation_name, ttls.organisation)
        await self.refresh_teams(client, ttls.teams)
        await self.refresh_projects(client, ttls.projects)
