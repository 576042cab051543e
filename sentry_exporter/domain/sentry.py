"""
Sentry domain models

Type-safe snapshots of the Sentry organisation hierarchy and its error stats:
    - Organisation, Team, Project: hierarchy snapshots (replaced wholesale on refresh)
    - QueryKind: error-count categories tracked per project
    - StatBucket, ScalarStat: raw bucketed counts and their aggregate
    - CacheSegment, CacheTTLs, RefreshState: cache partitions and their freshness

Usage:
    from sentry_exporter.domain.sentry import Project, QueryKind, ScalarStat

    stat = ScalarStat.from_buckets("api", QueryKind.RECEIVED, buckets)
    print(f"{stat.project_slug}/{stat.query_kind.value}: {stat.value}")
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class QueryKind(str, Enum):
    """Error-count categories reported by the Sentry project stats endpoint."""

    RECEIVED = "received"
    REJECTED = "rejected"
    BLACKLISTED = "blacklisted"
    GENERATED = "generated"


class CacheSegment(str, Enum):
    """Independently TTL-gated partitions of the hierarchy cache."""

    ORGANISATION = "organisation"
    TEAMS = "teams"
    PROJECTS = "projects"


@dataclass(frozen=True)
class Organisation:
    """
    Sentry organisation.

    Attributes:
        slug: URL-safe identifier used in API paths and metric labels
        name: Display name
    """

    slug: str
    name: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Organisation":
        """
        Build an Organisation from a Sentry API payload.

        Raises:
            ValueError: If the payload has no slug
        """
        slug = data.get("slug")
        if not slug:
            raise ValueError("organisation payload is missing 'slug'")
        return cls(slug=slug, name=data.get("name") or slug)


@dataclass(frozen=True)
class Project:
    """
    Sentry project.

    Attributes:
        slug: URL-safe identifier used in API paths and metric labels
        name: Display name
    """

    slug: str
    name: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Project":
        """Build a Project from a Sentry API payload."""
        slug = data.get("slug")
        if not slug:
            raise ValueError("project payload is missing 'slug'")
        return cls(slug=slug, name=data.get("name") or slug)


@dataclass(frozen=True)
class Team:
    """
    Sentry team and the projects it owns.

    Project references are kept by slug only. They are reconciled against the
    organisation-wide project list at collection time, so a reference to a
    slug missing from that list never triggers a stat fetch.

    Attributes:
        slug: URL-safe identifier
        name: Display name
        project_slugs: Slugs of owned projects, in API order
    """

    slug: str
    name: str = ""
    project_slugs: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Team":
        """
        Build a Team from a Sentry API payload.

        The organisation teams endpoint embeds a ``projects`` array on each team.

        Example:
            >>> Team.from_api({"slug": "core", "projects": [{"slug": "api"}]}).project_slugs
            ('api',)
        """
        slug = data.get("slug")
        if not slug:
            raise ValueError("team payload is missing 'slug'")
        project_slugs = tuple(p["slug"] for p in data.get("projects") or [] if p.get("slug"))
        return cls(slug=slug, name=data.get("name") or slug, project_slugs=project_slugs)

    def owns(self, project_slug: str) -> bool:
        return project_slug in self.project_slugs


@dataclass(frozen=True)
class StatBucket:
    """
    One sub-interval of a project stats response.

    Attributes:
        timestamp: Unix time at the start of the bucket
        count: Number of events in the bucket (never negative or NaN)
    """

    timestamp: int
    count: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.count) or self.count < 0:
            raise ValueError(f"bucket count must be a finite non-negative number, got {self.count}")

    @classmethod
    def from_api(cls, pair: list[Any] | tuple[Any, ...]) -> "StatBucket":
        """
        Build a StatBucket from a ``[timestamp, count]`` pair.

        Raises:
            ValueError: If the pair is malformed
        """
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError(f"stat bucket must be a [timestamp, count] pair, got {pair!r}")
        return cls(timestamp=int(pair[0]), count=float(pair[1]))


@dataclass(frozen=True)
class ScalarStat:
    """
    Error count for one (project, query kind) summed over the lookback window.

    Attributes:
        project_slug: Project the count belongs to
        query_kind: Category of the count
        value: Sum of all bucket counts in the window
    """

    project_slug: str
    query_kind: QueryKind
    value: float

    @classmethod
    def from_buckets(cls, project_slug: str, query_kind: QueryKind, buckets: Iterable[StatBucket]) -> "ScalarStat":
        """
        Reduce buckets to a single count.

        An empty bucket list reduces to 0.0. The sum does not depend on bucket order.

        Example:
            >>> ScalarStat.from_buckets("api", QueryKind.RECEIVED, [StatBucket(20, 7), StatBucket(10, 3)]).value
            10.0
        """
        return cls(project_slug=project_slug, query_kind=query_kind, value=math.fsum(b.count for b in buckets))


@dataclass(frozen=True)
class CacheTTLs:
    """
    Maximum age, in seconds, of each cached hierarchy segment.

    Defaults: organisation daily, teams hourly, projects every ten minutes.
    """

    organisation: int = 86400
    teams: int = 3600
    projects: int = 600

    def for_segment(self, segment: CacheSegment) -> int:
        return int(getattr(self, segment.value))


@dataclass
class RefreshState:
    """
    Unix time of the last successful refresh of each cache segment.

    ``errors`` marks the start of the next stat lookback window and only moves
    once a full fan-out has been joined. A value of 0.0 means "never".
    Every field only ever moves forward in time.
    """

    organisation: float = 0.0
    teams: float = 0.0
    projects: float = 0.0
    errors: float = 0.0

    def last_refresh(self, segment: CacheSegment) -> float:
        return float(getattr(self, segment.value))

    def mark_refreshed(self, segment: CacheSegment, when: float) -> None:
        setattr(self, segment.value, max(self.last_refresh(segment), when))

    def advance_error_scan(self, when: float) -> None:
        self.errors = max(self.errors, when)
