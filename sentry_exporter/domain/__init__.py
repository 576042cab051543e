"""
Domain Models - Type-safe data structures for the Sentry hierarchy and stats

Usage:
    from sentry_exporter.domain import Organisation, Project, QueryKind, Team

    team = Team(slug="core", project_slugs=("api", "worker"))
    if team.owns("api"):
        print(f"{team.slug} owns api")
"""

from .sentry import (
    CacheSegment,
    CacheTTLs,
    Organisation,
    Project,
    QueryKind,
    RefreshState,
    ScalarStat,
    StatBucket,
    Team,
)

__all__ = [
    # Hierarchy
    "Organisation",
    "Team",
    "Project",
    # Stats
    "QueryKind",
    "StatBucket",
    "ScalarStat",
    # Cache bookkeeping
    "CacheSegment",
    "CacheTTLs",
    "RefreshState",
]
