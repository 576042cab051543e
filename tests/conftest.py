"""
Pytest configuration and shared fixtures

Provides an in-memory Sentry client, a controllable clock and a sample
organisation hierarchy:

    acme
    ├── team core  -> api, worker
    └── team web   -> frontend, ghost (ghost is not in the project list)
    projects: api, worker, frontend, orphan (orphan belongs to no team)
"""

from unittest.mock import AsyncMock

import pytest

from sentry_exporter.domain.sentry import Organisation, Project, QueryKind, StatBucket, Team


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSentryClient:
    """
    In-memory stand-in for SentryRESTClient.

    ``stats`` maps (project_slug, QueryKind) to a bucket list, or to an
    exception that every call for that pair raises. Pairs not in the map
    return no buckets.
    """

    def __init__(self, organisation=None, teams=(), projects=(), stats=None):
        self.organisation = organisation
        self.teams = list(teams)
        self.projects = list(projects)
        self.stats = dict(stats or {})
        self.organisation_error: Exception | None = None
        self.teams_error: Exception | None = None
        self.projects_error: Exception | None = None
        self.calls: list[str] = []
        self.stat_calls: list[tuple[str, QueryKind, float, float]] = []

    async def __aenter__(self) -> "FakeSentryClient":
        return self

    async def __aexit__(self, *args) -> None:
        return None

    async def get_organisation(self, slug: str) -> Organisation:
        self.calls.append("organisation")
        if self.organisation_error:
            raise self.organisation_error
        return self.organisation

    async def get_organisation_teams(self, org: Organisation) -> list[Team]:
        self.calls.append("teams")
        if self.teams_error:
            raise self.teams_error
        return list(self.teams)

    async def get_org_projects(self, org: Organisation) -> list[Project]:
        self.calls.append("projects")
        if self.projects_error:
            raise self.projects_error
        return list(self.projects)

    async def get_project_stats(self, org, project, query_kind, since, until, resolution="10s"):
        self.stat_calls.append((project.slug, query_kind, since, until))
        outcome = self.stats.get((project.slug, query_kind), [])
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


# ===== Domain Model Fixtures =====


@pytest.fixture
def organisation():
    return Organisation(slug="acme", name="Acme Corp")


@pytest.fixture
def teams():
    return [
        Team(slug="core", name="Core", project_slugs=("api", "worker")),
        Team(slug="web", name="Web", project_slugs=("frontend", "ghost")),
    ]


@pytest.fixture
def projects():
    return [
        Project(slug="api", name="API"),
        Project(slug="worker", name="Worker"),
        Project(slug="frontend", name="Frontend"),
        Project(slug="orphan", name="Orphan"),
    ]


@pytest.fixture
def sample_buckets():
    return [StatBucket(timestamp=1_700_000_000, count=3), StatBucket(timestamp=1_700_000_010, count=7)]


# ===== Infrastructure Fixtures =====


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Awaitable sleep that returns immediately and records its calls."""
    return AsyncMock(return_value=None)


@pytest.fixture
def fake_client(organisation, teams, projects):
    return FakeSentryClient(organisation=organisation, teams=teams, projects=projects)


@pytest.fixture
def make_client():
    """Factory for FakeSentryClient instances with custom data."""
    return FakeSentryClient
