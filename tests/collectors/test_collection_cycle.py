"""
Tests for the collection cycle

Tests cover:
- Linkage emission from team project references
- Include filter composition (project AND team)
- Concurrent fan-out over projects x query kinds
- Partial failure isolation
- Lookback window continuity between cycles
- Per-cycle API call counters
- Serialization of overlapping cycles
"""

import asyncio
import threading

import httpx
import pytest

from sentry_exporter.collectors.collection_cycle import CollectionCycle, IncludeFilters, Linkage
from sentry_exporter.collectors.sentry_rest_client import SentryNotFoundError, SentryRESTClient, SentryTransientError
from sentry_exporter.domain.sentry import CacheTTLs, Organisation, Project, QueryKind, StatBucket, Team


@pytest.fixture
def make_cycle(clock, no_sleep):
    def factory(client, filters=None, ttls=None):
        return CollectionCycle(
            client_factory=lambda: client,
            organisation_name="acme",
            ttls=ttls,
            filters=filters,
            clock=clock,
            sleep=no_sleep,
        )

    return factory


def fetched_pairs(client) -> set[tuple[str, QueryKind]]:
    return {(slug, query) for slug, query, _, _ in client.stat_calls}


class TestIncludeFilters:
    """Tests for IncludeFilters"""

    def test_empty_filters_include_everything(self, teams):
        filters = IncludeFilters()

        assert filters.includes_project("anything")
        assert filters.includes_team("anything")
        assert filters.reachable_from_included_team("orphan", teams)

    def test_from_slugs_strips_blanks(self):
        filters = IncludeFilters.from_slugs(projects=[" api ", "", "worker"], teams=[""])

        assert filters.projects == frozenset({"api", "worker"})
        assert filters.teams == frozenset()

    def test_reachable_only_through_included_team(self, teams):
        filters = IncludeFilters.from_slugs(teams=["core"])

        assert filters.reachable_from_included_team("api", teams)
        assert not filters.reachable_from_included_team("frontend", teams)
        assert not filters.reachable_from_included_team("orphan", teams)


class TestLinkages:
    """Tests for team/project linkage emission"""

    def test_single_team_with_two_projects(self, make_cycle, make_client):
        client = make_client(
            organisation=Organisation(slug="acme"),
            teams=[Team(slug="core", project_slugs=("api", "worker"))],
            projects=[Project(slug="api"), Project(slug="worker")],
        )

        result = make_cycle(client).run()

        assert result.linkages == [Linkage("acme", "core", "api"), Linkage("acme", "core", "worker")]

    def test_linkages_use_team_reference_view(self, make_cycle, fake_client):
        result = make_cycle(fake_client).run()

        assert Linkage("acme", "web", "ghost") in result.linkages
        assert len(result.linkages) == 4

    def test_filters_compose(self, make_cycle, fake_client):
        filters = IncludeFilters.from_slugs(projects=["worker"], teams=["core"])

        result = make_cycle(fake_client, filters=filters).run()

        assert result.linkages == [Linkage("acme", "core", "worker")]
        assert fetched_pairs(fake_client) == {("worker", q) for q in QueryKind}


class TestFanOut:
    """Tests for the concurrent stat fan-out"""

    def test_fetches_every_listed_project_and_query(self, make_cycle, fake_client):
        result = make_cycle(fake_client).run()

        assert fetched_pairs(fake_client) == {
            (slug, q) for slug in ("api", "worker", "frontend", "orphan") for q in QueryKind
        }
        assert len(result.scalars) == 16

    def test_team_reference_missing_from_project_list_is_inert(self, make_cycle, fake_client):
        make_cycle(fake_client).run()

        assert not any(slug == "ghost" for slug, _ in fetched_pairs(fake_client))

    def test_project_filter_alone(self, make_cycle, fake_client):
        make_cycle(fake_client, filters=IncludeFilters.from_slugs(projects=["orphan"])).run()

        assert fetched_pairs(fake_client) == {("orphan", q) for q in QueryKind}

    def test_team_filter_alone(self, make_cycle, fake_client):
        make_cycle(fake_client, filters=IncludeFilters.from_slugs(teams=["web"])).run()

        assert fetched_pairs(fake_client) == {("frontend", q) for q in QueryKind}

    def test_project_in_filter_but_outside_included_teams_is_omitted(self, make_cycle, fake_client):
        filters = IncludeFilters.from_slugs(projects=["api", "frontend"], teams=["web"])

        result = make_cycle(fake_client, filters=filters).run()

        assert {s.project_slug for s in result.scalars} == {"frontend"}

    def test_scalars_carry_summed_counts(self, make_cycle, fake_client):
        fake_client.stats[("api", QueryKind.RECEIVED)] = [StatBucket(timestamp=1, count=3), StatBucket(timestamp=2, count=7)]

        result = make_cycle(fake_client).run()

        by_key = {(s.project_slug, s.query_kind): s.value for s in result.scalars}
        assert by_key[("api", QueryKind.RECEIVED)] == 10.0
        assert by_key[("worker", QueryKind.RECEIVED)] == 0.0
        assert result.organisation == "acme"

    def test_failed_fetch_is_isolated(self, make_cycle, fake_client, no_sleep):
        fake_client.stats[("api", QueryKind.RECEIVED)] = SentryTransientError("HTTP 500")

        result = make_cycle(fake_client).run()

        keys = {(s.project_slug, s.query_kind) for s in result.scalars}
        assert ("api", QueryKind.RECEIVED) not in keys
        assert len(result.scalars) == 15
        # 3 hierarchy calls + 15 stat calls succeed; 3 attempts fail
        assert (result.api_calls_success, result.api_calls_failure) == (18, 3)
        assert no_sleep.await_count == 2

    def test_undecodable_stats_are_retried_and_counted(self, clock, no_sleep):
        stat_requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/stats/"):
                stat_requests.append(path)
                return httpx.Response(200, json=[{"ts": 1, "n": 2}])
            if path.endswith("/teams/"):
                return httpx.Response(200, json=[])
            if path.endswith("/projects/"):
                return httpx.Response(200, json=[{"slug": "api"}])
            return httpx.Response(200, json={"slug": "acme"})

        cycle = CollectionCycle(
            client_factory=lambda: SentryRESTClient(
                token="sntrys_0123456789abcdefghij",
                api_url="https://sentry.example.com/api/0/",
                transport=httpx.MockTransport(handler),
            ),
            organisation_name="acme",
            clock=clock,
            sleep=no_sleep,
        )

        result = cycle.run()

        assert result.scalars == []
        assert len(stat_requests) == 12
        # 3 hierarchy successes; 4 queries x 3 attempts fail
        assert (result.api_calls_success, result.api_calls_failure) == (3, 12)
        assert no_sleep.await_count == 8

    def test_fetches_run_concurrently(self, make_cycle, make_client, organisation, projects):
        in_flight = {"now": 0, "max": 0}

        class SlowClient(make_client):
            async def get_project_stats(self, org, project, query_kind, since, until, resolution="10s"):
                in_flight["now"] += 1
                in_flight["max"] = max(in_flight["max"], in_flight["now"])
                await asyncio.sleep(0.01)
                in_flight["now"] -= 1
                return []

        client = SlowClient(organisation=organisation, teams=[], projects=projects)

        result = make_cycle(client).run()

        assert len(result.scalars) == 16
        assert in_flight["max"] == 16


class TestWindowAndLifecycle:
    """Tests for lookback windows, counters and organisation handling"""

    def test_first_cycle_uses_bootstrap_floor(self, make_cycle, fake_client, clock):
        start = clock.now

        make_cycle(fake_client).run()

        assert {(since, until) for _, _, since, until in fake_client.stat_calls} == {(start - 10, start)}

    def test_windows_are_contiguous(self, make_cycle, fake_client, clock):
        cycle = make_cycle(fake_client)
        cycle.run()
        first_end = clock.now
        fake_client.stat_calls.clear()

        clock.advance(30)
        cycle.run()

        assert {(since, until) for _, _, since, until in fake_client.stat_calls} == {(first_end, first_end + 30)}
        assert cycle.cache.refresh_state.errors == first_end + 30

    def test_counters_cover_only_the_current_cycle(self, make_cycle, fake_client, clock):
        cycle = make_cycle(fake_client)
        cycle.run()
        clock.advance(15)

        result = cycle.run()

        # Hierarchy still fresh: only the 16 stat calls count
        assert (result.api_calls_success, result.api_calls_failure) == (16, 0)

    def test_missing_organisation_skips_export(self, make_cycle, fake_client):
        fake_client.organisation_error = SentryNotFoundError("Resource not found", status_code=404)
        cycle = make_cycle(fake_client)

        result = cycle.run()

        assert result.organisation is None
        assert result.linkages == []
        assert result.scalars == []
        assert (result.api_calls_success, result.api_calls_failure) == (0, 1)
        assert fake_client.stat_calls == []
        assert cycle.cache.refresh_state.errors == 0.0

    def test_stale_hierarchy_used_when_refresh_fails(self, make_cycle, fake_client, clock):
        cycle = make_cycle(fake_client, ttls=CacheTTLs(organisation=0, teams=0, projects=0))
        cycle.run()
        fake_client.teams_error = SentryTransientError("HTTP 503")
        fake_client.projects_error = SentryTransientError("HTTP 503")
        clock.advance(5)

        result = cycle.run()

        assert len(result.linkages) == 4
        assert len(result.scalars) == 16
        assert result.api_calls_failure == 2

    def test_overlapping_cycles_are_serialized(self, make_cycle, make_client, organisation, teams, projects):
        active = {"now": 0, "max": 0}
        lock = threading.Lock()

        class TrackingClient(make_client):
            async def __aenter__(self):
                with lock:
                    active["now"] += 1
                    active["max"] = max(active["max"], active["now"])
                await asyncio.sleep(0.05)
                return self

            async def __aexit__(self, *args):
                with lock:
                    active["now"] -= 1

        cycle = make_cycle(TrackingClient(organisation=organisation, teams=teams, projects=projects))
        results = []
        threads = [threading.Thread(target=lambda: results.append(cycle.run())) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 3
        assert active["max"] == 1
