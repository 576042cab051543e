"""
Prometheus collector for Sentry error statistics.

Bridges a CollectionCycle to ``prometheus_client``: every scrape runs one
collection cycle and turns its result into metric families.

Exported series:
    - sentry_project_info{organisation, team, project} = 1
    - sentry_project_errors{organisation, project, query} = summed error count
    - sentry_api_calls{status} = Sentry API calls made during the cycle
"""

from collections.abc import Iterator

from prometheus_client.core import GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

from sentry_exporter.collectors.collection_cycle import CollectionCycle, CycleResult
from sentry_exporter.core import get_logger

logger = get_logger(__name__)

PROJECT_INFO = "sentry_project_info"
PROJECT_ERRORS = "sentry_project_errors"
API_CALLS = "sentry_api_calls"


class SentryCollector(Collector):
    """
    Prometheus collector backed by a CollectionCycle.

    ``describe`` is static so that registering the collector does not hit the
    Sentry API; ``collect`` blocks until the whole fan-out has joined.
    """

    def __init__(self, cycle: CollectionCycle):
        self._cycle = cycle

    def describe(self) -> Iterator[Metric]:
        yield from self._families(None)

    def collect(self) -> Iterator[Metric]:
        result = self._cycle.run()
        yield from self._families(result)

    @staticmethod
    def _families(result: CycleResult | None) -> Iterator[Metric]:
        project_info = GaugeMetricFamily(
            PROJECT_INFO,
            "Informational series so that Projects can be linked to Teams",
            labels=["organisation", "team", "project"],
        )
        for linkage in result.linkages if result else ():
            project_info.add_metric([linkage.organisation, linkage.team, linkage.project], 1)
        yield project_info

        project_errors = GaugeMetricFamily(
            PROJECT_ERRORS,
            "Records the number of errors of a particular type for the specific project",
            labels=["organisation", "project", "query"],
        )
        if result is not None and result.organisation is not None:
            for stat in result.scalars:
                project_errors.add_metric([result.organisation, stat.project_slug, stat.query_kind.value], stat.value)
        yield project_errors

        api_calls = GaugeMetricFamily(
            API_CALLS,
            "Records the number of calls made from the exporter to the Sentry API",
            labels=["status"],
        )
        if result is not None:
            api_calls.add_metric(["success"], result.api_calls_success)
            api_calls.add_metric(["failure"], result.api_calls_failure)
        yield api_calls
