"""
Data Collectors - Fetch error statistics from Sentry

This package contains:
    - sentry_rest_client: Sentry Web API client
    - hierarchy_cache: TTL-gated organisation/team/project snapshots
    - stat_fetcher: per-project error counts with bounded retry
    - collection_cycle: concurrent fan-out over projects and query kinds
    - prometheus_collector: exposes a cycle's result to Prometheus

A collection cycle runs on every Prometheus scrape.
"""

__all__ = []
