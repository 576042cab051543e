"""
Sentry Exporter - Sentry error statistics for Prometheus

This package queries the Sentry API for per-project error counts and exposes
them as Prometheus metrics.

Package Structure:
    - core: Infrastructure (logging, API call counters)
    - domain: Domain models (Organisation, Team, Project, stats)
    - collectors: Sentry REST client, hierarchy cache, stat fan-out, Prometheus collector
    - utils: Error handling and retry helpers
"""

__version__ = "0.3.0"
__author__ = "Sentry Exporter Maintainers"
