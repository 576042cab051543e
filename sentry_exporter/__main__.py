"""
Sentry Exporter command line

Export your Sentry error statistics to Prometheus, broken down per
organisation, team, project and query type.

Usage:
    python -m sentry_exporter --organisation acme listen --listen-address :9142
    python -m sentry_exporter --organisation acme export --include-teams core
    python -m sentry_exporter version
"""

import argparse
import sys
import threading

from prometheus_client import CollectorRegistry, generate_latest, start_http_server

from sentry_exporter import __version__
from sentry_exporter.collectors.collection_cycle import CollectionCycle, IncludeFilters
from sentry_exporter.collectors.prometheus_collector import SentryCollector
from sentry_exporter.collectors.sentry_rest_client import SentryRESTClient
from sentry_exporter.core.logging_config import LOG_FORMATS, LOG_LEVELS, get_logger, setup_logging
from sentry_exporter.secure_config import ConfigurationError, ExporterConfig, SecureConfig, SentryConfig

logger = get_logger(__name__)


def build_collection_cycle(sentry_config: SentryConfig, exporter_config: ExporterConfig) -> CollectionCycle:
    """Wire a CollectionCycle from validated configuration."""

    def client_factory() -> SentryRESTClient:
        return SentryRESTClient(
            token=sentry_config.token,
            api_url=sentry_config.api_url,
            timeout=sentry_config.timeout,
        )

    return CollectionCycle(
        client_factory=client_factory,
        organisation_name=sentry_config.organisation_name,
        ttls=exporter_config.cache_ttls(),
        filters=IncludeFilters.from_slugs(exporter_config.include_projects, exporter_config.include_teams),
    )


def build_registry(sentry_config: SentryConfig, exporter_config: ExporterConfig) -> CollectorRegistry:
    registry = CollectorRegistry()
    registry.register(SentryCollector(build_collection_cycle(sentry_config, exporter_config)))
    return registry


def run_listen(registry: CollectorRegistry, exporter_config: ExporterConfig, stop: threading.Event) -> int:
    """Serve /metrics until ``stop`` is set or the process is interrupted."""
    host, port = exporter_config.listen_host_port()
    start_http_server(port, addr=host, registry=registry)
    logger.info(f"Listening on {host}:{port}")

    try:
        stop.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


def run_export(registry: CollectorRegistry) -> int:
    """Run one collection cycle and print the exposition text."""
    sys.stdout.write(generate_latest(registry).decode("utf-8"))
    return 0


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Namespace: Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog="sentry-exporter",
        description="Export your Sentry metrics to Prometheus",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a .env file of SENTRY_EXPORTER_* settings (default: search for .env; YAML files are not read)",
    )
    parser.add_argument("--loglevel", choices=LOG_LEVELS, default="info", help="Log level (default: info)")
    parser.add_argument("--logformat", choices=LOG_FORMATS, default="text", help="Log format (default: text)")
    parser.add_argument("--token", default=None, help="Sentry token")
    parser.add_argument("--organisation", default=None, help="Sentry organisation to query for statistics")

    filters = argparse.ArgumentParser(add_help=False)
    filters.add_argument(
        "--include-projects", default=None, help="Comma-separated project slugs to export (default: all)"
    )
    filters.add_argument("--include-teams", default=None, help="Comma-separated team slugs to export (default: all)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    listen = subparsers.add_parser("listen", parents=[filters], help="Serve a /metrics endpoint for Prometheus")
    listen.add_argument("--listen-address", default=None, help="[host]:port to listen on (default: :9142)")

    subparsers.add_parser("export", parents=[filters], help="Collect once and print metrics to stdout")
    subparsers.add_parser("version", help="Print the exporter version (no build date is recorded)")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_arguments(argv)

    if args.command == "version":
        print(f"sentry-exporter {__version__}")
        return 0

    setup_logging(level=args.loglevel, json_output=args.logformat == "json")

    overrides = {
        "token": args.token,
        "organisation_name": args.organisation,
        "include_projects": args.include_projects,
        "include_teams": args.include_teams,
        "listen_address": getattr(args, "listen_address", None),
    }

    try:
        config = SecureConfig(env_file=args.config, overrides=overrides)
        sentry_config = config.get_sentry_config()
        exporter_config = config.get_exporter_config()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    registry = build_registry(sentry_config, exporter_config)

    if args.command == "listen":
        return run_listen(registry, exporter_config, threading.Event())
    return run_export(registry)


if __name__ == "__main__":
    sys.exit(main())
