"""
Secure Configuration Management

Provides centralized, validated configuration for the exporter.
Values come from CLI overrides, then ``SENTRY_EXPORTER_*`` environment
variables (a ``.env`` file is loaded first), then defaults.

Usage:
    from sentry_exporter.secure_config import SecureConfig

    config = SecureConfig()
    sentry_config = config.get_sentry_config()
    exporter_config = config.get_exporter_config()

Security Features:
    - Fail-fast on missing/invalid configuration
    - Placeholder detection (e.g., "your_token_here")
    - No default for credentials

Raises:
    ConfigurationError: If configuration is missing or invalid
"""

import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv

from sentry_exporter.domain.sentry import CacheTTLs

ENV_PREFIX = "SENTRY_EXPORTER_"
DEFAULT_API_URL = "https://sentry.io/api/0/"
DEFAULT_LISTEN_ADDRESS = ":9142"


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


@dataclass
class SentryConfig:
    """
    Validated Sentry API configuration.
    """

    token: str
    organisation_name: str
    api_url: str = DEFAULT_API_URL
    timeout: int = 30

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """
        Validate Sentry configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not self.token:
            raise ConfigurationError("SENTRY_EXPORTER_TOKEN is required")

        if len(self.token) < 20:
            raise ConfigurationError(
                f"SENTRY_EXPORTER_TOKEN appears invalid (too short: {len(self.token)} chars, expected >=20)"
            )

        placeholders = ["your_token", "example", "placeholder", "xxx", "replace_me"]
        if any(placeholder in self.token.lower() for placeholder in placeholders):
            raise ConfigurationError("SENTRY_EXPORTER_TOKEN contains a placeholder value - please set a real token")

        if not self.organisation_name:
            raise ConfigurationError("SENTRY_EXPORTER_ORGANISATION_NAME is required")

        if not re.match(r"^[a-zA-Z0-9_\-]+$", self.organisation_name):
            raise ConfigurationError(
                f"SENTRY_EXPORTER_ORGANISATION_NAME must be an organisation slug: {self.organisation_name}"
            )

        if not self.api_url.startswith(("https://", "http://")):
            raise ConfigurationError(f"SENTRY_EXPORTER_API_URL must be an http(s) URL: {self.api_url}")

        if self.timeout <= 0:
            raise ConfigurationError(f"SENTRY_EXPORTER_TIMEOUT must be positive: {self.timeout}")


@dataclass
class ExporterConfig:
    """
    Validated exporter behaviour: cache TTLs, include filters, listen address.
    """

    ttl_organisation: int = 86400
    ttl_teams: int = 3600
    ttl_projects: int = 600
    include_projects: tuple[str, ...] = ()
    include_teams: tuple[str, ...] = ()
    listen_address: str = DEFAULT_LISTEN_ADDRESS

    def __post_init__(self):
        self._validate()

    def _validate(self):
        for name in ("ttl_organisation", "ttl_teams", "ttl_projects"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"SENTRY_EXPORTER_{name.upper()} must not be negative")

        self.listen_host_port()

    def cache_ttls(self) -> CacheTTLs:
        return CacheTTLs(organisation=self.ttl_organisation, teams=self.ttl_teams, projects=self.ttl_projects)

    def listen_host_port(self) -> tuple[str, int]:
        """
        Split ``[host]:port`` into its parts. An empty host binds all interfaces;
        IPv6 hosts are written in brackets (``[::1]:9142``).

        Raises:
            ConfigurationError: If the address has no valid port

        Example:
            >>> ExporterConfig(listen_address=":9142").listen_host_port()
            ('0.0.0.0', 9142)
        """
        host, sep, port = self.listen_address.rpartition(":")
        if not sep or not port.isdigit() or not 0 < int(port) < 65536:
            raise ConfigurationError(f"SENTRY_EXPORTER_LISTEN_ADDRESS must be [host]:port: {self.listen_address}")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        return host or "0.0.0.0", int(port)


def split_slugs(value: str | None) -> tuple[str, ...]:
    """Split a comma-delimited slug list, dropping blanks."""
    return tuple(s.strip() for s in (value or "").split(",") if s.strip())


class SecureConfig:
    """
    Centralized secure configuration manager.

    Loads and validates configuration from overrides and environment variables.
    Provides fail-fast behavior to catch configuration issues early.
    """

    def __init__(self, env_file: str | None = None, overrides: dict[str, str | None] | None = None):
        """
        Initialize configuration (loads .env file).

        Args:
            env_file: Path of a .env file (default: search for .env)
            overrides: Values that take precedence over the environment, keyed by
                lower-case setting name (e.g. {"token": "..."}); None values are ignored
        """
        load_dotenv(dotenv_path=env_file)
        self._overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    def get(self, key: str, default: str | None = None) -> str | None:
        """Look up a setting by lower-case name."""
        if key in self._overrides:
            return self._overrides[key]
        return os.getenv(f"{ENV_PREFIX}{key.upper()}", default)

    def _get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        if raw is None or raw == "":
            return default
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigurationError(f"{ENV_PREFIX}{key.upper()} must be an integer: {raw}") from e

    def get_sentry_config(self) -> SentryConfig:
        """
        Get validated Sentry API configuration.

        Raises:
            ConfigurationError: If configuration is missing or invalid
        """
        return SentryConfig(
            token=self.get("token") or "",
            organisation_name=self.get("organisation_name") or "",
            api_url=self.get("api_url") or DEFAULT_API_URL,
            timeout=self._get_int("timeout", 30),
        )

    def get_exporter_config(self) -> ExporterConfig:
        """
        Get validated exporter configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        return ExporterConfig(
            ttl_organisation=self._get_int("ttl_organisation", 86400),
            ttl_teams=self._get_int("ttl_teams", 3600),
            ttl_projects=self._get_int("ttl_projects", 600),
            include_projects=split_slugs(self.get("include_projects")),
            include_teams=split_slugs(self.get("include_teams")),
            listen_address=self.get("listen_address") or DEFAULT_LISTEN_ADDRESS,
        )
