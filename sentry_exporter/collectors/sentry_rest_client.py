"""
Sentry REST API Client

Provides direct access to the Sentry Web API (v0) over AsyncSecureHTTPClient.
One client instance is opened per collection cycle so that every request in
the cycle shares a connection pool.

Usage:
    from sentry_exporter.collectors.sentry_rest_client import SentryRESTClient

    async with SentryRESTClient(token="...") as client:
        org = await client.get_organisation("acme")
        teams = await client.get_organisation_teams(org)
        projects = await client.get_org_projects(org)
        buckets = await client.get_project_stats(org, projects[0], QueryKind.RECEIVED, since, until)

The client never retries. Retry policy belongs to the callers
(see StatFetcher); hierarchy refreshes are retried by the next cycle.

API Documentation:
    https://docs.sentry.io/api/
"""

from typing import Any
from urllib.parse import urlencode

import httpx

from sentry_exporter.async_http_client import AsyncSecureHTTPClient
from sentry_exporter.core import get_logger
from sentry_exporter.domain.sentry import Organisation, Project, QueryKind, StatBucket, Team

logger = get_logger(__name__)


class SentryAPIError(Exception):
    """Raised when a Sentry API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SentryNotFoundError(SentryAPIError):
    """Raised when the requested Sentry resource does not exist (HTTP 404)."""


class SentryTransientError(SentryAPIError):
    """Raised for network errors, timeouts, non-404 HTTP errors and unreadable bodies."""


class SentryRESTClient:
    """
    Sentry Web API client using direct HTTP calls.

    Features:
    - Bearer token authentication
    - Link-header pagination for organisation projects
    - Failures mapped onto SentryNotFoundError / SentryTransientError
    """

    DEFAULT_API_URL = "https://sentry.io/api/0/"
    STATS_RESOLUTION = "10s"

    def __init__(
        self,
        token: str,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize Sentry REST client.

        Args:
            token: Sentry auth token
            api_url: Base API URL (default: https://sentry.io/api/0/)
            timeout: Request timeout in seconds (default: 30)
            transport: Custom httpx transport (tests)

        Raises:
            ValueError: If token is empty
        """
        if not token:
            raise ValueError("token is required")

        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip("/") + "/"
        self.timeout = timeout or AsyncSecureHTTPClient.DEFAULT_TIMEOUT
        self.auth_header = self._build_auth_header(token)
        self._transport = transport
        self._http: AsyncSecureHTTPClient | None = None

    async def __aenter__(self) -> "SentryRESTClient":
        self._http = AsyncSecureHTTPClient(timeout=self.timeout, transport=self._transport)
        await self._http.__aenter__()
        return self

    async def __aexit__(self, *args) -> None:
        if self._http:
            await self._http.__aexit__(*args)
            self._http = None

    @staticmethod
    def _build_auth_header(token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def _build_url(self, resource: str, **params: Any) -> str:
        """
        Build a Sentry API URL with query parameters.

        Args:
            resource: Resource path relative to the API root (e.g., "organizations/acme/")
            **params: Query parameters (None values are filtered out)

        Example:
            _build_url("projects/acme/api/stats/", stat="received")
            -> "https://sentry.io/api/0/projects/acme/api/stats/?stat=received"
        """
        url = f"{self.api_url}{resource.lstrip('/')}"

        filtered_params = {k: v for k, v in params.items() if v is not None}
        if filtered_params:
            url = f"{url}?{urlencode(filtered_params)}"

        return url

    async def _get(self, url: str) -> httpx.Response:
        """
        Execute a GET request and map failures onto SentryAPIError.

        Raises:
            SentryNotFoundError: On HTTP 404
            SentryTransientError: On any other HTTP error, timeout or network error
            RuntimeError: If used outside ``async with``
        """
        if self._http is None:
            raise RuntimeError("Client not opened. Use 'async with SentryRESTClient(...)' context manager")

        try:
            response = await self._http.get(url, headers=self.auth_header)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 404:
                raise SentryNotFoundError(f"Resource not found: {url}", status_code=status_code) from e
            raise SentryTransientError(f"HTTP {status_code} from {url}", status_code=status_code) from e
        except httpx.RequestError as e:
            raise SentryTransientError(f"Request to {url} failed: {e}") from e

        return response

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise SentryTransientError(f"Invalid JSON from {response.request.url}: {e}") from e

    @staticmethod
    def _next_page_url(response: httpx.Response) -> str | None:
        """
        Return the next page URL from a Sentry ``Link`` header, if any.

        Sentry always sends a ``rel="next"`` link; ``results="true"`` marks
        whether that page actually holds data.
        """
        link = response.links.get("next")
        if not link or link.get("results") != "true":
            return None
        return link.get("url")

    # ==============================
    # Organisation APIs
    # ==============================

    async def get_organisation(self, slug: str) -> Organisation:
        """
        Get an organisation by slug.

        REST Endpoint: GET organizations/{org}/
        """
        logger.debug(f"Querying API for organisation {slug}")
        url = self._build_url(f"organizations/{slug}/")
        data = self._decode(await self._get(url))
        try:
            return Organisation.from_api(data)
        except (AttributeError, ValueError) as e:
            raise SentryTransientError(f"Unexpected organisation payload from {url}: {e}") from e

    async def get_organisation_teams(self, org: Organisation) -> list[Team]:
        """
        Get all teams of an organisation, with their project references.

        REST Endpoint: GET organizations/{org}/teams/
        """
        logger.debug(f"Querying API for teams of organisation {org.slug}")
        url = self._build_url(f"organizations/{org.slug}/teams/")
        data = self._decode(await self._get(url))
        try:
            return [Team.from_api(item) for item in data]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise SentryTransientError(f"Unexpected teams payload from {url}: {e}") from e

    async def get_org_projects(self, org: Organisation) -> list[Project]:
        """
        Get every project of an organisation, following pagination to the end.

        REST Endpoint: GET organizations/{org}/projects/

        A failure on any page aborts the whole listing; no partial list is returned.
        """
        logger.debug(f"Querying API for projects of organisation {org.slug}")
        url: str | None = self._build_url(f"organizations/{org.slug}/projects/")
        projects: list[Project] = []
        pages = 0
        seen: set[str] = set()

        while url:
            if url in seen:
                logger.warning(f"Pagination for {org.slug} projects returned a repeated page, stopping: {url}")
                break
            seen.add(url)
            response = await self._get(url)
            data = self._decode(response)
            try:
                projects.extend(Project.from_api(item) for item in data)
            except (AttributeError, TypeError, ValueError) as e:
                raise SentryTransientError(f"Unexpected projects payload from {url}: {e}") from e
            pages += 1
            url = self._next_page_url(response)

        logger.debug(f"Fetched {len(projects)} projects in {pages} page(s) for {org.slug}")
        return projects

    # ==============================
    # Stats APIs
    # ==============================

    async def get_project_stats(
        self,
        org: Organisation,
        project: Project,
        query_kind: QueryKind,
        since: float,
        until: float,
        resolution: str = STATS_RESOLUTION,
    ) -> list[StatBucket]:
        """
        Get bucketed event counts for a project.

        REST Endpoint: GET projects/{org}/{project}/stats/?stat=...&since=...&until=...&resolution=10s

        Returns:
            Buckets decoded from ``[[timestamp, count], ...]``
        """
        url = self._build_url(
            f"projects/{org.slug}/{project.slug}/stats/",
            stat=query_kind.value,
            since=int(since),
            until=int(until),
            resolution=resolution,
        )
        data = self._decode(await self._get(url))
        try:
            return [StatBucket.from_api(pair) for pair in data]
        except (KeyError, TypeError, ValueError) as e:
            raise SentryTransientError(f"Unexpected stats payload from {url}: {e}") from e
