"""
Async Secure HTTP Client Wrapper

Provides async HTTP GET with enforced TLS verification, timeouts and
connection pooling. Built on httpx so that a whole stat fan-out can share
one pool of connections.

Usage:
    from sentry_exporter.async_http_client import AsyncSecureHTTPClient

    async with AsyncSecureHTTPClient(timeout=10) as client:
        response = await client.get(url, headers={"Authorization": "Bearer ..."})

Security Features:
    - TLS verification always enabled (verify=True)
    - Default 30-second timeout on all requests
"""

import httpx


class AsyncSecureHTTPClient:
    """
    Async HTTP client with enforced TLS verification and connection pooling.

    Features:
    - Context manager for automatic connection cleanup
    - Connection pooling (configurable max connections)
    - Optional HTTP/2 support (requires the ``h2`` package)
    - Enforced TLS verification
    - Request timeouts
    """

    DEFAULT_TIMEOUT = 30  # seconds
    DEFAULT_MAX_CONNECTIONS = 100
    DEFAULT_MAX_KEEPALIVE = 20

    def __init__(
        self,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections: int = DEFAULT_MAX_KEEPALIVE,
        timeout: float = DEFAULT_TIMEOUT,
        http2: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize async HTTP client.

        Args:
            max_connections: Maximum number of concurrent connections (default: 100)
            max_keepalive_connections: Max persistent connections (default: 20)
            timeout: Default timeout in seconds (default: 30)
            http2: Enable HTTP/2 support (default: False)
            transport: Custom transport, e.g. httpx.MockTransport in tests
        """
        self.limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_keepalive_connections)
        self.timeout = httpx.Timeout(timeout)
        self.http2 = http2
        self.transport = transport
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "AsyncSecureHTTPClient":
        """Context manager entry - create async client"""
        self.client = httpx.AsyncClient(
            limits=self.limits,
            timeout=self.timeout,
            verify=True,  # CRITICAL: Force TLS verification
            http2=self.http2,
            follow_redirects=True,
            transport=self.transport,
        )
        return self

    async def __aexit__(self, *args) -> None:
        """Context manager exit - close connections"""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """
        Async GET request with TLS verification enforced.

        Args:
            url: URL to fetch
            **kwargs: Additional arguments to pass to httpx.AsyncClient.get()

        Returns:
            httpx.Response: HTTP response

        Raises:
            RuntimeError: If used outside ``async with``
        """
        if not self.client:
            raise RuntimeError("Client not initialized. Use 'async with AsyncSecureHTTPClient()' context manager")

        kwargs.setdefault("timeout", self.timeout)
        return await self.client.get(url, **kwargs)
