"""
Shared httpx clients for hosting service REST calls.

A pool wraps one httpx.AsyncClient (HTTP/2, keep-alive) bound to an API base
URL and default headers. Pools are registered by name in a process-wide
manager so that every API client talking to the same server reuses the same
connections; the CLI closes them all when a command finishes.
"""

import asyncio
from typing import Any

import httpx
import structlog

log = structlog.get_logger(__name__)

KEEPALIVE_EXPIRY = 30.0


class HTTPConnectionPool:
    """One lazily created httpx.AsyncClient for an API base URL.

    Attributes:
        base_url: Prefix for every request path
        headers: Default headers (authentication, content type)
    """

    def __init__(
        self,
        base_url: str,
        max_connections: int = 10,
        max_keepalive_connections: int = 5,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url
        self.max_connections = max_connections
        self.max_keepalive_connections = max_keepalive_connections
        self.timeout = timeout
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the underlying client unless it already exists."""
        async with self._lock:
            if self._client is not None:
                return
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                limits=httpx.Limits(
                    max_connections=self.max_connections,
                    max_keepalive_connections=self.max_keepalive_connections,
                    keepalive_expiry=KEEPALIVE_EXPIRY,
                ),
                timeout=self.timeout,
                http2=True,
                headers=self.headers,
            )
            log.debug("http_pool_opened", base_url=self.base_url, max_connections=self.max_connections)

    async def close(self) -> None:
        async with self._lock:
            if self._client is None:
                return
            await self._client.aclose()
            self._client = None
            log.debug("http_pool_closed", base_url=self.base_url)

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request, opening the client on first use.

        Transport errors (httpx.TransportError) propagate to the caller so
        that read paths can retry them.
        """
        if self._client is None:
            await self.initialize()
        assert self._client is not None
        response = await self._client.request(method, path, **kwargs)
        log.debug("http_request", method=method, path=path, status_code=response.status_code)
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)


class ConnectionPoolManager:
    """Registry of pools by name.

    The first registration of a name wins; later calls with the same name
    return that pool whatever base URL or headers they pass.
    """

    def __init__(self) -> None:
        self._pools: dict[str, HTTPConnectionPool] = {}
        self._lock = asyncio.Lock()

    async def get_pool(
        self,
        name: str,
        base_url: str,
        max_connections: int = 10,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ) -> HTTPConnectionPool:
        async with self._lock:
            pool = self._pools.get(name)
            if pool is None:
                pool = HTTPConnectionPool(
                    base_url=base_url,
                    max_connections=max_connections,
                    timeout=timeout,
                    headers=headers,
                )
                await pool.initialize()
                self._pools[name] = pool
                log.debug("http_pool_registered", name=name, base_url=base_url)
            return pool

    async def close_all(self) -> None:
        async with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            await pool.close()
        if pools:
            log.debug("http_pools_closed", count=len(pools))


_pool_manager = ConnectionPoolManager()


async def get_pool(
    name: str,
    base_url: str,
    max_connections: int = 10,
    timeout: float = 30.0,
    headers: dict[str, str] | None = None,
) -> HTTPConnectionPool:
    """Get (or create) the process-wide pool registered as ``name``."""
    return await _pool_manager.get_pool(
        name=name,
        base_url=base_url,
        max_connections=max_connections,
        timeout=timeout,
        headers=headers,
    )


async def close_all_pools() -> None:
    """Close and forget every process-wide pool."""
    await _pool_manager.close_all()
