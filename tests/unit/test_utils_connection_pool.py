"""Tests for repo_converge.utils.connection_pool module."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from repo_converge.utils.connection_pool import (
    ConnectionPoolManager,
    HTTPConnectionPool,
    close_all_pools,
    get_pool,
)


class TestHTTPConnectionPool:
    """Tests for HTTPConnectionPool class."""

    def test_init_defaults(self):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com/api/v4")

        assert pool.base_url == "https://gitlab.example.com/api/v4"
        assert pool.max_connections == 10
        assert pool.max_keepalive_connections == 5
        assert pool.timeout == 30.0
        assert pool.headers == {}
        assert pool._client is None

    @pytest.mark.asyncio
    async def test_initialize_creates_client_with_http2(self):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com", headers={"PRIVATE-TOKEN": "t"})

        with patch("httpx.AsyncClient") as mock_client:
            await pool.initialize()

        kwargs = mock_client.call_args.kwargs
        assert kwargs["base_url"] == "https://gitlab.example.com"
        assert kwargs["http2"] is True
        assert kwargs["headers"] == {"PRIVATE-TOKEN": "t"}

    @pytest.mark.asyncio
    async def test_initialize_idempotent(self):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com")

        with patch("httpx.AsyncClient") as mock_client:
            await pool.initialize()
            await pool.initialize()

        assert mock_client.call_count == 1

    @pytest.mark.asyncio
    async def test_close_clears_client(self):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com")
        client = MagicMock()
        client.aclose = AsyncMock()
        pool._client = client

        await pool.close()

        client.aclose.assert_awaited_once()
        assert pool._client is None

    @pytest.mark.asyncio
    async def test_close_when_not_initialized(self):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com")

        await pool.close()

        assert pool._client is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["get", "post", "put"])
    async def test_request_auto_initializes(self, method):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com")
        response = httpx.Response(200, json={})
        client = MagicMock()
        client.request = AsyncMock(return_value=response)

        with patch("httpx.AsyncClient", return_value=client):
            result = await getattr(pool, method)("/projects", params={"page": "1"})

        assert result is response
        client.request.assert_awaited_once_with(method.upper(), "/projects", params={"page": "1"})

    @pytest.mark.asyncio
    async def test_request_logs_status(self):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com")
        client = MagicMock()
        client.request = AsyncMock(return_value=httpx.Response(404))
        pool._client = client

        with patch("repo_converge.utils.connection_pool.log") as mock_log:
            response = await pool.get("/projects/1")

        assert response.status_code == 404
        mock_log.debug.assert_called_once_with("http_request", method="GET", path="/projects/1", status_code=404)

    @pytest.mark.asyncio
    async def test_concurrent_initialization(self):
        pool = HTTPConnectionPool(base_url="https://gitlab.example.com")

        with patch("httpx.AsyncClient") as mock_client:
            await asyncio.gather(*(pool.initialize() for _ in range(5)))

        assert mock_client.call_count == 1


class TestConnectionPoolManager:
    """Tests for ConnectionPoolManager class."""

    @pytest.mark.asyncio
    async def test_get_pool_returns_existing(self):
        manager = ConnectionPoolManager()

        with patch("httpx.AsyncClient"):
            first = await manager.get_pool("gitlab", "https://gitlab.example.com")
            second = await manager.get_pool("gitlab", "https://other.example.com")

        assert first is second
        assert first.base_url == "https://gitlab.example.com"

    @pytest.mark.asyncio
    async def test_get_pool_separates_names(self):
        manager = ConnectionPoolManager()

        with patch("httpx.AsyncClient"):
            first = await manager.get_pool("a", "https://a.example.com")
            second = await manager.get_pool("b", "https://b.example.com")

        assert first is not second

    @pytest.mark.asyncio
    async def test_close_all(self):
        manager = ConnectionPoolManager()
        client = MagicMock()
        client.aclose = AsyncMock()

        with patch("httpx.AsyncClient", return_value=client):
            await manager.get_pool("a", "https://a.example.com")
            await manager.get_pool("b", "https://b.example.com")
        await manager.close_all()

        assert client.aclose.await_count == 2
        assert manager._pools == {}


class TestGlobalPools:
    """Tests for the module-level get_pool/close_all_pools helpers."""

    @pytest.mark.asyncio
    async def test_get_pool_returns_same_instance(self):
        client = MagicMock()
        client.aclose = AsyncMock()

        with patch("httpx.AsyncClient", return_value=client):
            first = await get_pool("test-global", "https://gitlab.example.com", headers={"X": "1"})
            second = await get_pool("test-global", "https://gitlab.example.com")

        assert first is second
        assert first.headers == {"X": "1"}
        await close_all_pools()
        client.aclose.assert_awaited_once()
