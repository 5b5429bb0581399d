"""Middleware tests: request ID, rate limiting, CORS, error handling."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError


def _fake_redis(count: int) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[count, True])
    redis = MagicMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 36


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_rate_limit_fails_open_without_redis(client: AsyncClient) -> None:
    response = await client.get("/api/v1/ranks")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_headers(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr("xpl.middleware.rate_limit.get_redis", lambda: _fake_redis(1))
    response = await client.get("/api/v1/ranks")
    assert response.status_code == 200
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "99"


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr("xpl.middleware.rate_limit.get_redis", lambda: _fake_redis(101))
    response = await client.get("/api/v1/ranks")
    assert response.status_code == 429
    assert "retry-after" in response.headers
    assert "detail" in response.json()


@pytest.mark.asyncio
async def test_rate_limit_keyed_by_user(client: AsyncClient, monkeypatch) -> None:
    redis = _fake_redis(1)
    monkeypatch.setattr("xpl.middleware.rate_limit.get_redis", lambda: redis)
    await client.get("/api/v1/progress/xp", headers={"X-User-Id": "alice"})
    key = redis.pipeline.return_value.incr.call_args.args[0]
    assert key.startswith("ratelimit:user:alice:")


@pytest.mark.asyncio
async def test_rate_limit_redis_error_fails_open(client: AsyncClient, monkeypatch) -> None:
    redis = _fake_redis(1)
    redis.pipeline.return_value.execute = AsyncMock(side_effect=RedisConnectionError("down"))
    monkeypatch.setattr("xpl.middleware.rate_limit.get_redis", lambda: redis)
    response = await client.get("/api/v1/ranks")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_exempt_from_rate_limit(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr("xpl.middleware.rate_limit.get_redis", lambda: _fake_redis(10_000))
    response = await client.get("/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    response = await client.options(
        "/api/v1/ranks",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.asyncio
async def test_not_found_is_json(client: AsyncClient) -> None:
    response = await client.get("/nope")
    assert response.status_code == 404
    assert "detail" in response.json()
