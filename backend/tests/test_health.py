"""Health endpoint smoke test."""

import pytest
from httpx import ASGITransport, AsyncClient

from medsafe.main import app


@pytest.mark.asyncio
async def test_healthcheck_returns_ok() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"] == "Care Home Medication Safety API"
    assert response.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_protected_routes_require_bearer_token() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        missing = await client.post(
            "/api/v1/identifiers/validate", json={"identifier": "9434765919"}
        )
        garbage = await client.post(
            "/api/v1/identifiers/validate",
            json={"identifier": "9434765919"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
    assert missing.status_code == 401
    assert garbage.status_code == 401
