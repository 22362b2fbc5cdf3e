from __future__ import annotations

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def test_liveness_does_not_touch_the_database(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert [component["name"] for component in body["components"]] == ["api"]


async def test_readiness_reports_database_and_signing_key(async_client: AsyncClient) -> None:
    response = await async_client.get("/ready")

    assert response.status_code == 200
    components = {component["name"]: component for component in response.json()["components"]}
    assert components["database"]["status"] == "available"
    assert "signing-keys" in components
