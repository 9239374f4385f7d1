"""Tests for the application factory, middleware, and operational endpoints.

The lifespan is not run by ASGITransport, so app.state services are never built.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.routing import APIRoute
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from src.dealreg.config import Settings
from src.dealreg.core.monitoring import route_template
from src.dealreg.main import create_app


@pytest.mark.asyncio
async def test_health_and_request_id():
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_request_id_generated_when_absent():
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/v1/health")

    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_domain_counters():
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/api/v1/health")
        resp = await client.get("/metrics")

    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert 'endpoint="/api/v1/health"' in resp.text
    assert "pricing_calculations_total" in resp.text


@pytest.mark.asyncio
async def test_metrics_label_uses_full_route_pattern():
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/api/v1/deals/pricing/p-label-check")
        resp = await client.get("/metrics")

    assert 'endpoint="/api/v1/deals/pricing/{product_id}"' in resp.text
    assert "p-label-check" not in resp.text


@pytest.mark.parametrize(
    "route_path, url_path",
    [
        ("/pricing/{product_id}", "/api/v1/deals/pricing/p1"),
        ("/api/v1/deals/pricing/{product_id}", "/api/v1/deals/pricing/p1"),
    ],
)
def test_route_template_recovers_router_prefix(route_path, url_path):
    route = APIRoute(route_path, endpoint=lambda product_id: None)
    request = Request(
        {"type": "http", "method": "GET", "path": url_path, "headers": [], "route": route}
    )

    assert route_template(request) == "/api/v1/deals/pricing/{product_id}"


def test_route_template_falls_back_to_raw_path():
    request = Request({"type": "http", "method": "GET", "path": "/nowhere", "headers": []})

    assert route_template(request) == "/nowhere"


def test_cors_origins_parsing():
    assert Settings(CORS_ALLOWED_ORIGINS="*").cors_origins() == ["*"]
    assert Settings(
        CORS_ALLOWED_ORIGINS="https://portal.example.com, https://admin.example.com"
    ).cors_origins() == ["https://portal.example.com", "https://admin.example.com"]


@pytest.mark.asyncio
async def test_readiness_degraded_until_services_built():
    app = create_app()

    transport = ASGITransport(app=app)
    with patch(
        "src.dealreg.api.v1.health._database_status",
        new=AsyncMock(return_value=(True, None)),
    ):
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/v1/health/ready")

    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"] == "ok"
    assert "evaluation_pipeline" in body["checks"]["services"]["missing"]
