"""Tests for the metrics registry and the metrics pipeline stage."""

import pytest
from httpx import AsyncClient

from app.core.metrics import MetricsRegistry
from app.main import app as asgi_app
from app.pipeline.metrics import operation_type, resource_name


def test_operation_type_and_resource_name():
    assert operation_type("GET") == "read"
    assert operation_type("patch") == "update"
    assert operation_type("OPTIONS") == "unknown"
    assert resource_name("/v1/users/{user_id}") == "users"
    assert resource_name("/v1/users/{user_id}/toggle-status") == "users"
    assert resource_name("/") == "unknown"


def test_registry_counts_and_renders():
    registry = MetricsRegistry(prefix="test")
    registry.increment_http_requests("GET", "/v1/users", 200, "t1")
    registry.increment_http_requests("GET", "/v1/users", 200, "t1")
    registry.increment_http_requests("GET", "/v1/users", 404)
    registry.observe_http_duration("GET", "/v1/users", 0.25, "t1")
    registry.observe_http_duration("GET", "/v1/users", 4.0, "t1")

    labels = {"method": "GET", "route": "/v1/users", "status_code": "200", "tenant_id": "t1"}
    timing = {"method": "GET", "route": "/v1/users", "tenant_id": "t1"}
    assert registry.sample("http_requests_total", labels) == 2
    assert registry.sample(
        "http_requests_total", {**labels, "status_code": "404", "tenant_id": "unknown"}
    ) == 1
    assert registry.sample("http_request_duration_seconds_count", timing) == 2
    assert registry.sample("http_request_duration_seconds_bucket", {**timing, "le": "0.3"}) == 1
    assert registry.sample("http_request_duration_seconds_bucket", {**timing, "le": "+Inf"}) == 2
    assert registry.sample("http_request_duration_seconds_sum", timing) == 4.25
    assert registry.total(registry.http_requests) == 3
    assert registry.total(registry.http_requests, tenant_id="t1") == 2

    text = registry.render().decode("utf-8")
    assert "# HELP test_http_requests_total Total number of HTTP requests" in text
    assert "# TYPE test_http_request_duration_seconds histogram" in text


def test_registries_do_not_share_samples():
    first, second = MetricsRegistry(), MetricsRegistry()
    first.increment_auth_attempts("success")

    assert first.sample("auth_attempts_total", {"status": "success", "method": "jwt"}) == 1
    assert second.sample("auth_attempts_total", {"status": "success", "method": "jwt"}) == 0


def test_tenant_usage_groups_operations():
    registry = MetricsRegistry()
    registry.increment_tenant_operations("t1", "read", "users")
    registry.increment_tenant_operations("t1", "read", "roles")
    registry.increment_tenant_operations("t1", "create", "users")
    registry.increment_tenant_operations("t2", "delete", "users")

    assert registry.tenant_usage("t1") == {
        "by_operation": {"read": 2, "create": 1},
        "by_resource": {"users": 2, "roles": 1},
    }
    assert registry.tenant_usage("t3") == {"by_operation": {}, "by_resource": {}}


@pytest.mark.asyncio
async def test_successful_request_recorded(client: AsyncClient, admin_headers):
    resp = await client.get("/v1/auth/me", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.headers["X-Metrics-Collected"] == "true"

    metrics = asgi_app.state.metrics
    labels = {"method": "GET", "route": "/v1/auth/me", "status_code": "200", "tenant_id": "unknown"}
    assert metrics.sample("http_requests_total", labels) == 1
    assert metrics.sample(
        "http_request_duration_seconds_count",
        {"method": "GET", "route": "/v1/auth/me", "tenant_id": "unknown"},
    ) == 1


@pytest.mark.asyncio
async def test_handler_error_counted(client: AsyncClient):
    resp = await client.get("/v1/auth/me")
    assert resp.status_code == 401

    metrics = asgi_app.state.metrics
    labels = {"method": "GET", "route": "/v1/auth/me", "status_code": "401", "tenant_id": "unknown"}
    assert metrics.sample("http_requests_total", labels) == 1
    assert metrics.sample(
        "errors_total",
        {"error_type": "UnauthorizedError", "tenant_id": "unknown", "endpoint": "/v1/auth/me"},
    ) == 1


@pytest.mark.asyncio
async def test_tenant_header_does_not_label_anonymous_requests(client: AsyncClient):
    """Only a verified token names the tenant label; a bare header does not."""
    resp = await client.get("/v1/auth/me", headers={"X-Tenant-ID": "spoofed"})
    assert resp.status_code == 401

    metrics = asgi_app.state.metrics
    labels = {"method": "GET", "route": "/v1/auth/me", "status_code": "401"}
    assert metrics.sample("http_requests_total", {**labels, "tenant_id": "unknown"}) == 1
    assert metrics.sample("http_requests_total", {**labels, "tenant_id": "spoofed"}) == 0
    assert metrics.total(metrics.tenant_operations, tenant_id="spoofed") == 0


@pytest.mark.asyncio
async def test_tenant_operations_tracked(client: AsyncClient, make_tenant, make_user, headers_for):
    tenant = await make_tenant("Metrics Co", "metrics_co")
    user = await make_user("member@metrics.co", tenant_id=tenant.id)

    resp = await client.get("/v1/auth/me", headers=headers_for(user))
    assert resp.status_code == 200

    metrics = asgi_app.state.metrics
    labels = {"tenant_id": str(tenant.id), "operation_type": "read", "resource": "auth"}
    assert metrics.sample("tenant_operations_total", labels) == 1
