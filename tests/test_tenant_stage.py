"""Tests for the tenant isolation stage."""

import json
from types import SimpleNamespace

import pytest
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from app.core.exceptions import BadRequestError, ForbiddenError
from app.core.metrics import MetricsRegistry
from app.core.security import create_jwt
from app.pipeline import Principal, RoutePolicy, TenantOptions, TenantStage
from app.pipeline.tenant import extract_tenant_id


def _request(method="GET", *, tenant=None, headers=None, query="", path_params=None, body=None):
    raw_headers = {k.lower(): v for k, v in (headers or {}).items()}
    if tenant:
        token = create_jwt(subject="u1", tenant_id=tenant, role="user")
        raw_headers["authorization"] = f"Bearer {token}"
    payload = b""
    if body is not None:
        payload = json.dumps(body).encode()
        raw_headers["content-type"] = "application/json"
        raw_headers["content-length"] = str(len(payload))
    scope = {
        "type": "http",
        "method": method,
        "path": "/v1/things",
        "raw_path": b"/v1/things",
        "query_string": query.encode(),
        "headers": [(k.encode(), v.encode()) for k, v in raw_headers.items()],
        "path_params": path_params or {},
        "client": ("10.0.0.1", 5000),
        "server": ("test", 80),
        "scheme": "http",
        "route": SimpleNamespace(path="/v1/things"),
    }

    async def receive():
        return {"type": "http.request", "body": payload, "more_body": False}

    return Request(scope, receive)


class Capture:
    """Endpoint stand-in that remembers the request it received."""

    def __init__(self):
        self.request = None
        self.body = None

    async def __call__(self, request):
        self.request = request
        self.body = await request.body()
        return PlainTextResponse("ok")


def _policy(**overrides):
    return RoutePolicy(tenant=TenantOptions(**overrides))


# ── Extraction ───────────────────────────────────────────────

def test_extraction_priority():
    options = TenantOptions()
    principal = Principal(user_id="u1", tenant_id="from-token")
    request = _request(
        query="tenantId=from-query",
        path_params={"tenantId": "from-path"},
        headers={"X-Tenant-ID": "from-header"},
    )
    body = {"tenantId": "from-body"}

    assert extract_tenant_id(request, options, principal, body) == "from-path"

    request = _request(query="tenantId=from-query", headers={"X-Tenant-ID": "from-header"})
    assert extract_tenant_id(request, options, principal, body) == "from-query"

    request = _request(headers={"X-Tenant-ID": "from-header"})
    assert extract_tenant_id(request, options, principal, body) == "from-body"
    assert extract_tenant_id(request, options, principal, None) == "from-token"
    assert extract_tenant_id(request, options, None, None) == "from-header"
    assert extract_tenant_id(_request(), options, None, None) is None


# ── Validation and isolation ─────────────────────────────────

@pytest.mark.asyncio
async def test_missing_tenant_rejected_when_validating():
    stage = TenantStage()
    with pytest.raises(BadRequestError):
        await stage(_request(), Capture(), _policy())


@pytest.mark.asyncio
async def test_missing_tenant_allowed_without_validation():
    endpoint = Capture()
    response = await TenantStage()(_request(), endpoint, _policy(validate=False))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_cross_tenant_access_forbidden():
    """User of tenant A requesting tenant B data is rejected."""
    request = _request(tenant="A", query="tenantId=B")
    with pytest.raises(ForbiddenError):
        await TenantStage()(request, Capture(), _policy())


@pytest.mark.asyncio
async def test_cross_tenant_access_allowed_when_route_permits():
    endpoint = Capture()
    request = _request(tenant="A", query="tenantId=B")
    response = await TenantStage()(request, endpoint, _policy(allow_cross_tenant=True))
    assert response.status_code == 200
    assert endpoint.request.query_params["tenantId"] == "B"


@pytest.mark.asyncio
async def test_cross_tenant_body_forbidden():
    request = _request("POST", tenant="A", body={"name": "x", "tenantId": "B"})
    with pytest.raises(ForbiddenError):
        await TenantStage()(request, Capture(), _policy())


@pytest.mark.asyncio
async def test_platform_user_is_not_confined():
    """A principal without a tenant may address any tenant."""
    token = create_jwt(subject="root", tenant_id=None, role="admin")
    request = _request(query="tenantId=B", headers={"Authorization": f"Bearer {token}"})
    response = await TenantStage()(request, Capture(), _policy())
    assert response.status_code == 200


# ── Auto-filter ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_auto_filter_injects_query_parameter():
    endpoint = Capture()
    request = _request(tenant="A", query="page=2")
    await TenantStage()(request, endpoint, _policy())

    assert endpoint.request.query_params["tenantId"] == "A"
    assert endpoint.request.query_params["page"] == "2"


@pytest.mark.asyncio
async def test_auto_filter_injects_body_field_on_writes():
    endpoint = Capture()
    request = _request("POST", tenant="A", body={"name": "widget"})
    await TenantStage()(request, endpoint, _policy(tenant_field="tenant_id"))

    assert json.loads(endpoint.body) == {"name": "widget", "tenant_id": "A"}
    assert endpoint.request.headers["content-length"] == str(len(endpoint.body))


@pytest.mark.asyncio
async def test_body_replayed_when_not_filtering():
    endpoint = Capture()
    request = _request("POST", tenant="A", body={"name": "widget"})
    await TenantStage()(request, endpoint, _policy(auto_filter=False))

    assert json.loads(endpoint.body) == {"name": "widget"}


@pytest.mark.asyncio
async def test_routes_without_tenant_option_pass_through():
    endpoint = Capture()
    request = _request()
    await TenantStage()(request, endpoint, RoutePolicy())
    assert endpoint.request is request


@pytest.mark.asyncio
async def test_tenant_operations_counted():
    metrics = MetricsRegistry()
    await TenantStage(metrics)(_request(tenant="A"), Capture(), _policy())

    labels = {"tenant_id": "A", "operation_type": "request", "resource": "/v1/things"}
    assert metrics.sample("tenant_operations_total", labels) == 1
