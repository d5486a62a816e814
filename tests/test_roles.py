"""Tests for roles CRUD and permission assignment."""

import uuid

import pytest
from httpx import AsyncClient


async def _permission(client: AsyncClient, headers, action: str, subject: str) -> str:
    resp = await client.post(
        "/v1/permissions", json={"action": action, "subject": subject}, headers=headers
    )
    assert resp.status_code == 201
    return resp.json()["id"]


@pytest.mark.asyncio
async def test_create_role_with_permissions(client: AsyncClient, admin_headers):
    read_users = await _permission(client, admin_headers, "read", "User")

    resp = await client.post("/v1/roles", json={
        "name": "auditor",
        "description": "Reads things",
        "permission_ids": [read_users],
    }, headers=admin_headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "auditor"
    assert [p["id"] for p in data["permissions"]] == [read_users]


@pytest.mark.asyncio
async def test_create_role_duplicate_name(client: AsyncClient, admin_headers):
    resp = await client.post("/v1/roles", json={"name": "ops"}, headers=admin_headers)
    assert resp.status_code == 201

    resp = await client.post("/v1/roles", json={"name": "ops"}, headers=admin_headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_create_role_unknown_permission(client: AsyncClient, admin_headers):
    resp = await client.post("/v1/roles", json={
        "name": "ghost",
        "permission_ids": [str(uuid.uuid4())],
    }, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Permission not found"


@pytest.mark.asyncio
async def test_update_role_replaces_permission_set(client: AsyncClient, admin_headers):
    first = await _permission(client, admin_headers, "read", "Tenant")
    second = await _permission(client, admin_headers, "update", "Tenant")
    resp = await client.post(
        "/v1/roles", json={"name": "tenant-ops", "permission_ids": [first]}, headers=admin_headers
    )
    role_id = resp.json()["id"]

    # Prime the cache so the update has something to invalidate
    resp = await client.get(f"/v1/roles/{role_id}", headers=admin_headers)
    assert resp.headers["X-Cache-Status"] == "MISS"

    resp = await client.patch(f"/v1/roles/{role_id}", json={
        "name": "tenant-operators",
        "permission_ids": [second],
    }, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "tenant-operators"
    assert [p["id"] for p in resp.json()["permissions"]] == [second]

    resp = await client.get(f"/v1/roles/{role_id}", headers=admin_headers)
    assert resp.headers["X-Cache-Status"] == "MISS"
    assert resp.json()["name"] == "tenant-operators"


@pytest.mark.asyncio
async def test_delete_role(client: AsyncClient, admin_headers):
    resp = await client.post("/v1/roles", json={"name": "temporary"}, headers=admin_headers)
    role_id = resp.json()["id"]

    resp = await client.delete(f"/v1/roles/{role_id}", headers=admin_headers)
    assert resp.status_code == 204

    resp = await client.get(f"/v1/roles/{role_id}", headers=admin_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_role_in_use(client: AsyncClient, admin_headers, make_user):
    """A role still assigned to a user cannot be deleted (409)."""
    member = await make_user("member@roles.com", role="member")

    resp = await client.delete(f"/v1/roles/{member.role_id}", headers=admin_headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_member_reads_but_cannot_create_roles(client: AsyncClient, make_user, headers_for):
    member = await make_user("member@roles-perm.com")

    resp = await client.get("/v1/roles", headers=headers_for(member))
    assert resp.status_code == 200
    assert resp.json()["meta"]["total"] == 1

    resp = await client.post("/v1/roles", json={"name": "sneaky"}, headers=headers_for(member))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_granted_permission_allows_action(client: AsyncClient, make_user, headers_for):
    """A permission attached to the caller's role grants the matching action."""
    manager = await make_user(
        "manager@roles.com", role="role-manager", permissions=[("CREATE", "Role")]
    )

    resp = await client.post("/v1/roles", json={"name": "made-by-manager"}, headers=headers_for(manager))
    assert resp.status_code == 201
