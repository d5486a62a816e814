"""Tests for the shared pagination envelope."""

import pytest
from httpx import AsyncClient

from app.core.pagination import PageMeta, PageParams
from app.models.permission import Permission


async def _seed_permissions(session, count: int) -> None:
    for i in range(count):
        session.add(Permission(action="read", subject=f"Thing{i:02d}"))
    await session.commit()


@pytest.mark.asyncio
async def test_last_page_of_25_records(client: AsyncClient, admin_headers, session):
    """25 records, limit 10, page 3 -> 5 records, no next page."""
    await _seed_permissions(session, 25)

    resp = await client.get(
        "/v1/permissions", params={"page": 3, "limit": 10}, headers=admin_headers
    )
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["data"]) == 5
    assert body["meta"] == {
        "total": 25,
        "page": 3,
        "limit": 10,
        "totalPages": 3,
        "hasNext": False,
        "hasPrev": True,
    }


@pytest.mark.asyncio
async def test_first_page_defaults(client: AsyncClient, admin_headers, session):
    await _seed_permissions(session, 12)

    resp = await client.get("/v1/permissions", headers=admin_headers)
    meta = resp.json()["meta"]
    assert len(resp.json()["data"]) == 10
    assert meta["hasNext"] is True
    assert meta["hasPrev"] is False


@pytest.mark.asyncio
async def test_sort_by_accepts_camel_and_snake_case(client: AsyncClient, admin_headers, session):
    await _seed_permissions(session, 3)

    for sort_by in ("subject", "createdAt", "created_at"):
        resp = await client.get(
            "/v1/permissions", params={"sortBy": sort_by, "sortOrder": "asc"}, headers=admin_headers
        )
        assert resp.status_code == 200

    resp = await client.get(
        "/v1/permissions", params={"sortBy": "subject", "sortOrder": "desc"}, headers=admin_headers
    )
    subjects = [p["subject"] for p in resp.json()["data"]]
    assert subjects == ["Thing02", "Thing01", "Thing00"]


@pytest.mark.asyncio
async def test_unknown_sort_field(client: AsyncClient, admin_headers):
    resp = await client.get("/v1/permissions", params={"sortBy": "nope"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot sort by 'nope'"


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}, {"sortOrder": "up"}])
async def test_invalid_page_params(client: AsyncClient, admin_headers, params):
    resp = await client.get("/v1/permissions", params=params, headers=admin_headers)
    assert resp.status_code == 422


def test_meta_for_empty_result():
    meta = PageMeta.build(0, PageParams(page=1, limit=10))
    assert meta.total_pages == 0
    assert meta.has_next is False
    assert meta.has_prev is False


def test_meta_serialises_camel_case():
    meta = PageMeta.build(11, PageParams(page=2, limit=5))
    assert meta.model_dump(by_alias=True) == {
        "total": 11,
        "page": 2,
        "limit": 5,
        "totalPages": 3,
        "hasNext": True,
        "hasPrev": True,
    }
