"""Shared test fixtures: async SQLite in-memory DB, test client, seed factories."""

from collections.abc import AsyncGenerator, Iterable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import selectinload, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, select

# Import all models so metadata is populated
import app.models  # noqa: F401
from app.core.cache import CacheService, MemoryBackend
from app.core.database import get_session
from app.core.metrics import MetricsRegistry
from app.core.security import create_jwt, hash_password
from app.main import app
from app.models.permission import Permission
from app.models.role import Role
from app.models.tenant import Tenant
from app.models.user import User
from app.pipeline import build_pipeline
from app.services.tenant_schema import SchemaProvisioner, get_schema_provisioner

DEFAULT_PASSWORD = "password123"


class RecordingProvisioner(SchemaProvisioner):
    """Collects tenant DDL instead of running it; SQLite has no schemas."""

    def __init__(self) -> None:
        super().__init__(enabled=True)
        self.statements: list[str] = []

    async def _run(self, session, statements: list[str]) -> None:
        self.statements.extend(statements)


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess


@pytest.fixture
def provisioner() -> RecordingProvisioner:
    return RecordingProvisioner()


@pytest.fixture
async def client(test_session_factory, provisioner) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client; one DB session per request, fresh cache and metrics."""

    async def _override_session():
        async with test_session_factory() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_schema_provisioner] = lambda: provisioner

    app.state.cache = CacheService(MemoryBackend())
    app.state.metrics = MetricsRegistry()
    app.state.pipeline = build_pipeline(app.state.cache, app.state.metrics)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await app.state.cache.clear()


# ── Seed factories ───────────────────────────────────────────

async def _get_or_create_role(
    session: AsyncSession, name: str, permissions: Iterable[tuple[str, str]]
) -> Role:
    result = await session.execute(
        select(Role).where(Role.name == name).options(selectinload(Role.permissions))
    )
    role = result.scalar_one_or_none()
    if role is None:
        role = Role(name=name, description=f"{name} role")
        role.permissions = []
        session.add(role)

    for action, subject in permissions:
        result = await session.execute(
            select(Permission).where(Permission.action == action, Permission.subject == subject)
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            permission = Permission(action=action, subject=subject)
            session.add(permission)
        if permission not in role.permissions:
            role.permissions.append(permission)

    await session.flush()
    return role


@pytest.fixture
def make_user(session):
    """Factory: insert a user with the named role (created on demand)."""

    async def _make(
        email: str,
        role: str = "user",
        tenant_id=None,
        permissions: Iterable[tuple[str, str]] = (),
        is_active: bool = True,
        password: str = DEFAULT_PASSWORD,
        name: str = "",
    ) -> User:
        db_role = await _get_or_create_role(session, role, permissions)
        user = User(
            email=email,
            name=name or email.split("@")[0],
            password_hash=hash_password(password),
            role_id=db_role.id,
            tenant_id=tenant_id,
            is_active=is_active,
        )
        session.add(user)
        await session.commit()
        return user

    return _make


@pytest.fixture
def make_tenant(session):
    async def _make(name: str, schema: str) -> Tenant:
        tenant = Tenant(name=name, schema_name=schema)
        session.add(tenant)
        await session.commit()
        return tenant

    return _make


def auth_headers(user: User, role: str | None = None) -> dict[str, str]:
    token = create_jwt(
        subject=str(user.id),
        tenant_id=str(user.tenant_id) if user.tenant_id else None,
        role=role or "",
        email=user.email,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Bearer headers for a seeded user."""
    return auth_headers


@pytest.fixture
async def admin(make_user) -> User:
    """Platform admin: ``manage all``, no tenant of its own."""
    return await make_user("admin@platform.io", role="admin")


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    return auth_headers(admin, role="admin")
