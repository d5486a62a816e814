"""Raw DDL for per-tenant schemas.

Statements are built by string interpolation with no escaping. Callers must
pass a schema name already validated against ``SCHEMA_NAME_PATTERN``.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings

logger = logging.getLogger(__name__)

SEED_ROLES: tuple[tuple[str, str], ...] = (
    ("admin", "Administrator with full access"),
    ("user", "Regular user"),
)


def tenant_schema_statements(schema: str) -> list[str]:
    """Schema, baseline tables (roles, permissions, link table, users), seed roles."""
    seed_values = ", ".join(f"('{name}', '{description}')" for name, description in SEED_ROLES)
    return [
        f'CREATE SCHEMA IF NOT EXISTS "{schema}"',
        f"""CREATE TABLE IF NOT EXISTS "{schema}".roles (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) NOT NULL UNIQUE,
            description VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )""",
        f"""CREATE TABLE IF NOT EXISTS "{schema}".permissions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            action VARCHAR(50) NOT NULL,
            subject VARCHAR(100) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (action, subject)
        )""",
        f"""CREATE TABLE IF NOT EXISTS "{schema}".role_permissions (
            role_id UUID NOT NULL REFERENCES "{schema}".roles(id) ON DELETE CASCADE,
            permission_id UUID NOT NULL REFERENCES "{schema}".permissions(id) ON DELETE CASCADE,
            PRIMARY KEY (role_id, permission_id)
        )""",
        f"""CREATE TABLE IF NOT EXISTS "{schema}".users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(320) NOT NULL UNIQUE,
            name VARCHAR(255) NOT NULL DEFAULT '',
            password_hash TEXT NOT NULL,
            role_id UUID NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT users_role_id_fkey FOREIGN KEY (role_id) REFERENCES "{schema}".roles(id)
        )""",
        f'INSERT INTO "{schema}".roles (name, description) VALUES {seed_values} '
        "ON CONFLICT (name) DO NOTHING",
    ]


def drop_schema_statement(schema: str) -> str:
    return f'DROP SCHEMA IF EXISTS "{schema}" CASCADE'


class SchemaProvisioner:
    """Runs tenant schema DDL on the caller's session and commits it."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    async def create_schema(self, session: AsyncSession, schema: str) -> None:
        await self._run(session, tenant_schema_statements(schema))
        logger.info("Provisioned schema %s", schema)

    async def drop_schema(self, session: AsyncSession, schema: str) -> None:
        await self._run(session, [drop_schema_statement(schema)])
        logger.info("Dropped schema %s", schema)

    async def _run(self, session: AsyncSession, statements: list[str]) -> None:
        if not self.enabled:
            logger.info("Schema provisioning disabled, skipping %d statements", len(statements))
            return
        for statement in statements:
            await session.execute(text(statement))
        await session.commit()


def get_schema_provisioner() -> SchemaProvisioner:
    """FastAPI dependency; tests override it with a recording provisioner."""
    return SchemaProvisioner(enabled=get_settings().provision_tenant_schemas)
