"""Import all models so SQLModel.metadata picks them up."""

from app.models.audit_log import AuditLog, AuditLogRead
from app.models.permission import (
    Permission,
    PermissionCreate,
    PermissionRead,
    PermissionUpdate,
    RolePermission,
)
from app.models.role import Role, RoleCreate, RoleRead, RoleUpdate
from app.models.tenant import Tenant, TenantCreate, TenantRead, TenantUpdate
from app.models.user import User, UserCreate, UserDetail, UserRead, UserStats, UserUpdate

__all__ = [
    "AuditLog",
    "AuditLogRead",
    "Permission",
    "PermissionCreate",
    "PermissionRead",
    "PermissionUpdate",
    "Role",
    "RoleCreate",
    "RolePermission",
    "RoleRead",
    "RoleUpdate",
    "Tenant",
    "TenantCreate",
    "TenantRead",
    "TenantUpdate",
    "User",
    "UserCreate",
    "UserDetail",
    "UserRead",
    "UserStats",
    "UserUpdate",
]
