"""Per-route pipeline configuration, keyed by ``(METHOD, path template)``.

Routes absent from this table only collect request metrics.
"""

from app.pipeline import (
    CacheInvalidateOptions,
    CacheOptions,
    RateLimitOptions,
    RoutePolicy,
    TenantOptions,
)

# Cached reads are keyed per user: the cache stage runs before the endpoint's
# authorization dependencies, so a shared entry would bypass them.
_SHORT_READ = CacheOptions(ttl=60, include_user=True)
_READ = CacheOptions(ttl=300, include_user=True)
_DETAIL_READ = CacheOptions(ttl=600, include_user=True)

# Tenant-scoped collections filter on the ``tenant_id`` query parameter.
# Platform users carry no tenant, so a missing tenant id is allowed.
_TENANT_FILTER = TenantOptions(validate=False, tenant_field="tenant_id")
# Single-resource routes: the tenant comes from the path or the token; the
# handler compares it with the target row.
_TENANT_STRICT = TenantOptions(validate=False, tenant_field="tenant_id", auto_filter=False)

_MEDIUM_LIMIT = RateLimitOptions(limit=50, window=60)

_USERS_CHANGED = CacheInvalidateOptions(patterns=("/v1/users*",))
_ROLES_CHANGED = CacheInvalidateOptions(patterns=("/v1/roles*", "/v1/users*"))
_PERMISSIONS_CHANGED = CacheInvalidateOptions(
    patterns=("/v1/permissions*", "/v1/roles*", "/v1/users*")
)
_TENANTS_CHANGED = CacheInvalidateOptions(patterns=("/v1/tenants*",))

ROUTE_POLICIES: dict[tuple[str, str], RoutePolicy] = {
    # ── Auth ─────────────────────────────────────────────────
    ("POST", "/v1/auth/login"): RoutePolicy(
        rate_limit=RateLimitOptions(limit=5, window=60, message="Too many login attempts"),
    ),
    ("POST", "/v1/auth/register"): RoutePolicy(
        rate_limit=RateLimitOptions(limit=3, window=60, message="Too many registrations"),
    ),
    # ── Users ────────────────────────────────────────────────
    ("GET", "/v1/users"): RoutePolicy(cache=_SHORT_READ, tenant=_TENANT_FILTER),
    ("POST", "/v1/users"): RoutePolicy(
        tenant=_TENANT_FILTER,
        invalidate=_USERS_CHANGED,
        rate_limit=RateLimitOptions(limit=10, window=60, per_tenant=False),
    ),
    ("GET", "/v1/users/stats"): RoutePolicy(
        cache=_SHORT_READ, rate_limit=RateLimitOptions(limit=50, window=60, per_user=False)
    ),
    ("GET", "/v1/users/export"): RoutePolicy(
        tenant=_TENANT_FILTER, rate_limit=RateLimitOptions(limit=10, window=60)
    ),
    ("GET", "/v1/users/{user_id}"): RoutePolicy(
        cache=_DETAIL_READ, tenant=_TENANT_STRICT, rate_limit=_MEDIUM_LIMIT
    ),
    ("PATCH", "/v1/users/{user_id}"): RoutePolicy(
        tenant=_TENANT_STRICT,
        invalidate=_USERS_CHANGED,
        rate_limit=RateLimitOptions(limit=20, window=60, per_tenant=False),
    ),
    ("PATCH", "/v1/users/{user_id}/toggle-status"): RoutePolicy(
        tenant=_TENANT_STRICT,
        invalidate=_USERS_CHANGED,
        rate_limit=RateLimitOptions(limit=10, window=60, per_tenant=False),
    ),
    ("DELETE", "/v1/users/{user_id}"): RoutePolicy(
        tenant=_TENANT_STRICT,
        invalidate=_USERS_CHANGED,
        rate_limit=RateLimitOptions(limit=5, window=60, per_user=False, per_tenant=False),
    ),
    # ── Roles ────────────────────────────────────────────────
    ("GET", "/v1/roles"): RoutePolicy(cache=_READ),
    ("POST", "/v1/roles"): RoutePolicy(invalidate=_ROLES_CHANGED),
    ("GET", "/v1/roles/{role_id}"): RoutePolicy(cache=_DETAIL_READ),
    ("PATCH", "/v1/roles/{role_id}"): RoutePolicy(invalidate=_ROLES_CHANGED),
    ("DELETE", "/v1/roles/{role_id}"): RoutePolicy(invalidate=_ROLES_CHANGED),
    # ── Permissions ──────────────────────────────────────────
    ("GET", "/v1/permissions"): RoutePolicy(cache=_READ),
    ("POST", "/v1/permissions"): RoutePolicy(invalidate=_PERMISSIONS_CHANGED),
    ("GET", "/v1/permissions/{permission_id}"): RoutePolicy(cache=_DETAIL_READ),
    ("PATCH", "/v1/permissions/{permission_id}"): RoutePolicy(invalidate=_PERMISSIONS_CHANGED),
    ("DELETE", "/v1/permissions/{permission_id}"): RoutePolicy(invalidate=_PERMISSIONS_CHANGED),
    # ── Tenants ──────────────────────────────────────────────
    ("GET", "/v1/tenants"): RoutePolicy(cache=_READ),
    ("POST", "/v1/tenants"): RoutePolicy(
        invalidate=_TENANTS_CHANGED,
        rate_limit=RateLimitOptions(limit=10, window=60),
    ),
    ("GET", "/v1/tenants/{tenant_id}"): RoutePolicy(cache=_DETAIL_READ, tenant=_TENANT_STRICT),
    ("PATCH", "/v1/tenants/{tenant_id}"): RoutePolicy(
        tenant=_TENANT_STRICT, invalidate=_TENANTS_CHANGED
    ),
    ("DELETE", "/v1/tenants/{tenant_id}"): RoutePolicy(
        tenant=_TENANT_STRICT, invalidate=_TENANTS_CHANGED
    ),
    # ── Audit logs ───────────────────────────────────────────
    ("GET", "/v1/audit-logs"): RoutePolicy(tenant=_TENANT_FILTER),
    ("GET", "/v1/audit-logs/{log_id}"): RoutePolicy(tenant=_TENANT_STRICT),
    # ── Monitoring ───────────────────────────────────────────
    ("GET", "/v1/monitoring/health-detailed"): RoutePolicy(rate_limit=_MEDIUM_LIMIT),
    ("GET", "/v1/monitoring/database-stats"): RoutePolicy(rate_limit=_MEDIUM_LIMIT),
    ("GET", "/v1/monitoring/tenant-usage"): RoutePolicy(
        tenant=_TENANT_FILTER, rate_limit=_MEDIUM_LIMIT
    ),
}
