# Overview: Service-layer operations for permissions; resolution, templates and security audit.

"""
Permission Resolution and Security Event Logging with Multi-Tenant Support

WHY: The client decides what to render from one flat Permissions object per
(user, tenant). The server uses the same object to gate mutations.

RESOLUTION ORDER (first resolver returning a value wins):
1. Director: admin/manager with no selected branch, not superadmin
2. Privileged role: superadmin or admin
3. Per-user row with an active template: template flags
4. Per-user row without template: the row's own flags
5. Restrictive default: nothing configured

DESIGN PRINCIPLES:
- Read path never raises: database errors are logged and treated as
  "no override", so the chain falls through to a safe default
- Nulls are filled from one declared default table, once, at conversion
- Results are cached briefly, keyed by (user_id, tenant_id, director flag);
  every write in this module clears the cache
- Denials are logged to security_events; grants are not
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Profile, UserRole, PermissionTemplate, UserPermissions, SecurityEvent
from ..permissions import (
    Permissions,
    DEFAULT_PERMISSIONS,
    DIRECTOR_PERMISSIONS,
    RESTRICTIVE_DEFAULT_PERMISSIONS,
    PERMISSION_FLAGS,
)
from ..permissions.model import SOURCE_TEMPLATE, SOURCE_USER
from ..permissions.roles import PRIVILEGED_ROLES, DIRECTOR_ROLES, USER_MANAGER_ROLES
from ..validation import ConflictError, NotFoundError
from .auth_service import get_user_roles, is_superadmin
from opsdesk.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    tenant_id: int | None = None,
    branch_id: int | None = None
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_SUCCESS / LOGIN_FAILED
    - LOGOUT
    - TENANT_PROVISIONED
    - USER_PROVISIONED
    - PASSWORD_CHANGED
    - CROSS_TENANT_ACCESS_DENIED
    """
    event = SecurityEvent(
        user_id=user_id,
        tenant_id=tenant_id,
        branch_id=branch_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


# -- Cache --

_cache: dict[tuple, tuple[float, Permissions]] = {}
_cache_lock = threading.Lock()


def _cache_ttl() -> float:
    return float(current_app.config.get("PERMISSIONS_CACHE_TTL_SECONDS", 30))


def _cache_get(key: tuple) -> Permissions | None:
    with _cache_lock:
        entry = _cache.get(key)
        if entry is None:
            return None
        expires_at, permissions = entry
        if expires_at < time.monotonic():
            del _cache[key]
            return None
        return permissions


def _cache_put(key: tuple, permissions: Permissions) -> None:
    ttl = _cache_ttl()
    if ttl <= 0:
        return
    with _cache_lock:
        _cache[key] = (time.monotonic() + ttl, permissions)


def clear_permission_cache() -> None:
    with _cache_lock:
        _cache.clear()


# -- Lookups --

def is_director(user_id: int, tenant_id: int | None) -> bool:
    """
    True for an account-wide overseer: holds admin or manager in the tenant,
    does not hold superadmin anywhere, and has no selected branch.
    """
    if tenant_id is None:
        return False
    if is_superadmin(user_id):
        return False

    roles = {
        row.role
        for row in db.session.query(UserRole.role).filter_by(user_id=user_id, tenant_id=tenant_id).all()
    }
    if not roles & DIRECTOR_ROLES:
        return False

    profile = db.session.get(Profile, user_id)
    if profile is None or profile.tenant_id != tenant_id:
        return False
    return profile.selected_branch_id is None


def get_user_permissions_row(user_id: int, tenant_id: int | None) -> UserPermissions | None:
    if tenant_id is None:
        return None
    return db.session.query(UserPermissions).filter_by(user_id=user_id, tenant_id=tenant_id).first()


def _active_template(template_id: int, tenant_id: int) -> PermissionTemplate | None:
    template = db.session.get(PermissionTemplate, template_id)
    if template is None or template.tenant_id != tenant_id or not template.is_active:
        return None
    return template


# -- Resolvers --

@dataclass(frozen=True)
class ResolutionContext:
    user_id: int
    tenant_id: int | None
    is_director: bool


Resolver = Callable[[ResolutionContext], "Permissions | None"]


def resolve_director(ctx: ResolutionContext) -> Permissions | None:
    return DIRECTOR_PERMISSIONS if ctx.is_director else None


def resolve_privileged_role(ctx: ResolutionContext) -> Permissions | None:
    if get_user_roles(ctx.user_id, ctx.tenant_id) & PRIVILEGED_ROLES:
        return DEFAULT_PERMISSIONS
    return None


def resolve_template(ctx: ResolutionContext) -> Permissions | None:
    row = get_user_permissions_row(ctx.user_id, ctx.tenant_id)
    if row is None or row.template_id is None:
        return None
    template = _active_template(row.template_id, ctx.tenant_id)
    if template is None:
        current_app.logger.warning(
            "Permission template %s for user %s is missing or inactive; using row flags",
            row.template_id,
            ctx.user_id,
        )
        return None
    return Permissions.from_row(template, dashboard_type=row.dashboard_type, source=SOURCE_TEMPLATE)


def resolve_user_row(ctx: ResolutionContext) -> Permissions | None:
    row = get_user_permissions_row(ctx.user_id, ctx.tenant_id)
    if row is None:
        return None
    return Permissions.from_row(row, dashboard_type=row.dashboard_type, source=SOURCE_USER)


def resolve_restrictive_default(ctx: ResolutionContext) -> Permissions | None:
    return RESTRICTIVE_DEFAULT_PERMISSIONS


RESOLVERS: tuple[Resolver, ...] = (
    resolve_director,
    resolve_privileged_role,
    resolve_template,
    resolve_user_row,
    resolve_restrictive_default,
)


def _safe_is_director(user_id: int, tenant_id: int | None) -> bool:
    try:
        return is_director(user_id, tenant_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Director lookup failed for user %s", user_id, exc_info=True)
        return False


def resolve_permissions(
    user_id: int,
    tenant_id: int | None,
    *,
    director: bool | None = None,
    use_cache: bool = True,
) -> Permissions:
    """
    Return the effective Permissions for (user, tenant).

    director may be passed when the caller already knows it; otherwise it
    is computed. Never raises on database errors.
    """
    if director is None:
        director = _safe_is_director(user_id, tenant_id)

    key = (user_id, tenant_id, director)
    if use_cache:
        cached = _cache_get(key)
        if cached is not None:
            return cached

    ctx = ResolutionContext(user_id=user_id, tenant_id=tenant_id, is_director=director)
    result = RESTRICTIVE_DEFAULT_PERMISSIONS

    for resolver in RESOLVERS:
        try:
            permissions = resolver(ctx)
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.warning(
                "Permission resolver %s failed for user %s tenant %s; treating as no override",
                resolver.__name__,
                user_id,
                tenant_id,
                exc_info=True,
            )
            continue
        if permissions is not None:
            result = permissions
            break

    if use_cache:
        _cache_put(key, result)
    return result


def require_capability(
    user_id: int,
    tenant_id: int | None,
    flag: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    branch_id: int | None = None,
) -> Permissions:
    """
    Require a page/capability flag, raise PermissionDeniedError if not set.

    Logs denials to security_events.
    """
    permissions = resolve_permissions(user_id, tenant_id)
    if permissions.allows(flag):
        return permissions

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=flag,
        reason=f"Missing permission: {flag} (source: {permissions.source})",
        ip_address=ip_address,
        user_agent=user_agent,
        tenant_id=tenant_id,
        branch_id=branch_id,
    )
    raise PermissionDeniedError(f"Permission denied: {flag}")


def can_manage_tenant_users(user_id: int, tenant_id: int | None) -> bool:
    """
    User administration gate: a superadmin/admin/manager role, or
    can_manage_users granted through the user's row or its template.
    Directors are read-only and never pass.
    """
    if _safe_is_director(user_id, tenant_id):
        return False
    if get_user_roles(user_id, tenant_id) & USER_MANAGER_ROLES:
        return True
    return resolve_permissions(user_id, tenant_id, director=False).can_manage_users


# -- Templates --

def list_templates(tenant_id: int, include_inactive: bool = True) -> list[PermissionTemplate]:
    query = db.session.query(PermissionTemplate).filter_by(tenant_id=tenant_id)
    if not include_inactive:
        query = query.filter(PermissionTemplate.is_active.is_(True))
    return query.order_by(PermissionTemplate.name.asc()).all()


def get_template(template_id: int, tenant_id: int) -> PermissionTemplate:
    template = db.session.get(PermissionTemplate, template_id)
    if template is None or template.tenant_id != tenant_id:
        raise NotFoundError("Permission template not found")
    return template


def create_template(tenant_id: int, data: dict) -> PermissionTemplate:
    template = PermissionTemplate(tenant_id=tenant_id, is_active=True)
    for key, value in data.items():
        setattr(template, key, value)

    db.session.add(template)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("A template with this name already exists") from e

    clear_permission_cache()
    return template


def update_template(template_id: int, tenant_id: int, data: dict) -> PermissionTemplate:
    template = get_template(template_id, tenant_id)
    for key, value in data.items():
        setattr(template, key, value)

    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("A template with this name already exists") from e

    clear_permission_cache()
    return template


def delete_template(template_id: int, tenant_id: int) -> None:
    """Delete an unused template. Templates still assigned to users cannot be deleted."""
    template = get_template(template_id, tenant_id)

    assigned = db.session.query(UserPermissions.id).filter_by(template_id=template.id).count()
    if assigned:
        raise ConflictError(f"Template is assigned to {assigned} user(s); deactivate it instead")

    db.session.delete(template)
    db.session.commit()
    clear_permission_cache()


# -- Per-user rows --

def set_user_permissions(user_id: int, tenant_id: int, data: dict) -> UserPermissions:
    """
    Upsert the (user, tenant) permission row.

    Keys absent from data keep their stored value; template_id must belong
    to the same tenant.
    """
    template_id = data.get("template_id")
    if template_id is not None:
        get_template(template_id, tenant_id)

    row = get_user_permissions_row(user_id, tenant_id)
    if row is None:
        row = UserPermissions(user_id=user_id, tenant_id=tenant_id)
        db.session.add(row)

    for key in ("template_id", "dashboard_type", *PERMISSION_FLAGS):
        if key in data:
            setattr(row, key, data[key])

    db.session.commit()
    clear_permission_cache()
    return row
