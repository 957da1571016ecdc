"""
Tenant / Branch Directory: Tenant Validation and Scoping Helpers

WHY: Centralize tenant validation logic for reuse across services and routes.
Every request is scoped to a tenant, and cross-tenant access must be
explicitly denied.

SECURITY INVARIANTS:
1. Every tenant-scoped request carries the caller's tenant_id
2. Branch IDs from client input must be validated against that tenant_id
3. Cross-tenant access attempts are logged as security events
4. A branch from another tenant is reported as "not found", never as
   "forbidden", so its existence is not revealed

MAIN BRANCH:
Each tenant gets exactly one main branch at creation. A partial unique
index allows at most one is_main row per tenant; set_main_branch moves the
flag and the main branch cannot be deactivated.

USAGE:
    from opsdesk.services.tenant_service import require_branch_in_tenant

    branch = require_branch_in_tenant(branch_id, g.tenant_id)
"""

from flask import g, has_request_context, request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Branch, Tenant
from ..validation import ConflictError
from .permission_service import log_security_event


DEFAULT_MAIN_BRANCH_NAME = "Matriz"
DEFAULT_MAIN_BRANCH_CODE = "MATRIZ"


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    pass


def slug_exists(slug: str) -> bool:
    return db.session.query(Tenant.id).filter(Tenant.slug == slug).first() is not None


def list_tenants() -> list[Tenant]:
    return db.session.query(Tenant).order_by(Tenant.name.asc()).all()


def validate_tenant_active(tenant_id: int) -> Tenant:
    """
    Validate that a tenant exists and is active.

    Raises TenantAccessError if tenant doesn't exist or is inactive.
    """
    tenant = db.session.get(Tenant, tenant_id)

    if not tenant:
        raise TenantAccessError("Tenant not found")

    if not tenant.is_active:
        raise TenantAccessError("Tenant is not active")

    return tenant


def require_branch_in_tenant(branch_id: int, tenant_id: int) -> Branch:
    """
    Validate that a branch belongs to the specified tenant.

    SECURITY: Core tenant isolation check. Call this before any operation
    that uses a branch_id from client input.

    Raises TenantAccessError if branch doesn't exist or belongs to a
    different tenant.
    """
    branch = db.session.get(Branch, branch_id)

    if not branch:
        _log_cross_tenant_attempt(
            f"Branch {branch_id} not found",
            tenant_id=tenant_id
        )
        raise TenantAccessError("Branch not found")

    if branch.tenant_id != tenant_id:
        _log_cross_tenant_attempt(
            f"Branch {branch_id} belongs to tenant {branch.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
            attempted_branch_id=branch_id
        )
        raise TenantAccessError("Branch not found")

    return branch


def get_tenant_branches(tenant_id: int, active_only: bool = True) -> list[Branch]:
    """Branches of a tenant, main branch first, then by name."""
    query = db.session.query(Branch).filter_by(tenant_id=tenant_id)
    if active_only:
        query = query.filter(Branch.is_active.is_(True))
    return query.order_by(Branch.is_main.desc(), Branch.name.asc()).all()


def get_main_branch(tenant_id: int) -> Branch | None:
    return db.session.query(Branch).filter_by(tenant_id=tenant_id, is_main=True).first()


def create_tenant(
    *,
    name: str,
    slug: str,
    cnpj: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    status: str = "trial",
) -> Tenant:
    """
    Insert a tenant together with its main branch.

    Both rows are committed together; a tenant never exists without its
    main branch.

    Raises ConflictError if the slug is already taken.
    """
    tenant = Tenant(
        name=name,
        slug=slug,
        cnpj=cnpj,
        email=email,
        phone=phone,
        status=status,
        is_active=True,
    )
    db.session.add(tenant)

    try:
        db.session.flush()
        db.session.add(Branch(
            tenant_id=tenant.id,
            name=DEFAULT_MAIN_BRANCH_NAME,
            code=DEFAULT_MAIN_BRANCH_CODE,
            is_main=True,
            is_active=True,
        ))
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("A tenant with this slug already exists") from e

    return tenant


def delete_tenant(tenant_id: int) -> None:
    """
    Hard-delete a tenant and its branches.

    Only used to compensate a tenant whose admin identity could not be
    created, so no other tenant-scoped rows exist yet.
    """
    db.session.query(Branch).filter_by(tenant_id=tenant_id).delete(synchronize_session=False)
    db.session.query(Tenant).filter_by(id=tenant_id).delete(synchronize_session=False)
    db.session.commit()


def create_branch(tenant_id: int, data: dict) -> Branch:
    """Create a non-main branch. Raises ConflictError on duplicate name/code."""
    validate_tenant_active(tenant_id)

    branch = Branch(tenant_id=tenant_id, is_main=False, is_active=True)
    for key, value in data.items():
        setattr(branch, key, value)

    db.session.add(branch)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("A branch with this name or code already exists") from e
    return branch


def update_branch(branch_id: int, tenant_id: int, data: dict, expected_version: int | None = None) -> Branch:
    """
    Patch branch fields.

    expected_version (from the client's last read) turns a concurrent edit
    into a ConflictError instead of a silent overwrite.
    """
    branch = require_branch_in_tenant(branch_id, tenant_id)

    if expected_version is not None and branch.version_id != expected_version:
        raise ConflictError("Branch was modified by another user")

    for key, value in data.items():
        setattr(branch, key, value)

    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("A branch with this name or code already exists") from e
    except StaleDataError as e:
        db.session.rollback()
        raise ConflictError("Branch was modified by another user") from e
    return branch


def deactivate_branch(branch_id: int, tenant_id: int) -> Branch:
    """Soft delete. The main branch cannot be deactivated."""
    branch = require_branch_in_tenant(branch_id, tenant_id)

    if branch.is_main:
        raise ConflictError("The main branch cannot be deactivated")

    branch.is_active = False
    db.session.commit()
    return branch


def set_main_branch(branch_id: int, tenant_id: int) -> Branch:
    """
    Move the main flag to another active branch of the same tenant.

    The old flag is cleared and flushed first so the partial unique index
    never sees two main branches.
    """
    branch = require_branch_in_tenant(branch_id, tenant_id)

    if not branch.is_active:
        raise ConflictError("An inactive branch cannot be the main branch")

    if branch.is_main:
        return branch

    current = get_main_branch(tenant_id)
    try:
        if current is not None:
            current.is_main = False
            db.session.flush()
        branch.is_main = True
        db.session.commit()
    except (IntegrityError, StaleDataError) as e:
        db.session.rollback()
        raise ConflictError("Main branch was changed concurrently") from e
    return branch


def _log_cross_tenant_attempt(
    reason: str,
    tenant_id: int | None = None,
    attempted_branch_id: int | None = None
) -> None:
    """
    Log a cross-tenant access attempt as a security event.

    SECURITY: Critical audit trail for detecting unauthorized access attempts.
    """
    user_id = None
    if has_request_context():
        current_user = getattr(g, 'current_user', None)
        user_id = current_user.id if current_user is not None else None

    log_security_event(
        user_id=user_id,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=request.path if has_request_context() else None,
        action=request.method if has_request_context() else None,
        reason=reason,
        ip_address=request.remote_addr if has_request_context() else None,
        user_agent=request.headers.get("User-Agent") if has_request_context() else None,
        tenant_id=tenant_id,
        branch_id=attempted_branch_id
    )
