# Overview: Service-layer operations for provisioning tenants, admins and tenant users.

"""
Provisioning Service

WHY: Creating a tenant or an elevated account touches several tables
(tenant, branch, identity, profile, role, permission row) that are
written as separate committed steps.

REQUEST SHAPES (create_tenant_admin):
- {tenant: {...}, admin: {...}}: new tenant with its first admin
- {tenant_id, branch_id?, email, password, full_name, role?, template_id?}:
  admin/manager for an existing tenant; no branch_id makes a director

FAILURE SEMANTICS:
- Authorization, validation and collision checks run before any write
- New-tenant path: if the identity cannot be created, the tenant row (and
  its main branch) is deleted; this is the only compensating action
- Profile/role/permission steps after the identity exists are logged on
  failure but NOT undone; the response still reports success for the
  identity that was created
"""

import secrets

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User, Profile, UserRole, UserPermissions, Tenant
from ..permissions.roles import ADMIN, SUPERADMIN, DEFAULT_TENANT_USER_ROLE, primary_role
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    validate_new_tenant_payload,
    validate_branch_admin_payload,
    validate_tenant_user_payload,
    validate_password_update_payload,
    validate_superadmin_payload,
)
from . import auth_service, permission_service, session_service, tenant_service
from .auth_service import IdentityError, PasswordValidationError
from .tenant_service import TenantAccessError


SYSTEM_TENANT_SLUG = "system"
SYSTEM_TENANT_NAME = "System"


class ProvisioningError(Exception):
    """Provisioning failure carrying the HTTP status chosen by the service."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def _best_effort(description: str, fn, *args, **kwargs):
    """
    Run a post-identity step. Failures are logged and swallowed so the
    already-created identity is still reported.
    """
    try:
        return fn(*args, **kwargs)
    except (SQLAlchemyError, ValueError):
        db.session.rollback()
        current_app.logger.exception("Provisioning step failed: %s", description)
        return None


def _create_identity_or_fail(email: str, password: str) -> User:
    try:
        return auth_service.create_identity(email, password)
    except (IdentityError, SQLAlchemyError) as e:
        db.session.rollback()
        current_app.logger.error("Failed to create identity for %s: %s", email, e)
        raise ProvisioningError(f"Failed to create user: {e}", 500) from e


def _require_strong_password(password: str, field: str = "password") -> None:
    try:
        auth_service.validate_password_strength(password)
    except PasswordValidationError as e:
        raise ValidationError("Invalid data", [f"{field}: {e}"]) from e


def _user_summary(user: User) -> dict:
    return {"id": user.id, "email": user.email}


# -- create-tenant-admin --

def create_tenant_admin(
    payload,
    caller_id: int,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> dict:
    """
    Superadmin-only provisioning entry point.

    Dispatches on the presence of tenant_id in the payload.
    Raises ProvisioningError (403/404/400/500) or ValidationError.
    """
    if not auth_service.is_superadmin(caller_id):
        permission_service.log_security_event(
            user_id=caller_id,
            event_type="PERMISSION_DENIED",
            success=False,
            resource="create-tenant-admin",
            action="PROVISION",
            reason="Caller is not a superadmin",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise ProvisioningError("Only superadmins can provision tenants and admins", 403)

    if isinstance(payload, dict) and payload.get("tenant_id") is not None:
        result = _create_branch_admin(payload)
        event_type = "USER_PROVISIONED"
        tenant_id = int(payload["tenant_id"])
    else:
        result = _create_tenant_with_admin(payload)
        event_type = "TENANT_PROVISIONED"
        tenant_id = result["tenant"]["id"]

    permission_service.log_security_event(
        user_id=caller_id,
        event_type=event_type,
        success=True,
        resource="create-tenant-admin",
        action="PROVISION",
        reason=f"Created user {result['user']['email']}",
        ip_address=ip_address,
        user_agent=user_agent,
        tenant_id=tenant_id,
    )
    return result


def _create_tenant_with_admin(payload) -> dict:
    data = validate_new_tenant_payload(payload)
    tenant_data, admin = data["tenant"], data["admin"]

    if tenant_service.slug_exists(tenant_data["slug"]):
        raise ProvisioningError("A tenant with this slug already exists", 400)

    if auth_service.email_exists(admin["email"]):
        raise ProvisioningError("This email is already registered", 400)

    try:
        tenant = tenant_service.create_tenant(**tenant_data)
    except ConflictError as e:
        raise ProvisioningError(str(e), 400) from e

    main_branch = tenant_service.get_main_branch(tenant.id)

    try:
        user = _create_identity_or_fail(admin["email"], admin["password"])
    except ProvisioningError:
        tenant_service.delete_tenant(tenant.id)
        current_app.logger.info("Removed tenant %s after admin identity failure", tenant_data["slug"])
        raise

    _best_effort(
        "profile for new tenant admin",
        auth_service.upsert_profile,
        user.id,
        tenant_id=tenant.id,
        email=user.email,
        full_name=admin["full_name"],
        selected_branch_id=main_branch.id if main_branch else None,
    )
    _best_effort("admin role for new tenant", auth_service.assign_role, user.id, ADMIN, tenant.id)

    current_app.logger.info("Provisioned tenant %s with admin %s", tenant.slug, user.email)
    return {
        "success": True,
        "tenant": tenant.to_dict(),
        "user": _user_summary(user),
    }


def _create_branch_admin(payload) -> dict:
    data = validate_branch_admin_payload(payload)
    tenant_id = data["tenant_id"]

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise ProvisioningError("Tenant not found", 404)

    if data["branch_id"] is not None:
        try:
            tenant_service.require_branch_in_tenant(data["branch_id"], tenant_id)
        except TenantAccessError as e:
            raise ProvisioningError("Branch not found for this tenant", 404) from e

    if data["template_id"] is not None:
        try:
            permission_service.get_template(data["template_id"], tenant_id)
        except NotFoundError as e:
            raise ProvisioningError("Permission template not found for this tenant", 404) from e

    if auth_service.email_exists(data["email"]):
        raise ProvisioningError("This email is already registered", 400)

    user = _create_identity_or_fail(data["email"], data["password"])

    _best_effort(
        "profile for branch admin",
        auth_service.upsert_profile,
        user.id,
        tenant_id=tenant_id,
        email=user.email,
        full_name=data["full_name"],
        selected_branch_id=data["branch_id"],
    )
    _best_effort("branch admin role", auth_service.assign_role, user.id, data["role"], tenant_id)

    if data["template_id"] is not None:
        _best_effort(
            "branch admin permission template",
            permission_service.set_user_permissions,
            user.id,
            tenant_id,
            {"template_id": data["template_id"]},
        )

    current_app.logger.info(
        "Provisioned %s %s for tenant %s (branch %s)",
        data["role"], user.email, tenant_id, data["branch_id"] or "all",
    )
    return {"success": True, "user": _user_summary(user)}


# -- create-tenant-user --

def create_tenant_user(payload, caller_id: int, caller_tenant_id: int | None) -> dict:
    """
    Create a regular user inside a tenant.

    Callers need a user-manager role or can_manage_users. Non-superadmins
    can only create users in their own tenant. The role comes from the
    template when it names one, otherwise technician.
    """
    if not permission_service.can_manage_tenant_users(caller_id, caller_tenant_id):
        raise ProvisioningError("You do not have permission to create users", 403)

    data = validate_tenant_user_payload(payload)
    _require_strong_password(data["password"])

    tenant_id = data["tenant_id"] or caller_tenant_id
    if tenant_id is None:
        raise ProvisioningError("Tenant not found", 404)
    if tenant_id != caller_tenant_id and not auth_service.is_superadmin(caller_id):
        raise ProvisioningError("Tenant not found", 404)
    if db.session.get(Tenant, tenant_id) is None:
        raise ProvisioningError("Tenant not found", 404)

    if data["branch_id"] is not None:
        try:
            tenant_service.require_branch_in_tenant(data["branch_id"], tenant_id)
        except TenantAccessError as e:
            raise ProvisioningError("Branch not found for this tenant", 404) from e

    template = None
    if data["template_id"] is not None:
        try:
            template = permission_service.get_template(data["template_id"], tenant_id)
        except NotFoundError as e:
            raise ProvisioningError("Permission template not found for this tenant", 404) from e

    if auth_service.email_exists(data["email"]):
        raise ProvisioningError("This email is already registered", 400)

    user = _create_identity_or_fail(data["email"], data["password"])

    _best_effort(
        "profile for tenant user",
        auth_service.upsert_profile,
        user.id,
        tenant_id=tenant_id,
        email=user.email,
        full_name=data["full_name"],
        selected_branch_id=data["branch_id"],
    )

    role = template.role if template is not None and template.role else DEFAULT_TENANT_USER_ROLE
    _best_effort("tenant user role", auth_service.assign_role, user.id, role, tenant_id)
    _best_effort(
        "tenant user permission row",
        permission_service.set_user_permissions,
        user.id,
        tenant_id,
        {"template_id": data["template_id"]},
    )

    current_app.logger.info("Created user %s in tenant %s with role %s", user.email, tenant_id, role)
    return {"success": True, "user_id": user.id, "user": _user_summary(user)}


# -- get-tenant-users --

def list_tenant_users(caller_id: int, caller_tenant_id: int | None) -> list[dict]:
    """Profiles of the caller's tenant with their roles and template ids."""
    # Same gate as create-tenant-user, so managers can list the users they create.
    # Narrower rule it replaces: admin/superadmin, an admin-role template, or can_manage_users.
    if not permission_service.can_manage_tenant_users(caller_id, caller_tenant_id):
        raise ProvisioningError("Insufficient permissions", 403)
    if caller_tenant_id is None:
        raise ProvisioningError("Tenant not found", 404)

    profiles = (
        db.session.query(Profile)
        .filter_by(tenant_id=caller_tenant_id)
        .order_by(Profile.full_name.asc())
        .all()
    )

    roles_by_user: dict[int, list[str]] = {}
    for row in db.session.query(UserRole).filter_by(tenant_id=caller_tenant_id).all():
        roles_by_user.setdefault(row.user_id, []).append(row.role)

    templates_by_user = {
        row.user_id: row.template_id
        for row in db.session.query(UserPermissions).filter_by(tenant_id=caller_tenant_id).all()
    }

    users = []
    for profile in profiles:
        roles = sorted(roles_by_user.get(profile.id, []))
        entry = profile.to_dict()
        entry["roles"] = roles
        entry["role"] = primary_role(roles)
        entry["template_id"] = templates_by_user.get(profile.id)
        users.append(entry)
    return users


# -- update-user-password --

def update_user_password(payload, caller_id: int, caller_tenant_id: int | None) -> dict:
    """
    Set another user's password (or one's own).

    Allowed for superadmins, for the user themself, and for user managers
    of the target's tenant. Only superadmins may change a superadmin's
    password. All of the target's sessions are revoked.
    """
    data = validate_password_update_payload(payload)
    _require_strong_password(data["new_password"], "new_password")

    target = db.session.get(User, data["user_id"])
    if target is None:
        raise ProvisioningError("User not found", 404)

    caller_is_superadmin = auth_service.is_superadmin(caller_id)
    if not caller_is_superadmin and target.id != caller_id:
        target_tenant_id = target.profile.tenant_id if target.profile else None
        if target_tenant_id is None or target_tenant_id != caller_tenant_id:
            raise ProvisioningError("User not found", 404)
        if auth_service.is_superadmin(target.id):
            raise ProvisioningError("Only superadmins can change a superadmin's password", 403)
        if not permission_service.can_manage_tenant_users(caller_id, caller_tenant_id):
            raise ProvisioningError("You do not have permission to change passwords", 403)

    auth_service.set_password(target, data["new_password"])
    session_service.revoke_all_user_sessions(target.id, reason="Password changed")

    permission_service.log_security_event(
        user_id=caller_id,
        event_type="PASSWORD_CHANGED",
        success=True,
        resource="update-user-password",
        action="UPDATE",
        reason=f"Password changed for user {target.id}",
        tenant_id=caller_tenant_id,
    )
    return {"success": True}


# -- create-superadmin --

def create_superadmin(payload, caller_id: int | None = None, init_token: str | None = None) -> dict:
    """
    Create (or promote) a platform superadmin.

    The very first superadmin requires init_token to match
    SUPERADMIN_INIT_TOKEN; afterwards the caller must be a superadmin.
    An existing identity gets its password reset and the role added.
    Superadmin profiles point at the "system" tenant.
    """
    if auth_service.superadmin_exists():
        if caller_id is None:
            raise ProvisioningError("Authentication required", 401)
        if not auth_service.is_superadmin(caller_id):
            raise ProvisioningError("Only superadmins can create superadmins", 403)
    else:
        expected = current_app.config.get("SUPERADMIN_INIT_TOKEN")
        if not init_token or not expected or not secrets.compare_digest(init_token, expected):
            current_app.logger.warning("First superadmin creation attempted without a valid init token")
            raise ProvisioningError("Initialization token required for first superadmin creation", 401)

    data = validate_superadmin_payload(payload)

    user = db.session.query(User).filter_by(email=data["email"]).first()
    if user is not None:
        auth_service.set_password(user, data["password"])
        current_app.logger.info("Existing user %s promoted to superadmin", user.email)
    else:
        user = _create_identity_or_fail(data["email"], data["password"])

    system_tenant = _best_effort("system tenant", _get_or_create_system_tenant)
    _best_effort(
        "superadmin profile",
        auth_service.upsert_profile,
        user.id,
        tenant_id=system_tenant.id if system_tenant else None,
        email=user.email,
        full_name=data["full_name"],
        selected_branch_id=None,
    )

    try:
        auth_service.assign_role(user.id, SUPERADMIN, None)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error("Failed to add superadmin role for %s: %s", user.email, e)
        raise ProvisioningError(f"User created but role assignment failed: {e}", 400) from e

    permission_service.clear_permission_cache()
    return {"success": True, "message": "Superadmin created", "user_id": user.id}


def _get_or_create_system_tenant() -> Tenant:
    tenant = db.session.query(Tenant).filter_by(slug=SYSTEM_TENANT_SLUG).first()
    if tenant is not None:
        return tenant
    return tenant_service.create_tenant(name=SYSTEM_TENANT_NAME, slug=SYSTEM_TENANT_SLUG, status="active")
