# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .permissions import validate_flag_code
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'tenant_id')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.tenant_id: The tenant captured at login (None for platform superadmins)
    - g.branch_id: The selected branch captured at login (None = all branches)
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    - Tenant deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.tenant_id = context.tenant_id
        g.branch_id = context.branch_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_tenant(f):
    """Require a tenant context (rejects superadmin sessions with no tenant profile)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if g.tenant_id is None:
            return jsonify({"error": "Tenant not found"}), 400
        return f(*args, **kwargs)
    return decorated_function


def require_capability(flag: str):
    """
    Require a resolved page/capability flag (e.g. "can_create").

    MULTI-TENANT: Flags are resolved for (g.current_user, g.tenant_id);
    denials are logged with tenant and branch context.
    """
    if not validate_flag_code(flag):
        raise ValueError(f"Unknown permission flag: {flag}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_capability(
                    user_id=g.current_user.id,
                    tenant_id=g.tenant_id,
                    flag=flag,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    branch_id=g.branch_id
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": flag,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_user_manager(f):
    """
    Require a user-manager role (superadmin/admin/manager) in the tenant or
    the can_manage_users flag.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not permission_service.can_manage_tenant_users(g.current_user.id, g.tenant_id):
            permission_service.log_security_event(
                user_id=g.current_user.id,
                event_type="PERMISSION_DENIED",
                success=False,
                resource=request.path,
                action="can_manage_users",
                reason="User management requires a manager role or can_manage_users",
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
                tenant_id=g.tenant_id,
                branch_id=g.branch_id
            )
            return jsonify({"error": "Insufficient permissions"}), 403
        return f(*args, **kwargs)
    return decorated_function
