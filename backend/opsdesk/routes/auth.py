# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/opsdesk/routes/auth.py
"""
Authentication API routes

- POST /api/auth/login: email + password -> bearer token with tenant context
- POST /api/auth/logout: revoke the presented token
- GET /api/auth/me: profile, roles, director flag and resolved permissions

Accounts are never self-registered; they come from provisioning.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import permission_service
from ..permissions.roles import primary_role
from ..decorators import require_auth, bearer_token


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _identity_payload(user, tenant_id):
    roles = sorted(permission_service.get_user_roles(user.id, tenant_id))
    director = permission_service.is_director(user.id, tenant_id)
    permissions = permission_service.resolve_permissions(user.id, tenant_id, director=director)
    return {
        "user": user.to_dict(),
        "profile": user.profile.to_dict() if user.profile else None,
        "roles": roles,
        "role": primary_role(roles),
        "is_director": director,
        "permissions": permissions.to_dict(),
        "permissions_source": permissions.source,
    }


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    Failed attempts are recorded as LOGIN_FAILED security events.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not email or not password or not isinstance(email, str) or not isinstance(password, str):
            return jsonify({"error": "email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(email, password)

        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for {email.strip().lower()}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address
        )

        permission_service.log_security_event(
            user_id=user.id,
            event_type="LOGIN_SUCCESS",
            success=True,
            resource=request.path,
            action="LOGIN",
            ip_address=ip_address,
            user_agent=user_agent,
            tenant_id=session.tenant_id,
            branch_id=session.branch_id,
        )

        body = _identity_payload(user, session.tenant_id)
        body.update({
            "token": token,
            "session": session.to_dict(),
            "tenant_id": session.tenant_id,
            "branch_id": session.branch_id,
            "message": "Login successful",
        })
        return jsonify(body), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """Revoke session token (logout). Expects Authorization: Bearer <token>."""
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current identity with tenant context and effective permissions."""
    body = _identity_payload(g.current_user, g.tenant_id)
    body.update({"tenant_id": g.tenant_id, "branch_id": g.branch_id})
    return jsonify(body), 200
