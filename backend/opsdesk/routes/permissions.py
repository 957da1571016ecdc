# Overview: Flask API routes for permission templates and per-user permission rows.

"""
Permission administration routes.

MULTI-TENANT: Templates and per-user rows are scoped to g.tenant_id.
Templates and users of other tenants are reported as 404.

SECURITY:
- GET /api/permissions/me: any authenticated user
- Everything else: user-manager role or can_manage_users (directors excluded)
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_tenant, require_user_manager
from ..extensions import db
from ..models import Profile
from ..permissions import PERMISSION_DEFINITIONS, get_flag_definition, get_flags_by_category
from ..services import permission_service
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    validate_template_payload,
    validate_user_permissions_payload,
)


permissions_bp = Blueprint("permissions", __name__, url_prefix="/api")


def _tenant_member_or_404(user_id: int):
    profile = db.session.get(Profile, user_id)
    if profile is None or profile.tenant_id != g.tenant_id:
        return None
    return profile


@permissions_bp.get("/permissions/me")
@require_auth
def my_permissions():
    permissions = permission_service.resolve_permissions(g.current_user.id, g.tenant_id)
    return jsonify({
        "permissions": permissions.to_dict(),
        "source": permissions.source,
    }), 200


@permissions_bp.get("/permissions/definitions")
@require_auth
def permission_definitions():
    """
    Flag catalog for the permission editor.

    Query params:
    - category: PAGE or CAPABILITY (optional)
    """
    category = request.args.get("category")
    perms = get_flags_by_category(category.upper()) if category else PERMISSION_DEFINITIONS
    return jsonify({
        "definitions": [get_flag_definition(perm[0]) for perm in perms],
    }), 200


@permissions_bp.get("/permission-templates")
@require_auth
@require_tenant
@require_user_manager
def list_templates():
    include_inactive = request.args.get("include_inactive", "true").lower() != "false"
    templates = permission_service.list_templates(g.tenant_id, include_inactive=include_inactive)
    return jsonify({
        "items": [t.to_dict() for t in templates],
        "count": len(templates),
    }), 200


@permissions_bp.post("/permission-templates")
@require_auth
@require_tenant
@require_user_manager
def create_template():
    try:
        data = validate_template_payload(request.get_json(silent=True), partial=False)
        template = permission_service.create_template(g.tenant_id, data)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(template.to_dict()), 201


@permissions_bp.put("/permission-templates/<int:template_id>")
@require_auth
@require_tenant
@require_user_manager
def update_template(template_id: int):
    """Partial update; only the keys present in the body change."""
    try:
        data = validate_template_payload(request.get_json(silent=True), partial=True)
        template = permission_service.update_template(template_id, g.tenant_id, data)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(template.to_dict()), 200


@permissions_bp.delete("/permission-templates/<int:template_id>")
@require_auth
@require_tenant
@require_user_manager
def delete_template(template_id: int):
    try:
        permission_service.delete_template(template_id, g.tenant_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"ok": True}), 200


@permissions_bp.get("/users/<int:user_id>/permissions")
@require_auth
@require_tenant
@require_user_manager
def get_user_permissions(user_id: int):
    """Stored row (if any) plus the effective result of resolution."""
    if _tenant_member_or_404(user_id) is None:
        return jsonify({"error": "User not found"}), 404

    row = permission_service.get_user_permissions_row(user_id, g.tenant_id)
    resolved = permission_service.resolve_permissions(user_id, g.tenant_id)
    return jsonify({
        "user_id": user_id,
        "stored": row.to_dict() if row else None,
        "effective": resolved.to_dict(),
        "source": resolved.source,
    }), 200


@permissions_bp.put("/users/<int:user_id>/permissions")
@require_auth
@require_tenant
@require_user_manager
def set_user_permissions(user_id: int):
    """Replace the user's permission row (flags absent from the body become null)."""
    if _tenant_member_or_404(user_id) is None:
        return jsonify({"error": "User not found"}), 404

    try:
        data = validate_user_permissions_payload(request.get_json(silent=True))
        row = permission_service.set_user_permissions(user_id, g.tenant_id, data)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(row.to_dict()), 200
