# Overview: Flask API routes for branch (store location) management within a tenant.

"""
Branch routes with multi-tenant support.

MULTI-TENANT: All operations are scoped to g.tenant_id. Branches of other
tenants are reported as 404.

SECURITY:
- Listing: any authenticated tenant user
- Create/update: can_create / can_edit
- Deactivate: can_delete
- Move main flag: user-manager role
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_tenant, require_capability, require_user_manager
from ..services import tenant_service
from ..services.tenant_service import TenantAccessError
from ..validation import ValidationError, ConflictError, validate_branch_payload


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


@branches_bp.get("")
@require_auth
@require_tenant
def list_branches():
    """
    Query params:
    - include_inactive: "true" to include soft-deleted branches
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    branches = tenant_service.get_tenant_branches(g.tenant_id, active_only=not include_inactive)
    return jsonify({
        "items": [b.to_dict() for b in branches],
        "count": len(branches),
    }), 200


@branches_bp.post("")
@require_auth
@require_tenant
@require_capability("can_create")
def create_branch():
    try:
        data = validate_branch_payload(request.get_json(silent=True), partial=False)
        branch = tenant_service.create_branch(g.tenant_id, data)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(branch.to_dict()), 201


@branches_bp.patch("/<int:branch_id>")
@require_auth
@require_tenant
@require_capability("can_edit")
def update_branch(branch_id: int):
    """Accepts an optional version_id for optimistic concurrency."""
    payload = request.get_json(silent=True)
    expected_version = None
    if isinstance(payload, dict) and "version_id" in payload:
        payload = dict(payload)
        expected_version = payload.pop("version_id")
        if isinstance(expected_version, bool) or not isinstance(expected_version, int):
            return jsonify({"error": "Invalid data", "details": ["version_id: must be an integer"]}), 400

    try:
        data = validate_branch_payload(payload, partial=True)
        branch = tenant_service.update_branch(branch_id, g.tenant_id, data, expected_version=expected_version)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except TenantAccessError:
        return jsonify({"error": "Branch not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(branch.to_dict()), 200


@branches_bp.post("/<int:branch_id>/deactivate")
@require_auth
@require_tenant
@require_capability("can_delete")
def deactivate_branch(branch_id: int):
    try:
        branch = tenant_service.deactivate_branch(branch_id, g.tenant_id)
    except TenantAccessError:
        return jsonify({"error": "Branch not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(branch.to_dict()), 200


@branches_bp.post("/<int:branch_id>/main")
@require_auth
@require_tenant
@require_user_manager
def set_main_branch(branch_id: int):
    try:
        branch = tenant_service.set_main_branch(branch_id, g.tenant_id)
    except TenantAccessError:
        return jsonify({"error": "Branch not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(branch.to_dict()), 200
