# Overview: Flask API routes for the /functions/v1 endpoints; stock entry and provisioning.

"""
Function-style endpoints consumed by the admin and stock screens.

Every endpoint returns JSON. Error bodies are {"error": message} plus
"details" (a list of "field.path: message") for validation failures.

SECURITY:
- create-stock-entry: authenticated, can_create
- create-tenant-admin: superadmin (checked by the provisioning service)
- create-tenant-user / get-tenant-users: user-manager role or can_manage_users
- update-user-password: superadmin, self, or user manager of the target's tenant
- create-superadmin: X-Init-Token for the first one, superadmin afterwards
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_capability, bearer_token
from ..services import provisioning_service, session_service, stock_entry_service
from ..services.provisioning_service import ProvisioningError
from ..services.stock_entry_service import StockEntryError
from ..validation import ValidationError


functions_bp = Blueprint("functions", __name__, url_prefix="/functions/v1")


@functions_bp.post("/create-stock-entry")
@require_auth
@require_capability("can_create")
def create_stock_entry_route():
    """
    Record a supplier invoice and raise stock.

    Body: {invoice: {...}, items: [...], signature_data?}
    Returns {success: true, invoice_id} or 400 {error, details?}.
    """
    payload = request.get_json(silent=True)
    try:
        result = stock_entry_service.create_stock_entry(payload, g.current_user.id)
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except StockEntryError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create stock entry")
        return jsonify({"error": "Internal server error"}), 500


@functions_bp.post("/create-tenant-admin")
@require_auth
def create_tenant_admin_route():
    """
    Provision a new tenant with its admin, or an admin/manager/director for
    an existing tenant (when tenant_id is present).
    """
    payload = request.get_json(silent=True)
    try:
        result = provisioning_service.create_tenant_admin(
            payload,
            caller_id=g.current_user.id,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ProvisioningError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Failed to provision tenant admin")
        return jsonify({"error": "Internal server error"}), 500


@functions_bp.post("/create-tenant-user")
@require_auth
def create_tenant_user_route():
    payload = request.get_json(silent=True)
    try:
        result = provisioning_service.create_tenant_user(payload, g.current_user.id, g.tenant_id)
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ProvisioningError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Failed to create tenant user")
        return jsonify({"error": "Internal server error"}), 500


@functions_bp.route("/get-tenant-users", methods=["GET", "POST"])
@require_auth
def get_tenant_users_route():
    """Users (profiles + roles + template ids) of the caller's tenant."""
    try:
        users = provisioning_service.list_tenant_users(g.current_user.id, g.tenant_id)
        return jsonify({"users": users, "count": len(users)}), 200
    except ProvisioningError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Failed to list tenant users")
        return jsonify({"error": "Internal server error"}), 500


@functions_bp.post("/update-user-password")
@require_auth
def update_user_password_route():
    payload = request.get_json(silent=True)
    try:
        result = provisioning_service.update_user_password(payload, g.current_user.id, g.tenant_id)
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ProvisioningError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Failed to update user password")
        return jsonify({"error": "Internal server error"}), 500


@functions_bp.post("/create-superadmin")
def create_superadmin_route():
    """
    Create or promote a superadmin.

    Bootstrap: with no superadmin yet, the X-Init-Token header must match
    SUPERADMIN_INIT_TOKEN. Afterwards a superadmin bearer token is required.
    """
    caller_id = None
    token = bearer_token()
    if token:
        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401
        caller_id = context.user.id

    payload = request.get_json(silent=True)
    try:
        result = provisioning_service.create_superadmin(
            payload,
            caller_id=caller_id,
            init_token=request.headers.get("X-Init-Token"),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ProvisioningError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Failed to create superadmin")
        return jsonify({"error": "Internal server error"}), 500
