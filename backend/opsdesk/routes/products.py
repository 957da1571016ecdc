# Overview: Flask API routes for products, stock movements and invoices.

# backend/opsdesk/routes/products.py
"""
Product and invoice read/create routes with multi-tenant support.

MULTI-TENANT: All operations are scoped to g.tenant_id (set by
@require_auth). Rows of other tenants are reported as 404.

SECURITY:
- Product reads require page_stock; cost_price is hidden without can_view_costs
- Product creation requires can_create
- Invoice reads require page_invoices
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_tenant, require_capability
from ..services import permission_service, products_service, stock_entry_service
from ..services.tenant_service import TenantAccessError
from ..validation import ValidationError, ConflictError, NotFoundError, validate_product_payload


products_bp = Blueprint("products", __name__, url_prefix="/api")


def _can_view_costs() -> bool:
    return permission_service.resolve_permissions(g.current_user.id, g.tenant_id).can_view_costs


@products_bp.get("/products")
@require_auth
@require_tenant
@require_capability("page_stock")
def list_products():
    """
    List tenant products with optional pagination.

    Query params:
    - branch_id: int (optional) - must belong to the caller's tenant
    - q: str (optional) - name/code search
    - include_inactive: "true" to include inactive products
    - page / per_page: int (optional)
    """
    try:
        result = products_service.list_products(
            tenant_id=g.tenant_id,
            branch_id=request.args.get("branch_id", type=int),
            search=request.args.get("q"),
            include_inactive=request.args.get("include_inactive", "false").lower() == "true",
            include_costs=_can_view_costs(),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except TenantAccessError:
        return jsonify({"error": "Branch not found"}), 404

    return jsonify(result), 200


@products_bp.post("/products")
@require_auth
@require_tenant
@require_capability("can_create")
def create_product():
    try:
        data = validate_product_payload(request.get_json(silent=True))
        product = products_service.create_product(g.tenant_id, data)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 400
    except TenantAccessError:
        return jsonify({"error": "Branch not found"}), 404

    return jsonify(product.to_dict(include_costs=_can_view_costs())), 201


@products_bp.get("/products/<int:product_id>")
@require_auth
@require_tenant
@require_capability("page_stock")
def get_product(product_id: int):
    try:
        product = products_service.get_product(product_id, g.tenant_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(product.to_dict(include_costs=_can_view_costs())), 200


@products_bp.get("/products/<int:product_id>/movements")
@require_auth
@require_tenant
@require_capability("page_stock")
def list_product_movements(product_id: int):
    limit = min(request.args.get("limit", default=100, type=int), 500)
    try:
        movements = stock_entry_service.list_product_movements(product_id, g.tenant_id, limit=limit)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({
        "items": [m.to_dict() for m in movements],
        "count": len(movements),
    }), 200


@products_bp.get("/invoices/<int:invoice_id>")
@require_auth
@require_tenant
@require_capability("page_invoices")
def get_invoice(invoice_id: int):
    try:
        invoice = stock_entry_service.get_invoice_with_items(invoice_id, g.tenant_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(invoice), 200
