# backend/opsdesk/services/products_service.py
"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations are tenant-scoped.
- list_products filters by tenant_id (and optionally a validated branch)
- create_product requires any branch_id to belong to the tenant
- current_stock is never written here; it only changes through
  movement-producing operations such as stock entries
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, NotFoundError
from .tenant_service import require_branch_in_tenant


def list_products(
    tenant_id: int,
    branch_id: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    include_costs: bool = True,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Tenant-scoped product listing with optional pagination.

    Raises TenantAccessError if branch_id doesn't belong to the tenant.
    """
    base_query = db.session.query(Product).filter(Product.tenant_id == tenant_id)

    if branch_id is not None:
        require_branch_in_tenant(branch_id, tenant_id)
        base_query = base_query.filter(Product.branch_id == branch_id)

    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))

    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(db.or_(Product.name.ilike(pattern), Product.code.ilike(pattern)))

    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict(include_costs=include_costs) for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict(include_costs=include_costs) for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int, tenant_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or product.tenant_id != tenant_id:
        raise NotFoundError("Product not found")
    return product


def create_product(tenant_id: int, data: dict) -> Product:
    """
    Create a product with zero stock.

    Raises:
        TenantAccessError: If branch_id doesn't belong to the tenant
        ConflictError: If the code already exists in the tenant
    """
    if data.get("branch_id") is not None:
        require_branch_in_tenant(data["branch_id"], tenant_id)

    product = Product(tenant_id=tenant_id, current_stock=0)
    for key, value in data.items():
        setattr(product, key, value)

    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("A product with this code already exists") from e
    return product
