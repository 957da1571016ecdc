from __future__ import annotations

from ..extensions import db
from opsdesk.time_utils import to_utc_z, to_iso_date


def _money(value) -> float | None:
    return float(value) if value is not None else None


# Serial number lifecycle; units enter as "disponivel" (available)
SERIAL_STATUSES = ("disponivel", "em_uso", "manutencao", "garantia", "baixado")
SERIAL_STATUS_AVAILABLE = "disponivel"

# Stock movement kinds; supplier invoices produce "entrada"
MOVEMENT_TYPES = ("entrada", "saida", "ajuste", "transferencia", "devolucao")
MOVEMENT_TYPE_ENTRY = "entrada"


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    document = db.Column(db.String(20), nullable=True)  # CNPJ/CPF
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "document": self.document,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to tenants via tenant_id; branch_id is
    informational (where the item is normally kept).

    current_stock is a denormalized running total. It is only changed by
    movement-producing operations, and after each one it equals the
    new_stock of the product's latest StockMovement.

    version_id makes concurrent stock writers fail with StaleDataError
    instead of silently overwriting each other.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_products_tenant_code"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(64), nullable=True, index=True)
    unit = db.Column(db.String(16), nullable=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=True)
    cost_price = db.Column(db.Numeric(12, 2), nullable=True)
    sale_price = db.Column(db.Numeric(12, 2), nullable=True)

    is_serialized = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} tenant_id={self.tenant_id}>"

    def to_dict(self, *, include_costs: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "code": self.code,
            "category": self.category,
            "unit": self.unit,
            "current_stock": self.current_stock,
            "min_stock": self.min_stock,
            "sale_price": _money(self.sale_price),
            "is_serialized": self.is_serialized,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_costs:
            data["cost_price"] = _money(self.cost_price)
        return data


class SerialNumber(db.Model):
    """
    One row per physical unit of a serialized product.

    Identity (tenant, product, serial_number) is immutable; status and
    warranty fields change over the unit's lifecycle.
    """
    __tablename__ = "serial_numbers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "serial_number", name="uq_serial_numbers_tenant_product_serial"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    invoice_item_id = db.Column(db.Integer, db.ForeignKey("invoice_items.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    serial_number = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=SERIAL_STATUS_AVAILABLE, index=True)

    purchase_date = db.Column(db.Date, nullable=True)
    warranty_expires = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "invoice_item_id": self.invoice_item_id,
            "branch_id": self.branch_id,
            "serial_number": self.serial_number,
            "status": self.status,
            "purchase_date": to_iso_date(self.purchase_date),
            "warranty_expires": to_iso_date(self.warranty_expires),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Invoice(db.Model):
    """
    Supplier invoice (nota fiscal de entrada) recorded by a stock entry.

    Items are removed by explicit deletes during stock-entry compensation,
    not by a database cascade.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_tenant_number", "tenant_id", "invoice_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    invoice_number = db.Column(db.String(50), nullable=False)
    invoice_series = db.Column(db.String(10), nullable=True)
    invoice_key = db.Column(db.String(44), nullable=True)
    issue_date = db.Column(db.Date, nullable=False)

    total_value = db.Column(db.Numeric(12, 2), nullable=True)
    discount = db.Column(db.Numeric(12, 2), nullable=True)
    freight = db.Column(db.Numeric(12, 2), nullable=True)
    taxes = db.Column(db.Numeric(12, 2), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    pdf_url = db.Column(db.String(1024), nullable=True)
    signature_data = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier")
    items = db.relationship("InvoiceItem", backref="invoice", lazy=True, order_by="InvoiceItem.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "supplier_id": self.supplier_id,
            "invoice_number": self.invoice_number,
            "invoice_series": self.invoice_series,
            "invoice_key": self.invoice_key,
            "issue_date": to_iso_date(self.issue_date),
            "total_value": _money(self.total_value),
            "discount": _money(self.discount),
            "freight": _money(self.freight),
            "taxes": _money(self.taxes),
            "notes": self.notes,
            "pdf_url": self.pdf_url,
            "has_signature": bool(self.signature_data),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    cfop = db.Column(db.String(10), nullable=True)
    ncm = db.Column(db.String(20), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "total_price": _money(self.total_price),
            "cfop": self.cfop,
            "ncm": self.ncm,
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    previous_stock/new_stock are captured at write time; compensation after
    a failed stock entry restores the product to previous_stock.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_tenant_product", "tenant_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "invoice_id": self.invoice_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "unit_cost": _money(self.unit_cost),
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
