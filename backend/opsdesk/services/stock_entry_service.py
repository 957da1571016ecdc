# Overview: Service-layer operations for supplier stock entries; invoice, serials, movements and stock.

"""
Stock Entry Service

WHY: A supplier invoice (nota fiscal) raises stock for every product it
lists, records one append-only movement per line, and registers serial
numbers for serialized products. To readers this must look all-or-nothing.

PHASES:
1. VALIDATE (read-only): schema, tenant/branch/supplier scope, products
   exist in the tenant, serial numbers match quantity, are unique in the
   request and unused for the tenant+product
2. EXECUTE: each write is committed on its own and its id recorded:
   invoice -> per item: invoice item -> serials -> movement -> product
3. COMPENSATE (only on an EXECUTE failure): restore product stock in
   reverse order -> delete movements -> delete serials -> delete invoice
   items -> delete invoice, then report the original error

CONCURRENCY: Product rows carry a version column. The version is read
together with previous_stock, and the stock update only matches that
version. A concurrent writer in between makes the update raise
StaleDataError, which is handled like any other execution failure. The
restore in COMPENSATE is guarded the same way, so it never overwrites
another writer's change. No retries.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import (
    Profile,
    Product,
    Supplier,
    Invoice,
    InvoiceItem,
    SerialNumber,
    StockMovement,
    SERIAL_STATUS_AVAILABLE,
    MOVEMENT_TYPE_ENTRY,
)
from ..validation import NotFoundError, validate_stock_entry_payload
from .tenant_service import TenantAccessError, require_branch_in_tenant


class StockEntryError(Exception):
    """Stock entry rejected or rolled back; reported as 400 {error}."""
    pass


@dataclass
class ValidatedItem:
    product_id: int
    product_name: str
    is_serialized: bool
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    cfop: str | None
    ncm: str | None
    serial_numbers: list[str]


@dataclass
class StockUpdate:
    product_id: int
    previous_stock: int
    previous_cost: Decimal | None
    version_id: int
    # Version written by our own update; None until it has been applied
    applied_version: int | None = None


@dataclass
class CreatedRecords:
    """Ids of every committed row, in creation order."""
    invoice_id: int | None = None
    invoice_item_ids: list[int] = field(default_factory=list)
    serial_number_ids: list[int] = field(default_factory=list)
    movement_ids: list[int] = field(default_factory=list)
    stock_updates: list[StockUpdate] = field(default_factory=list)


# -- Validation phase --

def _validate_items(tenant_id: int, items: list[dict]) -> list[ValidatedItem]:
    validated: list[ValidatedItem] = []
    serials_seen: dict[int, set[str]] = {}

    for item in items:
        product = db.session.query(Product).filter_by(
            id=item["product_id"],
            tenant_id=tenant_id,
        ).first()
        if product is None:
            raise StockEntryError(f"Product not found: {item['product_id']}")

        serials = item["serial_numbers"]
        if product.is_serialized and serials:
            if len(serials) != item["quantity"]:
                raise StockEntryError(
                    f"Serial number count ({len(serials)}) does not match quantity "
                    f"({item['quantity']}) for {product.name}"
                )

            seen = serials_seen.setdefault(product.id, set())
            if len(set(serials)) != len(serials) or seen.intersection(serials):
                raise StockEntryError(f"Duplicate serial numbers in entry for {product.name}")
            seen.update(serials)

            existing = db.session.query(SerialNumber.serial_number).filter(
                SerialNumber.tenant_id == tenant_id,
                SerialNumber.product_id == product.id,
                SerialNumber.serial_number.in_(serials),
            ).first()
            if existing is not None:
                raise StockEntryError(
                    f'Serial number "{existing.serial_number}" already exists for {product.name}'
                )

        validated.append(ValidatedItem(
            product_id=product.id,
            product_name=product.name,
            is_serialized=product.is_serialized,
            quantity=item["quantity"],
            unit_price=item["unit_price"],
            total_price=item["total_price"],
            cfop=item["cfop"],
            ncm=item["ncm"],
            serial_numbers=serials if product.is_serialized else [],
        ))

    return validated


def _resolve_branch_id(invoice: dict, profile: Profile, tenant_id: int) -> int | None:
    branch_id = invoice.get("branch_id")
    if branch_id is None:
        return profile.selected_branch_id
    try:
        require_branch_in_tenant(branch_id, tenant_id)
    except TenantAccessError as e:
        raise StockEntryError("Branch not found") from e
    return branch_id


def _check_supplier(supplier_id: int | None, tenant_id: int) -> None:
    if supplier_id is None:
        return
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None or supplier.tenant_id != tenant_id:
        raise StockEntryError(f"Supplier not found: {supplier_id}")


# -- Execution steps --

def _insert_invoice(*, tenant_id, branch_id, user_id, invoice: dict, signature_data) -> Invoice:
    fields = {k: v for k, v in invoice.items() if k != "branch_id"}
    record = Invoice(
        tenant_id=tenant_id,
        branch_id=branch_id,
        signature_data=signature_data,
        created_by=user_id,
        **fields,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _insert_invoice_item(invoice_id: int, item: ValidatedItem) -> InvoiceItem:
    record = InvoiceItem(
        invoice_id=invoice_id,
        product_id=item.product_id,
        quantity=item.quantity,
        unit_price=item.unit_price,
        total_price=item.total_price,
        cfop=item.cfop,
        ncm=item.ncm,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _insert_serial(*, tenant_id, branch_id, item: ValidatedItem, invoice_item_id, serial, purchase_date) -> SerialNumber:
    record = SerialNumber(
        tenant_id=tenant_id,
        product_id=item.product_id,
        invoice_item_id=invoice_item_id,
        branch_id=branch_id,
        serial_number=serial,
        status=SERIAL_STATUS_AVAILABLE,
        purchase_date=purchase_date,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _insert_movement(
    *, tenant_id, branch_id, invoice_id, item: ValidatedItem, previous_stock, new_stock, invoice_number, user_id,
) -> StockMovement:
    record = StockMovement(
        tenant_id=tenant_id,
        branch_id=branch_id,
        product_id=item.product_id,
        invoice_id=invoice_id,
        movement_type=MOVEMENT_TYPE_ENTRY,
        quantity=item.quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        unit_cost=item.unit_price,
        reason=f"Entrada NF {invoice_number}",
        created_by=user_id,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _update_product_stock(update: StockUpdate, new_stock: int, unit_cost: Decimal) -> None:
    """
    Write the new stock only if the product still has the version read
    with previous_stock. Raises StaleDataError otherwise.
    """
    new_version = update.version_id + 1
    matched = (
        db.session.query(Product)
        .filter_by(id=update.product_id, version_id=update.version_id)
        .update(
            {
                Product.current_stock: new_stock,
                Product.cost_price: unit_cost,
                Product.version_id: new_version,
            },
            synchronize_session=False,
        )
    )
    if matched != 1:
        db.session.rollback()
        raise StaleDataError(
            f"Product {update.product_id} is no longer at version {update.version_id}"
        )
    db.session.commit()
    update.applied_version = new_version


def _execute(records: CreatedRecords, *, tenant_id, branch_id, user_id, data: dict, items: list[ValidatedItem]) -> None:
    invoice_data = data["invoice"]

    invoice = _insert_invoice(
        tenant_id=tenant_id,
        branch_id=branch_id,
        user_id=user_id,
        invoice=invoice_data,
        signature_data=data["signature_data"],
    )
    records.invoice_id = invoice.id

    for item in items:
        invoice_item = _insert_invoice_item(invoice.id, item)
        records.invoice_item_ids.append(invoice_item.id)

        for serial in item.serial_numbers:
            serial_record = _insert_serial(
                tenant_id=tenant_id,
                branch_id=branch_id,
                item=item,
                invoice_item_id=invoice_item.id,
                serial=serial,
                purchase_date=invoice_data["issue_date"],
            )
            records.serial_number_ids.append(serial_record.id)

        # Re-read so repeated products in one entry build on the prior line
        product = db.session.get(Product, item.product_id)
        previous_stock = product.current_stock or 0
        stock_update = StockUpdate(
            product_id=product.id,
            previous_stock=previous_stock,
            previous_cost=product.cost_price,
            version_id=product.version_id,
        )
        records.stock_updates.append(stock_update)

        new_stock = previous_stock + item.quantity
        movement = _insert_movement(
            tenant_id=tenant_id,
            branch_id=branch_id,
            invoice_id=invoice.id,
            item=item,
            previous_stock=previous_stock,
            new_stock=new_stock,
            invoice_number=invoice_data["invoice_number"],
            user_id=user_id,
        )
        records.movement_ids.append(movement.id)

        _update_product_stock(stock_update, new_stock, item.unit_price)


# -- Compensation --

def _compensation_step(description: str, fn) -> None:
    try:
        fn()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Stock entry compensation step failed: %s", description)


def _compensate(records: CreatedRecords) -> None:
    def restore_products():
        # Reverse order: the earliest snapshot of a repeated product is applied last
        current_versions: dict[int, int] = {}
        for update in reversed(records.stock_updates):
            if update.applied_version is None:
                continue
            expected = current_versions.get(update.product_id, update.applied_version)
            restored = (
                db.session.query(Product)
                .filter_by(id=update.product_id, version_id=expected)
                .update(
                    {
                        Product.current_stock: update.previous_stock,
                        Product.cost_price: update.previous_cost,
                        Product.version_id: expected + 1,
                    },
                    synchronize_session=False,
                )
            )
            if restored != 1:
                current_app.logger.error(
                    "Product %s was changed by another operation; stock not restored to %s",
                    update.product_id,
                    update.previous_stock,
                )
                continue
            current_versions[update.product_id] = expected + 1

    def delete_rows(model, ids):
        def run():
            if ids:
                db.session.query(model).filter(model.id.in_(ids)).delete(synchronize_session=False)
        return run

    _compensation_step("restore product stock", restore_products)
    _compensation_step("delete stock movements", delete_rows(StockMovement, records.movement_ids))
    _compensation_step("delete serial numbers", delete_rows(SerialNumber, records.serial_number_ids))
    _compensation_step("delete invoice items", delete_rows(InvoiceItem, records.invoice_item_ids))
    _compensation_step(
        "delete invoice",
        delete_rows(Invoice, [records.invoice_id] if records.invoice_id is not None else []),
    )


# -- Entry point --

def create_stock_entry(payload, user_id: int) -> dict:
    """
    Record a supplier invoice and raise stock for each of its items.

    Returns {"success": True, "invoice_id": id}.

    Raises:
        ValidationError: payload fails schema validation (no writes)
        StockEntryError: scope/product/serial checks fail (no writes), or an
            execution step failed and the compensation sequence ran
    """
    data = validate_stock_entry_payload(payload)

    profile = db.session.get(Profile, user_id)
    if profile is None or profile.tenant_id is None:
        raise StockEntryError("Tenant not found")
    tenant_id = profile.tenant_id

    branch_id = _resolve_branch_id(data["invoice"], profile, tenant_id)
    _check_supplier(data["invoice"]["supplier_id"], tenant_id)
    items = _validate_items(tenant_id, data["items"])

    records = CreatedRecords()
    try:
        _execute(records, tenant_id=tenant_id, branch_id=branch_id, user_id=user_id, data=data, items=items)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(
            "Stock entry %s failed for tenant %s, rolling back",
            data["invoice"]["invoice_number"],
            tenant_id,
        )
        _compensate(records)
        if isinstance(e, StaleDataError):
            raise StockEntryError("Product stock was changed by another operation; please retry") from e
        raise StockEntryError(f"Failed to record stock entry: {e}") from e

    current_app.logger.info(
        "Stock entry %s recorded for tenant %s (%d items)",
        data["invoice"]["invoice_number"],
        tenant_id,
        len(items),
    )
    return {"success": True, "invoice_id": records.invoice_id}


# -- Reads --

def get_invoice_with_items(invoice_id: int, tenant_id: int) -> dict:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None or invoice.tenant_id != tenant_id:
        raise NotFoundError("Invoice not found")

    data = invoice.to_dict()
    data["items"] = [item.to_dict() for item in invoice.items]
    return data


def list_product_movements(product_id: int, tenant_id: int, limit: int = 100) -> list[StockMovement]:
    """Movements for a tenant's product, newest first."""
    product = db.session.get(Product, product_id)
    if product is None or product.tenant_id != tenant_id:
        raise NotFoundError("Product not found")

    return (
        db.session.query(StockMovement)
        .filter_by(tenant_id=tenant_id, product_id=product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
