# Overview: Pytest coverage for supplier stock entries and their compensation.

"""
Stock Entry Tests

Verifies:
1. A valid entry writes invoice, items, serials, movements and raises stock
2. Validation failures write nothing
3. An execution failure part-way through is fully compensated
4. A concurrent stock change is never overwritten
5. Invoices and movements are tenant-scoped on read
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from opsdesk.extensions import db
from opsdesk.models import Invoice, InvoiceItem, Product, SerialNumber, StockMovement, Supplier
from opsdesk.services import stock_entry_service
from opsdesk.services.stock_entry_service import StockEntryError
from opsdesk.validation import NotFoundError, ValidationError


def _item(product, quantity, unit_price="12.50", serials=None):
    item = {
        "product_id": product.id,
        "quantity": quantity,
        "unit_price": unit_price,
        "total_price": str(Decimal(unit_price) * quantity),
    }
    if serials is not None:
        item["serial_numbers"] = serials
    return item


def _payload(*items, **invoice):
    return {
        "invoice": {"invoice_number": "12345", "issue_date": "2026-10-01", **invoice},
        "items": list(items),
    }


def _row_counts():
    return {
        model.__tablename__: db.session.query(model).count()
        for model in (Invoice, InvoiceItem, SerialNumber, StockMovement)
    }


EMPTY = {"invoices": 0, "invoice_items": 0, "serial_numbers": 0, "stock_movements": 0}


def _bump_stock_elsewhere(product_id, quantity):
    """Commit a stock change on a separate connection, like another request would."""
    products = Product.__table__
    with db.engine.begin() as conn:
        conn.execute(
            update(products)
            .where(products.c.id == product_id)
            .values(
                current_stock=products.c.current_stock + quantity,
                version_id=products.c.version_id + 1,
            )
        )


class TestSuccessfulEntry:

    def test_raises_stock_and_records_movement(self, db_session, admin_a, branch_a, product_a):
        result = stock_entry_service.create_stock_entry(_payload(_item(product_a, 5)), admin_a.id)

        assert result["success"] is True
        invoice = db.session.get(Invoice, result["invoice_id"])
        assert invoice.invoice_number == "12345"
        assert invoice.issue_date == date(2026, 10, 1)
        assert invoice.branch_id == branch_a.id
        assert invoice.created_by == admin_a.id

        product = db.session.get(Product, product_a.id)
        assert product.current_stock == 15
        assert product.cost_price == Decimal("12.50")

        movement = db.session.query(StockMovement).one()
        assert movement.movement_type == "entrada"
        assert movement.previous_stock == 10
        assert movement.new_stock == 15
        assert movement.quantity == 5
        assert movement.reason == "Entrada NF 12345"
        assert movement.invoice_id == invoice.id

    def test_serialized_product_registers_serials(self, db_session, admin_a, branch_a, serialized_product_a):
        result = stock_entry_service.create_stock_entry(
            _payload(_item(serialized_product_a, 2, serials=["SN-001", "SN-002"])),
            admin_a.id,
        )

        item = db.session.query(InvoiceItem).filter_by(invoice_id=result["invoice_id"]).one()
        serials = db.session.query(SerialNumber).order_by(SerialNumber.serial_number).all()

        assert [s.serial_number for s in serials] == ["SN-001", "SN-002"]
        for serial in serials:
            assert serial.status == "disponivel"
            assert serial.invoice_item_id == item.id
            assert serial.branch_id == branch_a.id
            assert serial.purchase_date == date(2026, 10, 1)
        assert db.session.get(Product, serialized_product_a.id).current_stock == 2

    def test_repeated_product_builds_on_previous_line(self, db_session, admin_a, product_a):
        stock_entry_service.create_stock_entry(
            _payload(_item(product_a, 2), _item(product_a, 3, unit_price="11.00")),
            admin_a.id,
        )

        movements = db.session.query(StockMovement).order_by(StockMovement.id).all()
        assert [(m.previous_stock, m.new_stock) for m in movements] == [(10, 12), (12, 15)]

        product = db.session.get(Product, product_a.id)
        assert product.current_stock == 15
        assert product.cost_price == Decimal("11.00")

    def test_explicit_branch_and_supplier(self, db_session, tenant_a, admin_a, branch_a2, product_a):
        supplier = Supplier(tenant_id=tenant_a.id, name="Distribuidora Sul")
        db_session.add(supplier)
        db_session.commit()

        result = stock_entry_service.create_stock_entry(
            _payload(_item(product_a, 1), branch_id=branch_a2.id, supplier_id=supplier.id),
            admin_a.id,
        )

        invoice = db.session.get(Invoice, result["invoice_id"])
        assert invoice.branch_id == branch_a2.id
        assert invoice.supplier_id == supplier.id

    def test_signature_is_stored(self, db_session, admin_a, product_a):
        payload = _payload(_item(product_a, 1))
        payload["signature_data"] = "data:image/png;base64,iVBORw0KGgo="

        result = stock_entry_service.create_stock_entry(payload, admin_a.id)

        invoice = stock_entry_service.get_invoice_with_items(result["invoice_id"], product_a.tenant_id)
        assert invoice["has_signature"] is True
        assert len(invoice["items"]) == 1


class TestRejectedEntry:
    """Nothing is written when validation fails."""

    def test_empty_items(self, db_session, admin_a):
        with pytest.raises(ValidationError) as exc_info:
            stock_entry_service.create_stock_entry(_payload(), admin_a.id)

        assert "items: must contain at least one item" in exc_info.value.details
        assert _row_counts() == EMPTY

    def test_missing_invoice_number_and_bad_quantity(self, db_session, admin_a, product_a):
        payload = _payload(_item(product_a, 0))
        del payload["invoice"]["invoice_number"]

        with pytest.raises(ValidationError) as exc_info:
            stock_entry_service.create_stock_entry(payload, admin_a.id)

        assert "invoice.invoice_number: is required" in exc_info.value.details
        assert any(d.startswith("items.0.quantity:") for d in exc_info.value.details)

    def test_serial_count_must_match_quantity(self, db_session, admin_a, serialized_product_a):
        with pytest.raises(StockEntryError) as exc_info:
            stock_entry_service.create_stock_entry(
                _payload(_item(serialized_product_a, 3, serials=["SN-1", "SN-2"])),
                admin_a.id,
            )

        assert "does not match quantity" in str(exc_info.value)
        assert _row_counts() == EMPTY
        assert db.session.get(Product, serialized_product_a.id).current_stock == 0

    def test_duplicate_serial_in_item(self, db_session, admin_a, serialized_product_a):
        with pytest.raises(StockEntryError, match="Duplicate serial numbers"):
            stock_entry_service.create_stock_entry(
                _payload(_item(serialized_product_a, 2, serials=["SN-1", "SN-1"])),
                admin_a.id,
            )
        assert _row_counts() == EMPTY

    def test_duplicate_serial_across_items(self, db_session, admin_a, serialized_product_a):
        with pytest.raises(StockEntryError, match="Duplicate serial numbers"):
            stock_entry_service.create_stock_entry(
                _payload(
                    _item(serialized_product_a, 1, serials=["SN-1"]),
                    _item(serialized_product_a, 1, serials=["SN-1"]),
                ),
                admin_a.id,
            )
        assert _row_counts() == EMPTY

    def test_serial_already_registered(self, db_session, admin_a, serialized_product_a):
        stock_entry_service.create_stock_entry(
            _payload(_item(serialized_product_a, 1, serials=["SN-1"])),
            admin_a.id,
        )
        before = _row_counts()

        with pytest.raises(StockEntryError, match='"SN-1" already exists'):
            stock_entry_service.create_stock_entry(
                _payload(_item(serialized_product_a, 2, serials=["SN-2", "SN-1"]), invoice_number="999"),
                admin_a.id,
            )

        assert _row_counts() == before

    def test_product_of_other_tenant(self, db_session, admin_a, product_b):
        with pytest.raises(StockEntryError, match="Product not found"):
            stock_entry_service.create_stock_entry(_payload(_item(product_b, 1)), admin_a.id)

        assert db.session.get(Product, product_b.id).current_stock == 3
        assert _row_counts() == EMPTY

    def test_branch_of_other_tenant(self, db_session, admin_a, branch_b, product_a):
        with pytest.raises(StockEntryError, match="Branch not found"):
            stock_entry_service.create_stock_entry(
                _payload(_item(product_a, 1), branch_id=branch_b.id),
                admin_a.id,
            )
        assert _row_counts() == EMPTY

    def test_supplier_of_other_tenant(self, db_session, tenant_b, admin_a, product_a):
        supplier = Supplier(tenant_id=tenant_b.id, name="Fornecedor Beta")
        db_session.add(supplier)
        db_session.commit()

        with pytest.raises(StockEntryError, match="Supplier not found"):
            stock_entry_service.create_stock_entry(
                _payload(_item(product_a, 1), supplier_id=supplier.id),
                admin_a.id,
            )
        assert _row_counts() == EMPTY

    def test_caller_without_tenant(self, db_session, superadmin, product_a):
        with pytest.raises(StockEntryError, match="Tenant not found"):
            stock_entry_service.create_stock_entry(_payload(_item(product_a, 1)), superadmin.id)


class TestCompensation:
    """A failure after the first write leaves no trace."""

    def _fail_on_call(self, monkeypatch, call_number, error, before_failure=None):
        original = stock_entry_service._update_product_stock
        calls = []

        def flaky_update(stock_update, new_stock, unit_cost):
            calls.append(stock_update.product_id)
            if len(calls) == call_number:
                if before_failure is not None:
                    before_failure()
                raise error
            return original(stock_update, new_stock, unit_cost)

        monkeypatch.setattr(stock_entry_service, "_update_product_stock", flaky_update)
        return calls

    def test_failure_on_second_item_restores_everything(
        self, db_session, admin_a, product_a, serialized_product_a, monkeypatch
    ):
        calls = self._fail_on_call(monkeypatch, 2, RuntimeError("disk full"))

        with pytest.raises(StockEntryError, match="Failed to record stock entry: disk full"):
            stock_entry_service.create_stock_entry(
                _payload(
                    _item(product_a, 5),
                    _item(serialized_product_a, 1, serials=["SN-9"]),
                ),
                admin_a.id,
            )

        assert calls == [product_a.id, serialized_product_a.id]
        assert _row_counts() == EMPTY

        product = db.session.get(Product, product_a.id)
        assert product.current_stock == 10
        assert product.cost_price == Decimal("10.00")
        assert db.session.get(Product, serialized_product_a.id).current_stock == 0

    def test_repeated_product_restores_original_stock(self, db_session, admin_a, product_a, monkeypatch):
        self._fail_on_call(monkeypatch, 2, RuntimeError("disk full"))

        with pytest.raises(StockEntryError):
            stock_entry_service.create_stock_entry(
                _payload(_item(product_a, 2), _item(product_a, 3)),
                admin_a.id,
            )

        assert db.session.get(Product, product_a.id).current_stock == 10
        assert _row_counts() == EMPTY

    def test_restore_keeps_other_writers_change(self, db_session, admin_a, product_a, serialized_product_a, monkeypatch):
        self._fail_on_call(
            monkeypatch, 2, RuntimeError("disk full"),
            before_failure=lambda: _bump_stock_elsewhere(product_a.id, 7),
        )

        with pytest.raises(StockEntryError):
            stock_entry_service.create_stock_entry(
                _payload(_item(product_a, 5), _item(serialized_product_a, 1, serials=["SN-9"])),
                admin_a.id,
            )

        # The other writer's +7 survives; this entry's +5 could not be undone
        assert _row_counts() == EMPTY
        assert db.session.get(Product, product_a.id).current_stock == 22

    def test_entry_can_be_retried_after_failure(self, db_session, admin_a, serialized_product_a, monkeypatch):
        self._fail_on_call(monkeypatch, 1, RuntimeError("disk full"))
        payload = _payload(_item(serialized_product_a, 1, serials=["SN-5"]))

        with pytest.raises(StockEntryError):
            stock_entry_service.create_stock_entry(payload, admin_a.id)

        monkeypatch.undo()
        result = stock_entry_service.create_stock_entry(payload, admin_a.id)

        assert result["success"] is True
        assert db.session.query(SerialNumber).filter_by(serial_number="SN-5").count() == 1


class TestConcurrentWriter:
    """Another writer changing the product between read and update."""

    def _write_before_update(self, monkeypatch, product_id, quantity):
        original = stock_entry_service._update_product_stock

        def racing_update(stock_update, new_stock, unit_cost):
            _bump_stock_elsewhere(product_id, quantity)
            return original(stock_update, new_stock, unit_cost)

        monkeypatch.setattr(stock_entry_service, "_update_product_stock", racing_update)

    def test_entry_asks_for_retry_and_keeps_other_change(self, db_session, admin_a, product_a, monkeypatch):
        self._write_before_update(monkeypatch, product_a.id, 7)

        with pytest.raises(StockEntryError, match="changed by another operation; please retry"):
            stock_entry_service.create_stock_entry(_payload(_item(product_a, 4)), admin_a.id)

        assert _row_counts() == EMPTY
        product = db.session.get(Product, product_a.id)
        assert product.current_stock == 17
        assert product.cost_price == Decimal("10.00")

    def test_retry_builds_on_other_change(self, db_session, admin_a, product_a, monkeypatch):
        self._write_before_update(monkeypatch, product_a.id, 7)
        with pytest.raises(StockEntryError):
            stock_entry_service.create_stock_entry(_payload(_item(product_a, 4)), admin_a.id)

        monkeypatch.undo()
        stock_entry_service.create_stock_entry(_payload(_item(product_a, 4)), admin_a.id)

        movement = db.session.query(StockMovement).one()
        assert (movement.previous_stock, movement.new_stock) == (17, 21)
        assert db.session.get(Product, product_a.id).current_stock == 21


class TestReads:

    def test_invoice_is_tenant_scoped(self, db_session, tenant_a, tenant_b, admin_a, product_a):
        result = stock_entry_service.create_stock_entry(_payload(_item(product_a, 1)), admin_a.id)

        with pytest.raises(NotFoundError):
            stock_entry_service.get_invoice_with_items(result["invoice_id"], tenant_b.id)

        invoice = stock_entry_service.get_invoice_with_items(result["invoice_id"], tenant_a.id)
        assert invoice["items"][0]["product_id"] == product_a.id

    def test_movements_newest_first(self, db_session, tenant_a, tenant_b, admin_a, product_a):
        stock_entry_service.create_stock_entry(_payload(_item(product_a, 1)), admin_a.id)
        stock_entry_service.create_stock_entry(_payload(_item(product_a, 2), invoice_number="2"), admin_a.id)

        movements = stock_entry_service.list_product_movements(product_a.id, tenant_a.id)

        assert [m.new_stock for m in movements] == [13, 11]
        with pytest.raises(NotFoundError):
            stock_entry_service.list_product_movements(product_a.id, tenant_b.id)
