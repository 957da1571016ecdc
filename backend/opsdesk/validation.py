from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlparse

from opsdesk.time_utils import parse_iso_date
from opsdesk.permissions import PERMISSION_FLAGS, DASHBOARD_TYPES
from opsdesk.permissions.roles import ALL_ROLES, SUPERADMIN, PROVISIONABLE_ADMIN_ROLES, ADMIN


# Maximum money value accepted on any price/amount field: 9,999,999,999.99
MAX_AMOUNT = Decimal("9999999999.99")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SLUG_RE = re.compile(r"^[a-z0-9-]+$")

# Lower bound for superadmin-driven provisioning; self-service flows use
# the strong password rules in auth_service.
MIN_PROVISIONING_PASSWORD_LENGTH = 6


class ValidationError(ValueError):
    """
    400-level input problem.

    details holds one "field.path: message" string per failed field so the
    client can show every problem at once.
    """

    def __init__(self, message: str = "Invalid data", details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConflictError(ValueError):
    """Business rule conflict (duplicate slug, email or serial number)."""


class NotFoundError(LookupError):
    """Referenced row does not exist (or is not visible to the caller)."""


@dataclass
class FieldChecker:
    """
    Collects field-level errors for one payload.

    Each check returns the normalized value (or None) and records an error
    instead of raising, so a single request reports all problems.
    """
    errors: list[str] = field(default_factory=list)

    def fail(self, path: str, message: str) -> None:
        self.errors.append(f"{path}: {message}")

    def raise_if_errors(self) -> None:
        if self.errors:
            raise ValidationError("Invalid data", self.errors)

    def string(
        self,
        data: dict,
        key: str,
        path: str,
        *,
        required: bool = False,
        min_len: int = 0,
        max_len: int | None = None,
        pattern: re.Pattern | None = None,
        pattern_message: str = "has an invalid format",
    ) -> str | None:
        value = data.get(key)
        if value is None:
            if required:
                self.fail(path, "is required")
            return None
        if not isinstance(value, str):
            self.fail(path, "must be a string")
            return None
        value = value.strip()
        if required and len(value) < max(min_len, 1):
            self.fail(path, "is required" if not value else f"must be at least {min_len} characters")
            return None
        if not required and not value:
            return None
        if len(value) < min_len:
            self.fail(path, f"must be at least {min_len} characters")
            return None
        if max_len is not None and len(value) > max_len:
            self.fail(path, f"must be at most {max_len} characters")
            return None
        if pattern is not None and not pattern.match(value):
            self.fail(path, pattern_message)
            return None
        return value

    def email(self, data: dict, key: str, path: str, *, required: bool = True) -> str | None:
        value = self.string(data, key, path, required=required, max_len=255)
        if value is None:
            return None
        if not EMAIL_RE.match(value):
            self.fail(path, "must be a valid email")
            return None
        return value.lower()

    def password(self, data: dict, key: str, path: str, *, min_len: int) -> str | None:
        # Passwords are never stripped
        value = data.get(key)
        if value is None:
            self.fail(path, "is required")
            return None
        if not isinstance(value, str):
            self.fail(path, "must be a string")
            return None
        if len(value) < min_len:
            self.fail(path, f"must be at least {min_len} characters")
            return None
        return value

    def integer(
        self,
        data: dict,
        key: str,
        path: str,
        *,
        required: bool = False,
        minimum: int | None = None,
    ) -> int | None:
        value = data.get(key)
        if value is None:
            if required:
                self.fail(path, "is required")
            return None
        # bool is a subclass of int; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            if isinstance(value, str) and value.strip().isdigit():
                value = int(value.strip())
            else:
                self.fail(path, "must be an integer")
                return None
        if minimum is not None and value < minimum:
            self.fail(path, f"must be greater than or equal to {minimum}")
            return None
        return value

    def identifier(self, data: dict, key: str, path: str, *, required: bool = False) -> int | None:
        return self.integer(data, key, path, required=required, minimum=1)

    def amount(self, data: dict, key: str, path: str, *, required: bool = False) -> Decimal | None:
        value = data.get(key)
        if value is None:
            if required:
                self.fail(path, "is required")
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            self.fail(path, "must be a number")
            return None
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            self.fail(path, "must be a number")
            return None
        if not amount.is_finite():
            self.fail(path, "must be a number")
            return None
        if amount < 0:
            self.fail(path, "must be greater than or equal to 0")
            return None
        if amount > MAX_AMOUNT:
            self.fail(path, "is too large")
            return None
        return amount.quantize(Decimal("0.01"))

    def boolean(self, data: dict, key: str, path: str) -> bool | None:
        value = data.get(key)
        if value is None:
            return None
        if not isinstance(value, bool):
            self.fail(path, "must be a boolean")
            return None
        return value

    def date(self, data: dict, key: str, path: str, *, required: bool = False):
        value = data.get(key)
        if value is None or value == "":
            if required:
                self.fail(path, "is required")
            return None
        if not isinstance(value, str):
            self.fail(path, "must be an ISO date")
            return None
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            self.fail(path, "must be an ISO date")
            return None
        if parsed is None and required:
            self.fail(path, "is required")
        return parsed

    def url(self, data: dict, key: str, path: str) -> str | None:
        value = self.string(data, key, path, max_len=1024)
        if value is None:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            self.fail(path, "must be a valid URL")
            return None
        return value

    def choice(self, data: dict, key: str, path: str, choices, *, required: bool = False) -> str | None:
        value = self.string(data, key, path, required=required)
        if value is None:
            return None
        if value not in choices:
            self.fail(path, f"must be one of: {', '.join(sorted(choices))}")
            return None
        return value


def _require_object(payload: Any, path: str = "body") -> dict:
    if payload is None:
        raise ValidationError("Invalid data", [f"{path}: is required"])
    if not isinstance(payload, dict):
        raise ValidationError("Invalid data", [f"{path}: must be an object"])
    return payload


def _nested_object(checker: FieldChecker, data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        checker.fail(key, "is required")
        return {}
    if not isinstance(value, dict):
        checker.fail(key, "must be an object")
        return {}
    return value


# -- Stock entry --

def validate_stock_entry_payload(payload: Any) -> dict:
    """
    Validate and normalize a create-stock-entry body.

    Returns {"invoice": {...}, "items": [...], "signature_data": str | None}
    with amounts as Decimal and issue_date as a date.
    """
    data = _require_object(payload)
    checker = FieldChecker()

    raw_invoice = _nested_object(checker, data, "invoice")
    invoice = {
        "invoice_number": checker.string(raw_invoice, "invoice_number", "invoice.invoice_number", required=True, min_len=1, max_len=50),
        "invoice_series": checker.string(raw_invoice, "invoice_series", "invoice.invoice_series", max_len=10),
        "invoice_key": checker.string(raw_invoice, "invoice_key", "invoice.invoice_key", max_len=44),
        "issue_date": checker.date(raw_invoice, "issue_date", "invoice.issue_date", required=True),
        "supplier_id": checker.identifier(raw_invoice, "supplier_id", "invoice.supplier_id"),
        "total_value": checker.amount(raw_invoice, "total_value", "invoice.total_value"),
        "discount": checker.amount(raw_invoice, "discount", "invoice.discount"),
        "freight": checker.amount(raw_invoice, "freight", "invoice.freight"),
        "taxes": checker.amount(raw_invoice, "taxes", "invoice.taxes"),
        "notes": checker.string(raw_invoice, "notes", "invoice.notes", max_len=2000),
        "pdf_url": checker.url(raw_invoice, "pdf_url", "invoice.pdf_url"),
        "branch_id": checker.identifier(raw_invoice, "branch_id", "invoice.branch_id"),
    }

    raw_items = data.get("items")
    items: list[dict] = []
    if raw_items is None:
        checker.fail("items", "is required")
    elif not isinstance(raw_items, list):
        checker.fail("items", "must be a list")
    elif not raw_items:
        checker.fail("items", "must contain at least one item")
    else:
        for index, raw_item in enumerate(raw_items):
            prefix = f"items.{index}"
            if not isinstance(raw_item, dict):
                checker.fail(prefix, "must be an object")
                continue
            items.append({
                "product_id": checker.identifier(raw_item, "product_id", f"{prefix}.product_id", required=True),
                "quantity": checker.integer(raw_item, "quantity", f"{prefix}.quantity", required=True, minimum=1),
                "unit_price": checker.amount(raw_item, "unit_price", f"{prefix}.unit_price", required=True),
                "total_price": checker.amount(raw_item, "total_price", f"{prefix}.total_price", required=True),
                "cfop": checker.string(raw_item, "cfop", f"{prefix}.cfop", max_len=10),
                "ncm": checker.string(raw_item, "ncm", f"{prefix}.ncm", max_len=20),
                "serial_numbers": _serial_numbers(checker, raw_item, prefix),
            })

    signature_data = data.get("signature_data")
    if signature_data is not None and not isinstance(signature_data, str):
        checker.fail("signature_data", "must be a string")
        signature_data = None

    checker.raise_if_errors()
    return {"invoice": invoice, "items": items, "signature_data": signature_data or None}


def _serial_numbers(checker: FieldChecker, raw_item: dict, prefix: str) -> list[str]:
    raw = raw_item.get("serial_numbers")
    if raw is None:
        return []
    if not isinstance(raw, list):
        checker.fail(f"{prefix}.serial_numbers", "must be a list")
        return []
    serials = []
    for index, serial in enumerate(raw):
        path = f"{prefix}.serial_numbers.{index}"
        if not isinstance(serial, str) or not serial.strip():
            checker.fail(path, "must be a non-empty string")
            continue
        if len(serial.strip()) > 100:
            checker.fail(path, "must be at most 100 characters")
            continue
        serials.append(serial.strip())
    return serials


# -- Provisioning --

def validate_new_tenant_payload(payload: Any) -> dict:
    """Body shape {tenant: {...}, admin: {...}} for tenant-with-admin creation."""
    data = _require_object(payload)
    checker = FieldChecker()

    raw_tenant = _nested_object(checker, data, "tenant")
    raw_admin = _nested_object(checker, data, "admin")

    tenant = {
        "name": checker.string(raw_tenant, "name", "tenant.name", required=True, min_len=1, max_len=100),
        "slug": checker.string(
            raw_tenant, "slug", "tenant.slug",
            required=True, min_len=1, max_len=50,
            pattern=SLUG_RE,
            pattern_message="may only contain lowercase letters, digits and hyphens",
        ),
        "cnpj": checker.string(raw_tenant, "cnpj", "tenant.cnpj", max_len=20),
        "email": checker.email(raw_tenant, "email", "tenant.email", required=False),
        "phone": checker.string(raw_tenant, "phone", "tenant.phone", max_len=20),
    }
    admin = {
        "email": checker.email(raw_admin, "email", "admin.email"),
        "password": checker.password(raw_admin, "password", "admin.password", min_len=MIN_PROVISIONING_PASSWORD_LENGTH),
        "full_name": checker.string(raw_admin, "full_name", "admin.full_name", required=True, min_len=1, max_len=100),
    }

    checker.raise_if_errors()
    return {"tenant": tenant, "admin": admin}


def validate_branch_admin_payload(payload: Any) -> dict:
    """Body shape for adding an admin/manager (or director) to an existing tenant."""
    data = _require_object(payload)
    checker = FieldChecker()

    cleaned = {
        "tenant_id": checker.identifier(data, "tenant_id", "tenant_id", required=True),
        "branch_id": checker.identifier(data, "branch_id", "branch_id"),
        "email": checker.email(data, "email", "email"),
        "password": checker.password(data, "password", "password", min_len=MIN_PROVISIONING_PASSWORD_LENGTH),
        "full_name": checker.string(data, "full_name", "full_name", required=True, min_len=1, max_len=100),
        "role": checker.choice(data, "role", "role", PROVISIONABLE_ADMIN_ROLES) or ADMIN,
        "template_id": checker.identifier(data, "template_id", "template_id"),
    }

    checker.raise_if_errors()
    return cleaned


def validate_tenant_user_payload(payload: Any) -> dict:
    """
    Body for self-service user creation inside a tenant.

    Password strength is checked separately by auth_service so the message
    matches the password-update flow.
    """
    data = _require_object(payload)
    checker = FieldChecker()

    cleaned = {
        "tenant_id": checker.identifier(data, "tenant_id", "tenant_id"),
        "email": checker.email(data, "email", "email"),
        "password": checker.password(data, "password", "password", min_len=1),
        "full_name": checker.string(data, "full_name", "full_name", required=True, min_len=1, max_len=100),
        "template_id": checker.identifier(data, "template_id", "template_id"),
        "branch_id": checker.identifier(data, "branch_id", "branch_id"),
    }

    checker.raise_if_errors()
    return cleaned


def validate_password_update_payload(payload: Any) -> dict:
    data = _require_object(payload)
    checker = FieldChecker()
    cleaned = {
        "user_id": checker.identifier(data, "user_id", "user_id", required=True),
        "new_password": checker.password(data, "new_password", "new_password", min_len=1),
    }
    checker.raise_if_errors()
    return cleaned


def validate_superadmin_payload(payload: Any) -> dict:
    data = _require_object(payload)
    checker = FieldChecker()
    cleaned = {
        "email": checker.email(data, "email", "email"),
        "password": checker.password(data, "password", "password", min_len=MIN_PROVISIONING_PASSWORD_LENGTH),
        "full_name": checker.string(data, "full_name", "full_name", max_len=100) or "Super Admin",
    }
    checker.raise_if_errors()
    return cleaned


# -- Permissions --

def _permission_flags(checker: FieldChecker, data: dict, *, partial: bool) -> dict:
    flags = {}
    for flag in PERMISSION_FLAGS:
        if flag not in data:
            if not partial:
                flags[flag] = None
            continue
        flags[flag] = checker.boolean(data, flag, flag)
    return flags


def _reject_unknown(checker: FieldChecker, data: dict, allowed: set[str]) -> None:
    for key in data:
        if key not in allowed:
            checker.fail(key, "is not an allowed field")


TEMPLATE_FIELDS = {"name", "description", "color", "role", "default_dashboard", "is_active"} | set(PERMISSION_FLAGS)
USER_PERMISSION_FIELDS = {"template_id", "dashboard_type"} | set(PERMISSION_FLAGS)

# Templates can hand out any tenant role; superadmin is platform-level
TEMPLATE_ROLES = ALL_ROLES - {SUPERADMIN}


def validate_template_payload(payload: Any, *, partial: bool) -> dict:
    """
    partial=False: create semantics (name required, absent flags stored as null)
    partial=True: update semantics (only provided keys are returned)
    """
    data = _require_object(payload)
    checker = FieldChecker()
    _reject_unknown(checker, data, TEMPLATE_FIELDS)

    cleaned: dict = {}
    if not partial or "name" in data:
        cleaned["name"] = checker.string(data, "name", "name", required=True, min_len=1, max_len=100)
    if "description" in data:
        cleaned["description"] = checker.string(data, "description", "description", max_len=2000)
    if "color" in data:
        cleaned["color"] = checker.string(data, "color", "color", max_len=16)
    if "role" in data:
        cleaned["role"] = checker.choice(data, "role", "role", TEMPLATE_ROLES)
    if "default_dashboard" in data:
        cleaned["default_dashboard"] = checker.choice(data, "default_dashboard", "default_dashboard", DASHBOARD_TYPES)
    if "is_active" in data:
        is_active = checker.boolean(data, "is_active", "is_active")
        if is_active is None:
            checker.fail("is_active", "cannot be null")
        cleaned["is_active"] = is_active
    cleaned.update(_permission_flags(checker, data, partial=partial))

    checker.raise_if_errors()
    return cleaned


def validate_user_permissions_payload(payload: Any) -> dict:
    """Full replacement of one user's permission row (absent flags become null)."""
    data = _require_object(payload)
    checker = FieldChecker()
    _reject_unknown(checker, data, USER_PERMISSION_FIELDS)

    cleaned = {
        "template_id": checker.identifier(data, "template_id", "template_id"),
        "dashboard_type": checker.choice(data, "dashboard_type", "dashboard_type", DASHBOARD_TYPES),
    }
    cleaned.update(_permission_flags(checker, data, partial=False))

    checker.raise_if_errors()
    return cleaned


# -- Directory and catalog --

BRANCH_FIELDS = {"name", "code", "cnpj", "phone", "address", "city", "state", "zip_code"}


def validate_branch_payload(payload: Any, *, partial: bool) -> dict:
    data = _require_object(payload)
    checker = FieldChecker()
    _reject_unknown(checker, data, BRANCH_FIELDS)

    limits = {"code": 32, "cnpj": 20, "phone": 20, "address": 255, "city": 120, "state": 2, "zip_code": 10}
    cleaned: dict = {}
    if not partial or "name" in data:
        cleaned["name"] = checker.string(data, "name", "name", required=True, min_len=1, max_len=120)
    for key, max_len in limits.items():
        if key in data:
            cleaned[key] = checker.string(data, key, key, max_len=max_len)

    checker.raise_if_errors()
    return cleaned


PRODUCT_FIELDS = {
    "name", "code", "category", "unit", "branch_id",
    "min_stock", "cost_price", "sale_price", "is_serialized", "is_active",
}


def validate_product_payload(payload: Any) -> dict:
    """
    Product creation body. current_stock is not writable: it only moves
    through stock-producing operations.
    """
    data = _require_object(payload)
    checker = FieldChecker()
    _reject_unknown(checker, data, PRODUCT_FIELDS)

    cleaned = {
        "name": checker.string(data, "name", "name", required=True, min_len=1, max_len=255),
        "code": checker.string(data, "code", "code", max_len=64),
        "category": checker.string(data, "category", "category", max_len=64),
        "unit": checker.string(data, "unit", "unit", max_len=16),
        "branch_id": checker.identifier(data, "branch_id", "branch_id"),
        "min_stock": checker.integer(data, "min_stock", "min_stock", minimum=0),
        "cost_price": checker.amount(data, "cost_price", "cost_price"),
        "sale_price": checker.amount(data, "sale_price", "sale_price"),
        "is_serialized": bool(checker.boolean(data, "is_serialized", "is_serialized")),
        "is_active": checker.boolean(data, "is_active", "is_active") is not False,
    }

    checker.raise_if_errors()
    return cleaned
