from __future__ import annotations

from ..extensions import db
from ..permissions import PERMISSION_FLAGS
from opsdesk.time_utils import to_utc_z


class PermissionFlagsMixin:
    """
    Nullable page/capability flag columns shared by templates and per-user
    rows. Null means "use the declared default" (see
    permissions.definitions.PERMISSION_FIELD_DEFAULTS).
    """
    page_dashboard = db.Column(db.Boolean, nullable=True)
    page_stock = db.Column(db.Boolean, nullable=True)
    page_fleet = db.Column(db.Boolean, nullable=True)
    page_teams = db.Column(db.Boolean, nullable=True)
    page_service_orders = db.Column(db.Boolean, nullable=True)
    page_customers = db.Column(db.Boolean, nullable=True)
    page_invoices = db.Column(db.Boolean, nullable=True)
    page_reports = db.Column(db.Boolean, nullable=True)
    page_settings = db.Column(db.Boolean, nullable=True)
    page_movimentacao = db.Column(db.Boolean, nullable=True)
    page_fechamento = db.Column(db.Boolean, nullable=True)
    page_hr = db.Column(db.Boolean, nullable=True)
    page_obras = db.Column(db.Boolean, nullable=True)
    page_diario_obras = db.Column(db.Boolean, nullable=True)
    page_suppliers = db.Column(db.Boolean, nullable=True)

    can_create = db.Column(db.Boolean, nullable=True)
    can_edit = db.Column(db.Boolean, nullable=True)
    can_delete = db.Column(db.Boolean, nullable=True)
    can_export = db.Column(db.Boolean, nullable=True)
    can_view_costs = db.Column(db.Boolean, nullable=True)
    can_view_reports = db.Column(db.Boolean, nullable=True)
    can_manage_users = db.Column(db.Boolean, nullable=True)

    def flags_dict(self) -> dict:
        return {flag: getattr(self, flag) for flag in PERMISSION_FLAGS}


class PermissionTemplate(PermissionFlagsMixin, db.Model):
    """
    Named, reusable bundle of permission flags, scoped to one tenant.

    When a user's UserPermissions row points at a template, the template's
    flags replace the row's own flags entirely.
    """
    __tablename__ = "permission_templates"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_permission_templates_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(16), nullable=True)

    # Role handed to users created from this template
    role = db.Column(db.String(32), nullable=True)
    default_dashboard = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("permission_templates", lazy=True))

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "role": self.role,
            "default_dashboard": self.default_dashboard,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        data.update(self.flags_dict())
        return data


class UserPermissions(PermissionFlagsMixin, db.Model):
    """
    Per-user permission row, at most one per (user, tenant).

    If template_id is set, the template supplies every page/can flag and the
    flags stored here are ignored; dashboard_type is always read from here.
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        db.UniqueConstraint("user_id", "tenant_id", name="uq_user_permissions_user_tenant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    template_id = db.Column(db.Integer, db.ForeignKey("permission_templates.id"), nullable=True, index=True)
    dashboard_type = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    template = db.relationship("PermissionTemplate", backref=db.backref("assignments", lazy=True))

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "template_id": self.template_id,
            "dashboard_type": self.dashboard_type,
            "updated_at": to_utc_z(self.updated_at),
        }
        data.update(self.flags_dict())
        return data
