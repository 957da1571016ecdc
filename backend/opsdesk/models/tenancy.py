from __future__ import annotations

from ..extensions import db
from opsdesk.time_utils import to_utc_z


TENANT_STATUSES = ("trial", "active", "suspended", "cancelled")


class Tenant(db.Model):
    """
    Multi-tenant root: every customer organization is a Tenant.

    All branches, profiles, products, invoices and permission data carry a
    tenant_id. No data may cross tenant boundaries.

    Tenants are created through provisioning and are not hard-deleted in
    normal flow; the only delete path is the compensation step when the
    admin identity for a brand-new tenant cannot be created.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(50), nullable=False, unique=True, index=True)  # URL-safe, [a-z0-9-]+
    status = db.Column(db.String(16), nullable=False, default="trial", index=True)

    cnpj = db.Column(db.String(20), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(20), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "cnpj": self.cnpj,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Branch(db.Model):
    """
    Branch (store location) within a tenant.

    MULTI-TENANT: Branch names and codes are unique within a tenant.
    At most one active main branch per tenant, enforced by a partial
    unique index; tenant creation always creates it.
    Branches are soft-deleted via is_active = False.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_branches_tenant_name"),
        db.UniqueConstraint("tenant_id", "code", name="uq_branches_tenant_code"),
        db.Index(
            "uq_branches_tenant_main",
            "tenant_id",
            unique=True,
            sqlite_where=db.text("is_main = 1"),
            postgresql_where=db.text("is_main"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True)

    is_main = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    cnpj = db.Column(db.String(20), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(2), nullable=True)
    zip_code = db.Column(db.String(10), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("branches", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "code": self.code,
            "is_main": self.is_main,
            "is_active": self.is_active,
            "cnpj": self.cnpj,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
