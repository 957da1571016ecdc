# Overview: The resolved Permissions value object and its fixed constants.

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace, asdict

from .definitions import PERMISSION_FIELD_DEFAULTS, PERMISSION_FLAGS


SOURCE_DIRECTOR = "director"
SOURCE_ROLE = "role"
SOURCE_TEMPLATE = "template"
SOURCE_USER = "user"
SOURCE_RESTRICTIVE_DEFAULT = "restrictive_default"


@dataclass(frozen=True)
class Permissions:
    """
    Effective page/action flags for one (user, tenant) pair.

    `source` records which resolution rule produced the object; it does not
    take part in equality.
    """
    page_dashboard: bool
    page_stock: bool
    page_fleet: bool
    page_teams: bool
    page_service_orders: bool
    page_customers: bool
    page_invoices: bool
    page_reports: bool
    page_settings: bool
    page_movimentacao: bool
    page_fechamento: bool
    page_hr: bool
    page_obras: bool
    page_diario_obras: bool
    page_suppliers: bool
    can_create: bool
    can_edit: bool
    can_delete: bool
    can_export: bool
    can_view_costs: bool
    can_view_reports: bool
    can_manage_users: bool
    dashboard_type: str | None = None
    source: str = field(default=SOURCE_ROLE, compare=False)

    @classmethod
    def from_flags(cls, flags: dict, *, dashboard_type: str | None, source: str) -> "Permissions":
        """
        Build from a mapping of possibly-null flags, filling nulls from
        PERMISSION_FIELD_DEFAULTS.
        """
        values = {}
        for flag in PERMISSION_FLAGS:
            value = flags.get(flag)
            values[flag] = PERMISSION_FIELD_DEFAULTS[flag] if value is None else bool(value)
        return cls(**values, dashboard_type=dashboard_type, source=source)

    @classmethod
    def from_row(cls, row, *, dashboard_type: str | None, source: str) -> "Permissions":
        return cls.from_flags(
            {flag: getattr(row, flag, None) for flag in PERMISSION_FLAGS},
            dashboard_type=dashboard_type,
            source=source,
        )

    def allows(self, flag: str) -> bool:
        if flag not in PERMISSION_FLAGS:
            raise ValueError(f"Unknown permission flag: {flag}")
        return getattr(self, flag)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("source")
        return data


def _all_flags(value: bool) -> dict:
    return {f.name: value for f in fields(Permissions) if f.name in PERMISSION_FLAGS}


# Superadmins and admins: everything visible, everything allowed
DEFAULT_PERMISSIONS = Permissions(**_all_flags(True), dashboard_type=None, source=SOURCE_ROLE)

# Cross-branch overseers: every page but settings, no mutations
DIRECTOR_PERMISSIONS = replace(
    DEFAULT_PERMISSIONS,
    page_settings=False,
    can_create=False,
    can_edit=False,
    can_delete=False,
    can_manage_users=False,
    dashboard_type="overview",
    source=SOURCE_DIRECTOR,
)

# Users with no role privilege and no stored permission row
RESTRICTIVE_DEFAULT_PERMISSIONS = replace(
    DEFAULT_PERMISSIONS,
    page_settings=False,
    can_delete=False,
    can_manage_users=False,
    source=SOURCE_RESTRICTIVE_DEFAULT,
)

