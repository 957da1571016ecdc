# Overview: All permission flag definitions organized by category.
# Each flag is defined as: (code, name, description, category, default)
#
# The default is what a stored template or per-user row resolves to when
# the column is null. It is NOT what an unconfigured user gets; see
# permissions.model for the whole-object constants.

from .categories import PermissionCategory


# -- PAGES --

PAGE_PERMISSIONS = [
    ("page_dashboard", "Dashboard", "View the dashboard", PermissionCategory.PAGE, True),
    ("page_stock", "Stock", "View stock and product screens", PermissionCategory.PAGE, True),
    ("page_fleet", "Fleet", "View vehicles and fuel records", PermissionCategory.PAGE, True),
    ("page_teams", "Teams", "View teams and collaborators", PermissionCategory.PAGE, True),
    ("page_service_orders", "Service Orders", "View service orders", PermissionCategory.PAGE, True),
    ("page_customers", "Customers", "View customers", PermissionCategory.PAGE, True),
    ("page_invoices", "Invoices", "View supplier invoices", PermissionCategory.PAGE, True),
    ("page_reports", "Reports", "View the reports area", PermissionCategory.PAGE, True),
    ("page_settings", "Settings", "Access tenant settings", PermissionCategory.PAGE, False),
    ("page_movimentacao", "Stock Movements", "Register stock movements", PermissionCategory.PAGE, True),
    ("page_fechamento", "Closing", "View period closing", PermissionCategory.PAGE, True),
    ("page_hr", "Human Resources", "View employees, leaves and payroll", PermissionCategory.PAGE, True),
    ("page_obras", "Construction Projects", "View construction projects", PermissionCategory.PAGE, True),
    ("page_diario_obras", "Daily Logs", "View construction daily logs", PermissionCategory.PAGE, True),
    ("page_suppliers", "Suppliers", "View suppliers", PermissionCategory.PAGE, True),
]


# -- CAPABILITIES --

CAPABILITY_PERMISSIONS = [
    ("can_create", "Create", "Create records", PermissionCategory.CAPABILITY, True),
    ("can_edit", "Edit", "Edit records", PermissionCategory.CAPABILITY, True),
    ("can_delete", "Delete", "Delete records", PermissionCategory.CAPABILITY, False),
    ("can_export", "Export", "Export CSV and PDF reports", PermissionCategory.CAPABILITY, True),
    ("can_view_costs", "View Costs", "See cost prices and totals", PermissionCategory.CAPABILITY, True),
    ("can_view_reports", "View Reports", "Run reports", PermissionCategory.CAPABILITY, True),
    ("can_manage_users", "Manage Users", "Create users and assign permissions", PermissionCategory.CAPABILITY, False),
]


PERMISSION_DEFINITIONS = PAGE_PERMISSIONS + CAPABILITY_PERMISSIONS

PAGE_FLAGS = tuple(perm[0] for perm in PAGE_PERMISSIONS)
CAPABILITY_FLAGS = tuple(perm[0] for perm in CAPABILITY_PERMISSIONS)
PERMISSION_FLAGS = PAGE_FLAGS + CAPABILITY_FLAGS

# Single default-value table, applied once when a stored row is converted
PERMISSION_FIELD_DEFAULTS = {perm[0]: perm[4] for perm in PERMISSION_DEFINITIONS}

# Dashboards a template or per-user row may pin
DASHBOARD_TYPES = (
    "overview",
    "estoque",
    "frota",
    "obras",
    "rh",
    "servico",
    "vendas",
)
