# Overview: Permission system package.
# Re-exports flag definitions, role constants and the resolved value object.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    PAGE_PERMISSIONS,
    CAPABILITY_PERMISSIONS,
    PAGE_FLAGS,
    CAPABILITY_FLAGS,
    PERMISSION_FLAGS,
    PERMISSION_FIELD_DEFAULTS,
    DASHBOARD_TYPES,
)
from .model import (
    Permissions,
    DEFAULT_PERMISSIONS,
    DIRECTOR_PERMISSIONS,
    RESTRICTIVE_DEFAULT_PERMISSIONS,
)
from .helpers import (
    get_all_flag_codes,
    get_flags_by_category,
    get_flag_definition,
    validate_flag_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "PAGE_PERMISSIONS",
    "CAPABILITY_PERMISSIONS",
    "PAGE_FLAGS",
    "CAPABILITY_FLAGS",
    "PERMISSION_FLAGS",
    "PERMISSION_FIELD_DEFAULTS",
    "DASHBOARD_TYPES",
    "Permissions",
    "DEFAULT_PERMISSIONS",
    "DIRECTOR_PERMISSIONS",
    "RESTRICTIVE_DEFAULT_PERMISSIONS",
    "get_all_flag_codes",
    "get_flags_by_category",
    "get_flag_definition",
    "validate_flag_code",
]
