# Overview: Role names and the precedence used when a user holds several.

SUPERADMIN = "superadmin"
ADMIN = "admin"
MANAGER = "manager"
TECHNICIAN = "technician"
WAREHOUSE = "warehouse"
CAIXA = "caixa"

# Highest privilege first. A user with several role rows in one tenant is
# treated as holding the first of these that matches.
ROLE_PRECEDENCE = (SUPERADMIN, ADMIN, MANAGER, WAREHOUSE, CAIXA, TECHNICIAN)

ALL_ROLES = frozenset(ROLE_PRECEDENCE)

# Roles that resolve straight to the fully permissive set
PRIVILEGED_ROLES = frozenset({SUPERADMIN, ADMIN})

# Roles that become read-only directors when no branch is selected
DIRECTOR_ROLES = frozenset({ADMIN, MANAGER})

# Roles allowed to list and create users in their own tenant
USER_MANAGER_ROLES = frozenset({SUPERADMIN, ADMIN, MANAGER})

# Roles a branch admin / director may be provisioned with
PROVISIONABLE_ADMIN_ROLES = (ADMIN, MANAGER)

# Role given to tenant users created without a template
DEFAULT_TENANT_USER_ROLE = TECHNICIAN


def primary_role(roles) -> str | None:
    """Return the highest-precedence role among `roles`, or None."""
    held = set(roles)
    for role in ROLE_PRECEDENCE:
        if role in held:
            return role
    return None
