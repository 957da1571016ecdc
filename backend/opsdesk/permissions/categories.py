# Overview: Permission flag categories for grouping flags in admin screens.


class PermissionCategory:
    """Flag categories: page visibility vs. action capability."""
    PAGE = "PAGE"
    CAPABILITY = "CAPABILITY"
