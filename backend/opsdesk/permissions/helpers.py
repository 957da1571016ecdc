# Overview: Utility functions for permission flag lookups and validation.

from .definitions import PERMISSION_DEFINITIONS


def get_all_flag_codes():
    """Get list of all permission flag codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_flags_by_category(category):
    """Get all flags in a category."""
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def get_flag_definition(code):
    """Get full definition for a flag code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
                "default": perm[4],
            }
    return None


def validate_flag_code(code):
    """Check if a flag code is valid."""
    return code in get_all_flag_codes()
