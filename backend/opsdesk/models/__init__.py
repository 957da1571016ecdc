from .tenancy import Tenant, Branch, TENANT_STATUSES
from .auth import User, Profile, UserRole, SessionToken
from .access import PermissionTemplate, UserPermissions
from .inventory import (
    Supplier,
    Product,
    SerialNumber,
    Invoice,
    InvoiceItem,
    StockMovement,
    SERIAL_STATUS_AVAILABLE,
    MOVEMENT_TYPE_ENTRY,
)
from .security import SecurityEvent

__all__ = [
    'Tenant', 'Branch', 'TENANT_STATUSES',
    'User', 'Profile', 'UserRole', 'SessionToken',
    'PermissionTemplate', 'UserPermissions',
    'Supplier', 'Product', 'SerialNumber', 'Invoice', 'InvoiceItem', 'StockMovement',
    'SERIAL_STATUS_AVAILABLE', 'MOVEMENT_TYPE_ENTRY',
    'SecurityEvent',
]
