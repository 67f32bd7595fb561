from .tenancy import Organization
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .sales import Sale
from .confirmations import PaymentConfirmation
from .closings import DeliveryClosing, DeliveryClosingSale, ClosingSequence
from .policies import ApprovalAllowlistEntry
from .audit import AuditEvent
from ._immutable import ImmutableRecordError

__all__ = [
    'Organization',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'Sale',
    'PaymentConfirmation',
    'DeliveryClosing', 'DeliveryClosingSale', 'ClosingSequence',
    'ApprovalAllowlistEntry',
    'AuditEvent',
    'ImmutableRecordError',
]
