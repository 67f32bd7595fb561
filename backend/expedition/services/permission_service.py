# Overview: Service-layer operations for permission; role resolution, actor building and security event logging.

"""
Permission Checking and Security Event Logging with Multi-Tenant Support

WHY: Enforce role-based access control and create audit trail.
Every denied permission check and every refused confirmation stamp is
logged for security monitoring.

MULTI-TENANT: Roles are org-scoped; security events include org_id.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
- Tenant isolation: All queries and logs scoped by org_id
"""

from __future__ import annotations

from ..extensions import db
from ..models import User, UserRole, Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS, DEFAULT_ROLE_DESCRIPTIONS
from .errors import AuthorizationError
from .role_gate import Actor
from expedition.time_utils import utcnow


class PermissionDeniedError(AuthorizationError):
    """Raised when user lacks required permission."""
    code = "permission_denied"


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    WHY: Immutable audit log for compliance and security monitoring.

    event_type examples:
    - PERMISSION_DENIED
    - CONFIRMATION_DENIED
    - LOGIN_FAILED
    - LOGOUT
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all permission codes for a user.

    Returns set of permission codes (e.g., {"reports_view", "sales_dispatch"}).
    Union over every role assigned to the user.
    """
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return {code for (code,) in rows}


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Logs denials to security_events.

    Usage:
        require_permission(user.id, "manage_policies", resource="/api/policies", org_id=g.org_id)
    """
    if user_has_permission(user_id, permission_code):
        return

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        ip_address=ip_address,
        user_agent=user_agent,
        org_id=org_id,
    )
    raise PermissionDeniedError(
        f"Permission denied: {permission_code}",
        required_permission=permission_code,
    )


def build_actor(user: User) -> Actor:
    """Freeze a user's identity and permissions into a role gate Actor."""
    return Actor.build(
        user_id=user.id,
        org_id=user.org_id,
        email=user.email,
        permissions=get_user_permissions(user.id),
    )


def get_user_role_names(user_id: int) -> list[str]:
    """Get list of role names for a user."""
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def initialize_permissions() -> int:
    """
    Initialize all permission definitions in database.

    Creates Permission records for all codes in PERMISSION_DEFINITIONS.
    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=code).first()

        if not existing:
            db.session.add(Permission(
                code=code,
                name=name,
                description=description,
                category=category,
            ))
            created_count += 1

    db.session.commit()
    return created_count


def create_default_roles(org_id: int) -> int:
    """Create standard roles for a specific organization if they don't exist."""
    created_count = 0

    for name, description in DEFAULT_ROLE_DESCRIPTIONS.items():
        existing = db.session.query(Role).filter_by(org_id=org_id, name=name).first()
        if not existing:
            db.session.add(Role(org_id=org_id, name=name, description=description))
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions(org_id: int) -> int:
    """
    Link the organization's default roles to their default permissions.

    Idempotent: skips roles or permissions that are missing and links that
    already exist.
    """
    created_count = 0

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
        if not role:
            continue

        for permission_code in permission_codes:
            permission = db.session.query(Permission).filter_by(code=permission_code).first()
            if not permission:
                continue

            existing = db.session.query(RolePermission).filter_by(
                role_id=role.id,
                permission_id=permission.id,
            ).first()

            if not existing:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                created_count += 1

    db.session.commit()
    return created_count


def setup_organization_roles(org_id: int) -> None:
    """Permissions catalogue + default roles + their grants, for one org."""
    initialize_permissions()
    create_default_roles(org_id)
    assign_default_role_permissions(org_id)
