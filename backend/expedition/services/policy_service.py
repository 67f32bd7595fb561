# Overview: Service-layer operations for approval allowlists; loads role gate policies per organization.

"""
Approval Allowlists

WHY: Who may sign a cash stage or a closing's final stage is data, kept
per organization in approval_allowlist_entries, and loaded at request
time into the frozen policy values role_gate consumes.

Valid combinations:
- policy=cash_ledger, role=auxiliar|admin, closing_type=NULL
- policy=closing, role=admin, closing_type=pickup|motoboy|carrier

The closing auxiliar stage is permission based (reports_view), so there
is no closing/auxiliar allowlist.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import ApprovalAllowlistEntry
from ..models.policies import (
    POLICY_CASH_LEDGER,
    POLICY_CLOSING,
    POLICIES,
    ROLE_AUXILIAR,
    ROLE_ADMIN,
    ALLOWLIST_ROLES,
)
from ..models.sales import DELIVERY_TYPES
from .errors import ValidationError, NotFoundError
from .role_gate import CashLedgerPolicy, ClosingPolicy, normalize_email

logger = logging.getLogger(__name__)


class PolicyError(ValidationError):
    """Raised when an allowlist entry is malformed."""
    code = "invalid_policy_entry"


def load_cash_ledger_policy(org_id: int) -> CashLedgerPolicy:
    entries = db.session.query(ApprovalAllowlistEntry).filter_by(
        org_id=org_id,
        policy=POLICY_CASH_LEDGER,
    ).all()

    return CashLedgerPolicy.build(
        auxiliar_emails=[e.email for e in entries if e.role == ROLE_AUXILIAR],
        admin_emails=[e.email for e in entries if e.role == ROLE_ADMIN],
    )


def load_closing_policy(org_id: int) -> ClosingPolicy:
    entries = db.session.query(ApprovalAllowlistEntry).filter_by(
        org_id=org_id,
        policy=POLICY_CLOSING,
        role=ROLE_ADMIN,
    ).all()

    by_type: dict[str, list[str]] = {closing_type: [] for closing_type in DELIVERY_TYPES}
    for entry in entries:
        by_type.setdefault(entry.closing_type, []).append(entry.email)

    return ClosingPolicy.build(admin_emails_by_type=by_type)


def _validate_entry(policy: str, role: str, closing_type: str | None, email: str) -> None:
    if policy not in POLICIES:
        raise PolicyError(f"Unknown policy '{policy}'", allowed=list(POLICIES))
    if role not in ALLOWLIST_ROLES:
        raise PolicyError(f"Unknown role '{role}'", allowed=list(ALLOWLIST_ROLES))
    if not email or "@" not in email:
        raise PolicyError("A valid email is required")

    if policy == POLICY_CLOSING:
        if role != ROLE_ADMIN:
            raise PolicyError("Closing auxiliar stage is granted through the reports_view permission")
        if closing_type not in DELIVERY_TYPES:
            raise PolicyError("closing_type is required for closing admin entries", allowed=list(DELIVERY_TYPES))
    elif closing_type is not None:
        raise PolicyError("closing_type only applies to closing entries")


def _find_entry(org_id: int, policy: str, role: str, closing_type: str | None, email: str):
    return db.session.query(ApprovalAllowlistEntry).filter_by(
        org_id=org_id,
        policy=policy,
        role=role,
        closing_type=closing_type,
        email=email,
    ).first()


def grant_allowlist_entry(
    *,
    org_id: int,
    policy: str,
    role: str,
    email: str,
    closing_type: str | None = None,
    granted_by_user_id: int | None = None,
) -> ApprovalAllowlistEntry:
    """
    Add an email to an allowlist. Idempotent: an existing entry is returned.
    """
    email = normalize_email(email)
    closing_type = closing_type or None
    _validate_entry(policy, role, closing_type, email)

    existing = _find_entry(org_id, policy, role, closing_type, email)
    if existing:
        return existing

    entry = ApprovalAllowlistEntry(
        org_id=org_id,
        policy=policy,
        role=role,
        closing_type=closing_type,
        email=email,
        granted_by_user_id=granted_by_user_id,
    )
    db.session.add(entry)
    db.session.commit()

    logger.info(
        "Allowlist entry granted org=%s policy=%s role=%s closing_type=%s email=%s",
        org_id, policy, role, closing_type, email,
    )
    return entry


def revoke_allowlist_entry(*, org_id: int, entry_id: int) -> dict:
    """Delete an allowlist entry. Returns its serialized form."""
    entry = db.session.query(ApprovalAllowlistEntry).filter_by(id=entry_id, org_id=org_id).first()
    if not entry:
        raise NotFoundError("Allowlist entry not found", entry_id=entry_id)

    data = entry.to_dict()
    db.session.delete(entry)
    db.session.commit()

    logger.info("Allowlist entry revoked org=%s id=%s email=%s", org_id, entry_id, data["email"])
    return data


def revoke_allowlist_email(
    *,
    org_id: int,
    policy: str,
    role: str,
    email: str,
    closing_type: str | None = None,
) -> bool:
    """Remove one email from an allowlist. Returns False if it was not there."""
    entry = _find_entry(org_id, policy, role, closing_type or None, normalize_email(email))
    if not entry:
        return False
    revoke_allowlist_entry(org_id=org_id, entry_id=entry.id)
    return True


def list_allowlist_entries(org_id: int, policy: str | None = None) -> list[ApprovalAllowlistEntry]:
    query = db.session.query(ApprovalAllowlistEntry).filter_by(org_id=org_id)
    if policy:
        query = query.filter_by(policy=policy)
    return query.order_by(
        ApprovalAllowlistEntry.policy,
        ApprovalAllowlistEntry.role,
        ApprovalAllowlistEntry.closing_type,
        ApprovalAllowlistEntry.email,
    ).all()
