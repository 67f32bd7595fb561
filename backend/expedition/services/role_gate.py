# Overview: Pure authorization checks for confirmation stages; no database access.

"""
Role Gate

Two independent policies sign off on money at different granularities:

- Cash ledger (per sale): receipt and handover may be attested by anyone on
  the auxiliar OR the admin allowlist; final_verification only by the admin
  allowlist.
- Closing (per batch): the auxiliar stage needs the reports_view permission;
  the admin stage needs the actor's email on the admin allowlist of that
  closing's channel (pickup, motoboy and carrier have separate sets).

The two are kept apart on purpose. They are loaded from the database by
policy_service and passed in here as frozen values, so every function in
this module is a plain (actor, action, policy) -> bool check.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from ..models.confirmations import RECEIPT, HANDOVER, FINAL_VERIFICATION, CONFIRMATION_ORDER
from ..models.closings import STAGE_AUXILIAR, STAGE_ADMIN, CLOSING_STAGES
from ..models.sales import DELIVERY_TYPES

CLOSING_AUXILIAR_PERMISSION = "reports_view"


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _email_set(emails: Iterable[str] | None) -> frozenset:
    return frozenset(normalize_email(e) for e in (emails or ()) if normalize_email(e))


@dataclass(frozen=True)
class Actor:
    """The authenticated operator, as seen by the gate."""
    user_id: int
    org_id: int
    email: str
    permissions: frozenset = field(default_factory=frozenset)

    @classmethod
    def build(cls, *, user_id: int, org_id: int, email: str | None, permissions: Iterable[str] = ()) -> "Actor":
        return cls(
            user_id=user_id,
            org_id=org_id,
            email=normalize_email(email),
            permissions=frozenset(permissions),
        )

    def has_permission(self, code: str) -> bool:
        return code in self.permissions


@dataclass(frozen=True)
class CashLedgerPolicy:
    auxiliar_emails: frozenset = field(default_factory=frozenset)
    admin_emails: frozenset = field(default_factory=frozenset)

    @classmethod
    def build(cls, *, auxiliar_emails: Iterable[str] = (), admin_emails: Iterable[str] = ()) -> "CashLedgerPolicy":
        return cls(auxiliar_emails=_email_set(auxiliar_emails), admin_emails=_email_set(admin_emails))

    def to_dict(self) -> dict:
        return {
            "auxiliar_emails": sorted(self.auxiliar_emails),
            "admin_emails": sorted(self.admin_emails),
        }


@dataclass(frozen=True)
class ClosingPolicy:
    # closing_type -> frozenset of admin emails
    admin_emails_by_type: Mapping[str, frozenset] = field(default_factory=dict)
    auxiliar_permission: str = CLOSING_AUXILIAR_PERMISSION

    @classmethod
    def build(cls, *, admin_emails_by_type: Mapping[str, Iterable[str]] | None = None,
              auxiliar_permission: str = CLOSING_AUXILIAR_PERMISSION) -> "ClosingPolicy":
        mapping = {
            closing_type: _email_set(emails)
            for closing_type, emails in (admin_emails_by_type or {}).items()
        }
        return cls(admin_emails_by_type=mapping, auxiliar_permission=auxiliar_permission)

    def admin_emails(self, closing_type: str) -> frozenset:
        return self.admin_emails_by_type.get(closing_type, frozenset())

    def to_dict(self) -> dict:
        return {
            "auxiliar_permission": self.auxiliar_permission,
            "admin_emails_by_type": {
                closing_type: sorted(self.admin_emails(closing_type))
                for closing_type in DELIVERY_TYPES
            },
        }


# -- Cash ledger --------------------------------------------------------------

def can_confirm_payment(actor: Actor | None, confirmation_type: str, policy: CashLedgerPolicy) -> bool:
    if actor is None or not actor.email:
        return False
    if confirmation_type in (RECEIPT, HANDOVER):
        return actor.email in policy.auxiliar_emails or actor.email in policy.admin_emails
    if confirmation_type == FINAL_VERIFICATION:
        return actor.email in policy.admin_emails
    return False


def payment_requirement(confirmation_type: str) -> str:
    """Human description of who may sign a cash ledger stage."""
    if confirmation_type == FINAL_VERIFICATION:
        return "cash ledger admin allowlist"
    return "cash ledger auxiliar or admin allowlist"


# -- Closings -----------------------------------------------------------------

def can_confirm_closing(actor: Actor | None, closing_type: str, stage: str, policy: ClosingPolicy) -> bool:
    if actor is None:
        return False
    if stage == STAGE_AUXILIAR:
        return actor.has_permission(policy.auxiliar_permission)
    if stage == STAGE_ADMIN:
        return bool(actor.email) and actor.email in policy.admin_emails(closing_type)
    return False


def closing_requirement(closing_type: str, stage: str, policy: ClosingPolicy) -> str:
    """Human description of who may sign a closing stage."""
    if stage == STAGE_AUXILIAR:
        return f"permission {policy.auxiliar_permission}"
    return f"{closing_type} closing admin allowlist"


def can_confirm(
    actor: Actor | None,
    action: str,
    *,
    cash_policy: CashLedgerPolicy | None = None,
    closing_policy: ClosingPolicy | None = None,
    closing_type: str | None = None,
) -> bool:
    """
    Single entry point over both policies.

    `action` is either a ledger confirmation type or a closing stage; the
    matching policy must be supplied. Missing policy means deny.
    """
    if action in CONFIRMATION_ORDER:
        if cash_policy is None:
            return False
        return can_confirm_payment(actor, action, cash_policy)
    if action in CLOSING_STAGES:
        if closing_policy is None or closing_type is None:
            return False
        return can_confirm_closing(actor, closing_type, action, closing_policy)
    return False


def confirmation_capabilities(actor: Actor, cash_policy: CashLedgerPolicy, closing_policy: ClosingPolicy) -> dict:
    """Everything the actor may sign, for display in the client."""
    return {
        "cash_ledger": {
            confirmation_type: can_confirm_payment(actor, confirmation_type, cash_policy)
            for confirmation_type in CONFIRMATION_ORDER
        },
        "closings": {
            closing_type: {
                stage: can_confirm_closing(actor, closing_type, stage, closing_policy)
                for stage in CLOSING_STAGES
            }
            for closing_type in DELIVERY_TYPES
        },
    }
