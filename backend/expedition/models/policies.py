from __future__ import annotations

from ..extensions import db
from expedition.time_utils import to_utc_z

POLICY_CASH_LEDGER = "cash_ledger"
POLICY_CLOSING = "closing"
POLICIES = (POLICY_CASH_LEDGER, POLICY_CLOSING)

ROLE_AUXILIAR = "auxiliar"
ROLE_ADMIN = "admin"
ALLOWLIST_ROLES = (ROLE_AUXILIAR, ROLE_ADMIN)


class ApprovalAllowlistEntry(db.Model):
    """
    One email allowed to sign a confirmation stage, per organization.

    - policy=cash_ledger, role=auxiliar|admin: cash ledger stages
      (closing_type is NULL)
    - policy=closing, role=admin: final closing sign-off for one channel
      (closing_type is required)

    The closing auxiliar stage is gated by the reports_view permission,
    not by this table.
    """
    __tablename__ = "approval_allowlist_entries"
    __table_args__ = (
        db.UniqueConstraint(
            "org_id", "policy", "role", "closing_type", "email",
            name="uq_approval_allowlist_entry",
        ),
        db.Index("ix_approval_allowlist_org_policy", "org_id", "policy"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    policy = db.Column(db.String(32), nullable=False)
    role = db.Column(db.String(16), nullable=False)
    closing_type = db.Column(db.String(16), nullable=True)
    email = db.Column(db.String(255), nullable=False)  # Stored lower-cased

    granted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "policy": self.policy,
            "role": self.role,
            "closing_type": self.closing_type,
            "email": self.email,
            "granted_by_user_id": self.granted_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
