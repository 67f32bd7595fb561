from __future__ import annotations

from ..extensions import db
from expedition.time_utils import to_utc_z
from ._immutable import make_append_only

# Fixed stage order for one sale. A sale with FINAL_VERIFICATION is closed
# for this ledger.
RECEIPT = "receipt"
HANDOVER = "handover"
FINAL_VERIFICATION = "final_verification"
CONFIRMATION_ORDER = (RECEIPT, HANDOVER, FINAL_VERIFICATION)

CONFIRMATION_LABELS = {
    RECEIPT: "Recebimento",
    HANDOVER: "Repasse",
    FINAL_VERIFICATION: "Conferência Final",
}


class PaymentConfirmation(db.Model):
    """
    One attestation that a sale's payment reached a stage.

    APPEND-ONLY: rows are never updated or deleted.

    ORDERING (enforced by the database, not only the service):
    - (sale_id, confirmation_type) is unique, so a stage can't repeat
    - previous_type must be the stage immediately before confirmation_type
      (CHECK), and (sale_id, previous_type) must reference an existing row
      of the same sale (composite FK), so a stage can't be skipped
    """
    __tablename__ = "cash_payment_confirmations"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "confirmation_type", name="uq_cash_confirmations_sale_type"),
        db.ForeignKeyConstraint(
            ["sale_id", "previous_type"],
            ["cash_payment_confirmations.sale_id", "cash_payment_confirmations.confirmation_type"],
            name="fk_cash_confirmations_previous_stage",
        ),
        db.CheckConstraint(
            "(confirmation_type = 'receipt' AND previous_type IS NULL)"
            " OR (confirmation_type = 'handover' AND previous_type = 'receipt')"
            " OR (confirmation_type = 'final_verification' AND previous_type = 'handover')",
            name="ck_cash_confirmations_stage_order",
        ),
        db.Index("ix_cash_confirmations_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    confirmation_type = db.Column(db.String(32), nullable=False)
    previous_type = db.Column(db.String(32), nullable=True)

    confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("confirmations", lazy=True, order_by="PaymentConfirmation.id"))
    confirmer = db.relationship("User", foreign_keys=[confirmed_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sale_id": self.sale_id,
            "confirmation_type": self.confirmation_type,
            "confirmed_by": self.confirmed_by,
            "amount_cents": self.amount_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


make_append_only(PaymentConfirmation)
