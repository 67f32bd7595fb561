from __future__ import annotations

from ..extensions import db
from expedition.time_utils import to_utc_z, to_iso_date
from ._immutable import make_append_only

STATUS_PENDING = "pending"
STATUS_CONFIRMED_AUXILIAR = "confirmed_auxiliar"
STATUS_CONFIRMED_FINAL = "confirmed_final"
CLOSING_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED_AUXILIAR, STATUS_CONFIRMED_FINAL)

STAGE_AUXILIAR = "auxiliar"
STAGE_ADMIN = "admin"
CLOSING_STAGES = (STAGE_AUXILIAR, STAGE_ADMIN)


class DeliveryClosing(db.Model):
    """
    A numbered closing (fechamento) of delivered sales for one channel.

    WHY: Cash and card receipts from pickup, motoboy and carrier deliveries
    are reconciled in batches. Each batch is one audit record with category
    subtotals frozen at creation time.

    LIFECYCLE (forward only):
    - pending: created by an operator
    - confirmed_auxiliar: first sign-off (financeiro)
    - confirmed_final: admin sign-off; terminal and immutable

    Totals are snapshotted: total_amount_cents equals the sum of the four
    category subtotals and of the member rows' total_cents, and is never
    recomputed from live sales.
    """
    __tablename__ = "delivery_closings"
    __table_args__ = (
        db.UniqueConstraint("org_id", "closing_type", "closing_number", name="uq_delivery_closings_org_type_number"),
        db.CheckConstraint(
            "total_amount_cents = total_card_cents + total_pix_cents + total_cash_cents + total_other_cents",
            name="ck_delivery_closings_totals",
        ),
        db.CheckConstraint(
            "status IN ('pending', 'confirmed_auxiliar', 'confirmed_final')",
            name="ck_delivery_closings_status",
        ),
        db.Index("ix_delivery_closings_org_type_created", "org_id", "closing_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    closing_number = db.Column(db.Integer, nullable=False)
    closing_type = db.Column(db.String(16), nullable=False, index=True)  # pickup, motoboy, carrier
    closing_date = db.Column(db.Date, nullable=False)

    # Snapshot totals (cents)
    total_sales = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_card_cents = db.Column(db.Integer, nullable=False, default=0)
    total_pix_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    total_other_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default=STATUS_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Confirmation stamps
    confirmed_by_auxiliar = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at_auxiliar = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by_admin = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at_admin = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    creator = db.relationship("User", foreign_keys=[created_by])
    auxiliar = db.relationship("User", foreign_keys=[confirmed_by_auxiliar])
    admin = db.relationship("User", foreign_keys=[confirmed_by_admin])

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def requires_cash_acknowledgement(self) -> bool:
        return (self.total_cash_cents or 0) > 0

    def to_dict(self, include_sales: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "closing_number": self.closing_number,
            "closing_type": self.closing_type,
            "closing_date": to_iso_date(self.closing_date),
            "total_sales": self.total_sales,
            "total_amount_cents": self.total_amount_cents,
            "total_card_cents": self.total_card_cents,
            "total_pix_cents": self.total_pix_cents,
            "total_cash_cents": self.total_cash_cents,
            "total_other_cents": self.total_other_cents,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "confirmed_by_auxiliar": self.confirmed_by_auxiliar,
            "confirmed_at_auxiliar": to_utc_z(self.confirmed_at_auxiliar) if self.confirmed_at_auxiliar else None,
            "confirmed_by_admin": self.confirmed_by_admin,
            "confirmed_at_admin": to_utc_z(self.confirmed_at_admin) if self.confirmed_at_admin else None,
            "requires_cash_acknowledgement": self.requires_cash_acknowledgement,
            "version_id": self.version_id,
        }
        if include_sales:
            data["sales"] = [member.to_dict() for member in self.sales]
        return data


class DeliveryClosingSale(db.Model):
    """
    Frozen copy of one sale as it was when the closing was generated.

    IMMUTABLE: Later edits to the sale never reach this row. Reports that
    need live sale data must join on sale_id explicitly.

    A sale belongs to at most one closing per closing_type
    (uq_delivery_closing_sales_org_type_sale).
    """
    __tablename__ = "delivery_closing_sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "closing_type", "sale_id", name="uq_delivery_closing_sales_org_type_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    closing_id = db.Column(db.Integer, db.ForeignKey("delivery_closings.id"), nullable=False, index=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    closing_type = db.Column(db.String(16), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Snapshot fields
    sale_number = db.Column(db.String(32), nullable=True)
    lead_name = db.Column(db.String(255), nullable=True)
    payment_method = db.Column(db.String(128), nullable=True)
    payment_category = db.Column(db.String(32), nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    closing = db.relationship(
        "DeliveryClosing",
        backref=db.backref("sales", lazy=True, order_by="DeliveryClosingSale.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "closing_id": self.closing_id,
            "sale_id": self.sale_id,
            "sale_number": self.sale_number,
            "lead_name": self.lead_name,
            "payment_method": self.payment_method,
            "payment_category": self.payment_category,
            "total_cents": self.total_cents,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
        }


make_append_only(DeliveryClosingSale)


class ClosingSequence(db.Model):
    """
    Atomic per-organization, per-channel closing number allocator.

    WHY: max(closing_number) + 1 races under concurrent "generate closing"
    calls. The counter row is incremented with a single UPDATE instead.
    """
    __tablename__ = "closing_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "closing_type", name="uq_closing_sequences_org_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    closing_type = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "closing_type": self.closing_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
