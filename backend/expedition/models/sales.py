from __future__ import annotations

from ..extensions import db
from expedition.time_utils import to_utc_z

DELIVERY_TYPES = ("pickup", "motoboy", "carrier")

# Sales in these statuses never enter a closing or the cash ledger.
INELIGIBLE_SALE_STATUSES = ("cancelled", "returned")


class Sale(db.Model):
    """
    Sale record, owned by the sales module.

    This service only reads it: closings snapshot its fields and the cash
    ledger appends confirmations against its id. Nothing here writes to
    the sales table outside of fixtures and seeding.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "romaneio_number", name="uq_sales_org_romaneio"),
        db.Index("ix_sales_org_delivery_type", "org_id", "delivery_type"),
        db.Index("ix_sales_org_status_created", "org_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Human-facing sequence number used in search and closing snapshots
    romaneio_number = db.Column(db.Integer, nullable=True)
    lead_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)

    # All amounts in cents
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Free-text legacy method ("Dinheiro", "Cartão Crédito", "pix"...)
    payment_method = db.Column(db.String(128), nullable=True)
    # Structured category from the payment methods catalogue, when known
    payment_category = db.Column(db.String(32), nullable=True)

    delivery_type = db.Column(db.String(16), nullable=True, index=True)  # pickup, motoboy, carrier
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_cancelled(self) -> bool:
        return self.status in INELIGIBLE_SALE_STATUSES

    @property
    def is_delivered(self) -> bool:
        return self.delivered_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "romaneio_number": self.romaneio_number,
            "lead_name": self.lead_name,
            "status": self.status,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_category": self.payment_category,
            "delivery_type": self.delivery_type,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "created_at": to_utc_z(self.created_at),
        }
