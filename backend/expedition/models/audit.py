from __future__ import annotations

from ..extensions import db
from expedition.time_utils import to_utc_z
from ._immutable import make_append_only

class AuditEvent(db.Model):
    """
    Append-only audit log for workflow writes.

    WHY: Downstream financial reports and disputes need to know who
    generated a closing, who signed each stage, and who attested each cash
    payment step, independent of the mutable closing row.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_org_occurred", "org_id", "occurred_at"),
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. closing.created
    entity_type = db.Column(db.String(32), nullable=False)           # closing, sale
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    closing_id = db.Column(db.Integer, db.ForeignKey("delivery_closings.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    note = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "closing_id": self.closing_id,
            "sale_id": self.sale_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
        }


make_append_only(AuditEvent)
