# Overview: Service-layer operations for the workflow audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import AuditEvent
from expedition.time_utils import utcnow


def append_audit_event(
    *,
    org_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    closing_id: int | None = None,
    sale_id: int | None = None,
    note: str | None = None,
) -> AuditEvent:
    """
    Stage an audit row in the caller's transaction.

    Does not commit: the event lands with the write it describes or not
    at all.
    """
    event = AuditEvent(
        org_id=org_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        closing_id=closing_id,
        sale_id=sale_id,
        occurred_at=utcnow(),
        note=note,
    )
    db.session.add(event)
    return event


def list_audit_events(
    org_id: int,
    *,
    closing_id: int | None = None,
    sale_id: int | None = None,
    event_type: str | None = None,
) -> list[AuditEvent]:
    query = db.session.query(AuditEvent).filter_by(org_id=org_id)
    if closing_id is not None:
        query = query.filter_by(closing_id=closing_id)
    if sale_id is not None:
        query = query.filter_by(sale_id=sale_id)
    if event_type:
        query = query.filter_by(event_type=event_type)
    return query.order_by(AuditEvent.occurred_at.asc(), AuditEvent.id.asc()).all()
