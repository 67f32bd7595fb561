# Overview: Service-layer operations for delivery closings; snapshot, numbering and two-stage sign-off.

"""
Delivery Closings (fechamentos)

WHY: Delivered sales of one channel are reconciled in numbered batches.
A closing freezes what was delivered and how it was paid at the moment it
was generated, then collects two sign-offs:

    pending --(auxiliar)--> confirmed_auxiliar --(admin)--> confirmed_final

SNAPSHOT BOUNDARY: create_closing copies each sale into a SaleSnapshot and
persists those values. Totals and members are never recomputed from live
sales afterwards; get_closing reads delivery_closing_sales only.

CONCURRENCY:
- closing numbers come from sequence_service (atomic counter row), backed
  by a unique (org, type, number) constraint
- a sale can join only one closing per type (unique member constraint);
  losing that race surfaces as SaleAlreadyClosed
- sign-offs lock the closing row and bump version_id, so two confirmers
  can't both move the same stage
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Sale, DeliveryClosing, DeliveryClosingSale
from ..models.closings import (
    STATUS_PENDING,
    STATUS_CONFIRMED_AUXILIAR,
    STATUS_CONFIRMED_FINAL,
    CLOSING_STATUSES,
    STAGE_AUXILIAR,
    STAGE_ADMIN,
    CLOSING_STAGES,
)
from ..models.sales import DELIVERY_TYPES, INELIGIBLE_SALE_STATUSES
from . import payment_categories
from .audit_service import append_audit_event, list_audit_events
from .concurrency import lock_for_update, run_with_retry
from .errors import (
    ValidationError,
    EmptySelection,
    MixedDeliveryType,
    InvalidClosingType,
    InvalidStage,
    CashAcknowledgementRequired,
    AuthorizationError,
    StateError,
    AlreadyConfirmed,
    AlreadyFinalized,
    SaleAlreadyClosed,
    SaleCancelled,
    SaleNotDelivered,
    SaleNotFound,
    ClosingNotFound,
)
from .permission_service import log_security_event
from .policy_service import load_closing_policy
from .role_gate import Actor, ClosingPolicy, can_confirm_closing, closing_requirement
from .sequence_service import next_closing_number
from expedition.time_utils import utcnow, utctoday, to_utc_z

logger = logging.getLogger(__name__)


CLOSING_TYPE_CONFIG = {
    "pickup": {
        "title": "Fechamento de Caixa Balcão",
        "subtitle": "Gere relatórios de fechamento para vendas retiradas no balcão",
        "empty_message": "Nenhuma venda balcão disponível",
    },
    "motoboy": {
        "title": "Fechamento de Entregas Motoboy",
        "subtitle": "Gere relatórios de fechamento para entregas realizadas por motoboy",
        "empty_message": "Nenhuma venda motoboy disponível",
    },
    "carrier": {
        "title": "Fechamento de Transportadoras",
        "subtitle": "Gere relatórios de fechamento para entregas via transportadora",
        "empty_message": "Nenhuma venda transportadora disponível",
    },
}

# stage -> (required status, resulting status)
_STAGE_TRANSITIONS = {
    STAGE_AUXILIAR: (STATUS_PENDING, STATUS_CONFIRMED_AUXILIAR),
    STAGE_ADMIN: (STATUS_CONFIRMED_AUXILIAR, STATUS_CONFIRMED_FINAL),
}


@dataclass(frozen=True)
class SaleSnapshot:
    """
    Immutable copy of the sale fields a closing keeps.

    Built once from the live Sale inside create_closing; everything the
    closing stores comes from here, never from the Sale afterwards.
    """
    sale_id: int
    sale_number: str | None
    lead_name: str | None
    payment_method: str | None
    payment_category: str | None
    total_cents: int
    delivered_at: datetime | None

    @classmethod
    def from_sale(cls, sale: Sale) -> "SaleSnapshot":
        return cls(
            sale_id=sale.id,
            sale_number=str(sale.romaneio_number) if sale.romaneio_number is not None else None,
            lead_name=sale.lead_name,
            payment_method=sale.payment_method,
            payment_category=payment_categories.resolve_category(sale.payment_method, sale.payment_category),
            total_cents=sale.total_cents or 0,
            delivered_at=sale.delivered_at,
        )

    def to_member(self, *, closing: DeliveryClosing) -> DeliveryClosingSale:
        return DeliveryClosingSale(
            closing=closing,
            org_id=closing.org_id,
            closing_type=closing.closing_type,
            sale_id=self.sale_id,
            sale_number=self.sale_number,
            lead_name=self.lead_name,
            payment_method=self.payment_method,
            payment_category=self.payment_category,
            total_cents=self.total_cents,
            delivered_at=self.delivered_at,
        )


def get_closing_type_config(closing_type: str | None = None) -> dict:
    if closing_type is None:
        return {key: dict(value, closing_type=key) for key, value in CLOSING_TYPE_CONFIG.items()}
    _validate_closing_type(closing_type)
    return dict(CLOSING_TYPE_CONFIG[closing_type], closing_type=closing_type)


def _validate_closing_type(closing_type: str) -> None:
    if closing_type not in DELIVERY_TYPES:
        raise InvalidClosingType(
            f"Unknown closing type '{closing_type}'",
            allowed=list(DELIVERY_TYPES),
        )


def _closed_sale_ids(org_id: int, closing_type: str) -> set[int]:
    rows = db.session.query(DeliveryClosingSale.sale_id).filter_by(
        org_id=org_id,
        closing_type=closing_type,
    ).all()
    return {sale_id for (sale_id,) in rows}


# -- Reads --------------------------------------------------------------------

def list_available_sales(org_id: int, closing_type: str, delivered_only: bool = False) -> list[Sale]:
    """
    Sales of this channel that are live and not yet in a closing of this type.

    Newest first. Undelivered sales are listed unless delivered_only is set;
    create_closing rejects them.
    """
    _validate_closing_type(closing_type)

    used = select(DeliveryClosingSale.sale_id).where(
        DeliveryClosingSale.org_id == org_id,
        DeliveryClosingSale.closing_type == closing_type,
    )
    query = db.session.query(Sale).filter(
        Sale.org_id == org_id,
        Sale.delivery_type == closing_type,
        Sale.status.notin_(INELIGIBLE_SALE_STATUSES),
        Sale.id.notin_(used),
    )
    if delivered_only:
        query = query.filter(Sale.delivered_at.isnot(None))

    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()


def list_closings(org_id: int, closing_type: str, status: str | None = None) -> list[DeliveryClosing]:
    _validate_closing_type(closing_type)
    query = db.session.query(DeliveryClosing).filter_by(org_id=org_id, closing_type=closing_type)
    if status:
        if status not in CLOSING_STATUSES:
            raise ValidationError(f"Unknown closing status '{status}'", allowed=list(CLOSING_STATUSES))
        query = query.filter_by(status=status)
    return query.order_by(DeliveryClosing.created_at.desc(), DeliveryClosing.id.desc()).all()


def get_closing(org_id: int, closing_id: int) -> DeliveryClosing:
    closing = db.session.query(DeliveryClosing).filter_by(id=closing_id, org_id=org_id).first()
    if not closing:
        raise ClosingNotFound(f"Closing {closing_id} not found", closing_id=closing_id)
    return closing


def closing_summary(closing: DeliveryClosing) -> dict:
    """Totals, sign-off stamps and what the next stage needs."""
    next_stage = None
    if closing.status == STATUS_PENDING:
        next_stage = STAGE_AUXILIAR
    elif closing.status == STATUS_CONFIRMED_AUXILIAR:
        next_stage = STAGE_ADMIN

    return {
        "id": closing.id,
        "closing_number": closing.closing_number,
        "closing_type": closing.closing_type,
        "title": CLOSING_TYPE_CONFIG[closing.closing_type]["title"],
        "status": closing.status,
        "next_stage": next_stage,
        "total_sales": closing.total_sales,
        "totals": {
            "total_amount_cents": closing.total_amount_cents,
            "total_card_cents": closing.total_card_cents,
            "total_pix_cents": closing.total_pix_cents,
            "total_cash_cents": closing.total_cash_cents,
            "total_other_cents": closing.total_other_cents,
        },
        "stages": {
            STAGE_AUXILIAR: {
                "confirmed_by": closing.confirmed_by_auxiliar,
                "confirmed_at": to_utc_z(closing.confirmed_at_auxiliar) if closing.confirmed_at_auxiliar else None,
            },
            STAGE_ADMIN: {
                "confirmed_by": closing.confirmed_by_admin,
                "confirmed_at": to_utc_z(closing.confirmed_at_admin) if closing.confirmed_at_admin else None,
            },
        },
        "requires_cash_acknowledgement": closing.requires_cash_acknowledgement,
    }


def list_closing_events(org_id: int, closing_id: int):
    get_closing(org_id, closing_id)
    return list_audit_events(org_id, closing_id=closing_id)


# -- Create -------------------------------------------------------------------

def _load_selected_sales(org_id: int, sale_ids: list[int]) -> list[Sale]:
    unique_ids = list(dict.fromkeys(sale_ids))
    sales = db.session.query(Sale).filter(Sale.org_id == org_id, Sale.id.in_(unique_ids)).all()
    by_id = {sale.id: sale for sale in sales}

    missing = [sale_id for sale_id in unique_ids if sale_id not in by_id]
    if missing:
        raise SaleNotFound(f"Sales not found: {missing}", sale_ids=missing)
    return [by_id[sale_id] for sale_id in unique_ids]


def _check_eligibility(org_id: int, closing_type: str, sales: list[Sale]) -> None:
    mixed = [sale.id for sale in sales if sale.delivery_type != closing_type]
    if mixed:
        raise MixedDeliveryType(
            f"Every sale must be a {closing_type} delivery",
            closing_type=closing_type,
            sale_ids=mixed,
        )

    cancelled = [sale.id for sale in sales if sale.status in INELIGIBLE_SALE_STATUSES]
    if cancelled:
        raise SaleCancelled(f"Cancelled or returned sales can't be closed: {cancelled}", sale_ids=cancelled)

    undelivered = [sale.id for sale in sales if not sale.is_delivered]
    if undelivered:
        raise SaleNotDelivered(f"Sales not delivered yet: {undelivered}", sale_ids=undelivered)

    already = sorted(_closed_sale_ids(org_id, closing_type) & {sale.id for sale in sales})
    if already:
        raise SaleAlreadyClosed(
            f"Sales already in a {closing_type} closing: {already}",
            closing_type=closing_type,
            sale_ids=already,
        )


def create_closing(
    *,
    org_id: int,
    closing_type: str,
    sale_ids: list[int],
    actor: Actor,
    notes: str | None = None,
) -> DeliveryClosing:
    """
    Snapshot the selected sales into a new pending closing.

    Raises EmptySelection, InvalidClosingType, SaleNotFound, MixedDeliveryType,
    SaleCancelled, SaleNotDelivered, SaleAlreadyClosed.
    """
    _validate_closing_type(closing_type)
    if not sale_ids:
        raise EmptySelection("Select at least one sale to generate a closing")

    sales = _load_selected_sales(org_id, sale_ids)
    _check_eligibility(org_id, closing_type, sales)

    snapshots = [SaleSnapshot.from_sale(sale) for sale in sales]
    totals = payment_categories.calculate_category_totals(snapshots)

    def _op() -> DeliveryClosing:
        closing = DeliveryClosing(
            org_id=org_id,
            closing_number=next_closing_number(org_id=org_id, closing_type=closing_type),
            closing_type=closing_type,
            closing_date=utctoday(),
            total_sales=len(snapshots),
            total_amount_cents=totals.total_cents,
            total_card_cents=totals.card_cents,
            total_pix_cents=totals.pix_cents,
            total_cash_cents=totals.cash_cents,
            total_other_cents=totals.other_cents,
            status=STATUS_PENDING,
            notes=notes,
            created_by=actor.user_id,
            created_at=utcnow(),
        )
        db.session.add(closing)
        for snapshot in snapshots:
            db.session.add(snapshot.to_member(closing=closing))
        db.session.flush()

        append_audit_event(
            org_id=org_id,
            event_type="closing.created",
            entity_type="closing",
            entity_id=closing.id,
            actor_user_id=actor.user_id,
            closing_id=closing.id,
            note=f"{closing_type} #{closing.closing_number}: {len(snapshots)} sales, {totals.total_cents} cents",
        )
        db.session.commit()
        return closing

    try:
        closing = run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        already = sorted(_closed_sale_ids(org_id, closing_type) & {s.sale_id for s in snapshots})
        raise SaleAlreadyClosed(
            f"Sales were closed by another request: {already}",
            closing_type=closing_type,
            sale_ids=already,
        )

    logger.info(
        "Closing created org=%s type=%s number=%s sales=%s total_cents=%s by=%s",
        org_id, closing_type, closing.closing_number, closing.total_sales,
        closing.total_amount_cents, actor.user_id,
    )
    return closing


# -- Sign-off -----------------------------------------------------------------

def _authorize(actor: Actor, closing: DeliveryClosing, stage: str, policy: ClosingPolicy, resource: str | None) -> None:
    if can_confirm_closing(actor, closing.closing_type, stage, policy):
        return

    required = closing_requirement(closing.closing_type, stage, policy)
    log_security_event(
        user_id=actor.user_id,
        event_type="CONFIRMATION_DENIED",
        success=False,
        resource=resource,
        action=f"closing:{stage}",
        reason=f"{actor.email or 'unknown'} lacks {required} (closing {closing.id})",
        org_id=actor.org_id,
    )
    raise AuthorizationError(
        f"{actor.email or 'This user'} is not allowed to confirm the {stage} stage: requires {required}",
        closing_id=closing.id,
        stage=stage,
        required=required,
    )


def _check_stage(closing: DeliveryClosing, stage: str) -> None:
    required_status, target_status = _STAGE_TRANSITIONS[stage]
    if closing.status == required_status:
        return

    if closing.status == STATUS_CONFIRMED_FINAL:
        raise AlreadyFinalized(
            f"Closing #{closing.closing_number} is already final",
            closing_id=closing.id,
            current_status=closing.status,
        )
    if CLOSING_STATUSES.index(closing.status) >= CLOSING_STATUSES.index(target_status):
        raise AlreadyConfirmed(
            f"The {stage} stage of closing #{closing.closing_number} is already confirmed",
            closing_id=closing.id,
            current_status=closing.status,
        )
    raise StateError(
        f"Closing #{closing.closing_number} is {closing.status}; the {stage} stage needs {required_status}",
        closing_id=closing.id,
        current_status=closing.status,
        required_status=required_status,
    )


def confirm_closing(
    *,
    org_id: int,
    closing_id: int,
    stage: str,
    actor: Actor,
    acknowledge_cash: bool = False,
    resource: str | None = None,
) -> DeliveryClosing:
    """
    Stamp one sign-off stage and advance the closing status.

    The admin stage on a closing with cash requires acknowledge_cash=True.

    Raises InvalidStage, ClosingNotFound, AuthorizationError,
    AlreadyFinalized, AlreadyConfirmed, StateError,
    CashAcknowledgementRequired.
    """
    if stage not in CLOSING_STAGES:
        raise InvalidStage(f"Unknown stage '{stage}'", allowed=list(CLOSING_STAGES))

    policy = load_closing_policy(org_id)
    closing = get_closing(org_id, closing_id)
    _authorize(actor, closing, stage, policy, resource)

    closing = lock_for_update(
        db.session.query(DeliveryClosing).filter_by(id=closing_id, org_id=org_id)
    ).populate_existing().first()
    _check_stage(closing, stage)

    if stage == STAGE_ADMIN and closing.requires_cash_acknowledgement and not acknowledge_cash:
        raise CashAcknowledgementRequired(
            f"Closing #{closing.closing_number} has cash; confirm the cash was received",
            closing_id=closing.id,
            total_cash_cents=closing.total_cash_cents,
        )

    now = utcnow()
    if stage == STAGE_AUXILIAR:
        closing.confirmed_by_auxiliar = actor.user_id
        closing.confirmed_at_auxiliar = now
    else:
        closing.confirmed_by_admin = actor.user_id
        closing.confirmed_at_admin = now
    closing.status = _STAGE_TRANSITIONS[stage][1]

    append_audit_event(
        org_id=org_id,
        event_type=f"closing.{closing.status}",
        entity_type="closing",
        entity_id=closing.id,
        actor_user_id=actor.user_id,
        closing_id=closing.id,
        note="cash acknowledged" if stage == STAGE_ADMIN and closing.requires_cash_acknowledgement else None,
    )

    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise AlreadyConfirmed(
            f"Closing #{closing_id} was confirmed by another request",
            closing_id=closing_id,
        )

    logger.info(
        "Closing %s stage confirmed org=%s closing=%s status=%s by=%s",
        stage, org_id, closing.id, closing.status, actor.user_id,
    )
    return closing
