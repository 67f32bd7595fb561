# Overview: Service-layer operations for the cash confirmation ledger; append-only stage attestations per sale.

"""
Cash Confirmation Ledger

WHY: Cash changes hands several times between delivery and the bank. Each
hand-off is attested once, by a named operator, in a fixed order:

    receipt -> handover -> final_verification

A sale with final_verification is closed for this ledger.

ORDERING is enforced twice:
- here, by reading the sale's ledger before writing (clear error messages)
- in the database, by the unique (sale_id, confirmation_type) constraint
  and the previous-stage foreign key, so two concurrent requests can't both
  append the same stage or skip one

An IntegrityError on insert means another request won the race; it is
reported as a StateError and never retried.

BATCHES are not atomic: each sale commits on its own and the caller gets
one result per sale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Sale, PaymentConfirmation
from ..models.confirmations import (
    CONFIRMATION_ORDER,
    CONFIRMATION_LABELS,
    FINAL_VERIFICATION,
)
from ..models.sales import DELIVERY_TYPES, INELIGIBLE_SALE_STATUSES
from . import payment_categories
from .audit_service import append_audit_event
from .errors import (
    WorkflowError,
    ValidationError,
    EmptySelection,
    InvalidConfirmationType,
    AuthorizationError,
    OutOfOrderConfirmation,
    AlreadyFinalized,
    AlreadyConfirmed,
    SaleCancelled,
    SaleNotFound,
)
from .permission_service import log_security_event
from .policy_service import load_cash_ledger_policy
from .role_gate import Actor, CashLedgerPolicy, can_confirm_payment, payment_requirement
from expedition.time_utils import utcnow

logger = logging.getLogger(__name__)

CASH_SALE_FILTERS = ("pending", "verified", "all")


@dataclass(frozen=True)
class BatchItemResult:
    sale_id: int
    success: bool
    confirmation: dict | None = None
    error: str | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        data = {"sale_id": self.sale_id, "success": self.success}
        if self.success:
            data["confirmation"] = self.confirmation
        else:
            data["error"] = self.error
            data["message"] = self.message
        return data


@dataclass(frozen=True)
class BatchConfirmationResult:
    confirmation_type: str
    items: list = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded

    def to_dict(self) -> dict:
        return {
            "confirmation_type": self.confirmation_type,
            "total": len(self.items),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [item.to_dict() for item in self.items],
        }


# -- Ledger reads -------------------------------------------------------------

def _get_sale(org_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, org_id=org_id).first()
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found", sale_id=sale_id)
    return sale


def _ledger_query(org_id: int, sale_id: int):
    return db.session.query(PaymentConfirmation).filter_by(
        org_id=org_id,
        sale_id=sale_id,
    ).order_by(PaymentConfirmation.id.asc())


def get_ledger(org_id: int, sale_id: int) -> list[PaymentConfirmation]:
    """Confirmation events for one sale, in stage order."""
    _get_sale(org_id, sale_id)
    return _ledger_query(org_id, sale_id).all()


def next_confirmation_type(ledger) -> str | None:
    """
    The next stage to attest, or None when the ledger is closed.

    Accepts PaymentConfirmation rows or plain confirmation_type strings.
    """
    recorded = {getattr(entry, "confirmation_type", entry) for entry in ledger}
    for confirmation_type in CONFIRMATION_ORDER:
        if confirmation_type not in recorded:
            return confirmation_type
    return None


def _previous_type(confirmation_type: str) -> str | None:
    index = CONFIRMATION_ORDER.index(confirmation_type)
    return CONFIRMATION_ORDER[index - 1] if index > 0 else None


def _validate_type(confirmation_type: str) -> None:
    if confirmation_type not in CONFIRMATION_ORDER:
        raise InvalidConfirmationType(
            f"Unknown confirmation type '{confirmation_type}'",
            allowed=list(CONFIRMATION_ORDER),
        )


def _authorize(actor: Actor, confirmation_type: str, policy: CashLedgerPolicy, resource: str | None) -> None:
    if can_confirm_payment(actor, confirmation_type, policy):
        return

    required = payment_requirement(confirmation_type)
    log_security_event(
        user_id=actor.user_id,
        event_type="CONFIRMATION_DENIED",
        success=False,
        resource=resource,
        action=f"payment:{confirmation_type}",
        reason=f"{actor.email or 'unknown'} not on {required}",
        org_id=actor.org_id,
    )
    raise AuthorizationError(
        f"{actor.email or 'This user'} is not allowed to confirm "
        f"{CONFIRMATION_LABELS[confirmation_type]}: requires {required}",
        confirmation_type=confirmation_type,
        required=required,
    )


def _check_stage(sale_id: int, recorded: list[str], confirmation_type: str) -> None:
    current = recorded[-1] if recorded else None

    if FINAL_VERIFICATION in recorded:
        raise AlreadyFinalized(
            f"Sale {sale_id} already has final verification; the ledger is closed",
            sale_id=sale_id,
            current_stage=current,
        )
    if confirmation_type in recorded:
        raise AlreadyConfirmed(
            f"Sale {sale_id} already has {CONFIRMATION_LABELS[confirmation_type]}",
            sale_id=sale_id,
            current_stage=current,
        )

    expected = next_confirmation_type(recorded)
    if confirmation_type != expected:
        raise OutOfOrderConfirmation(
            f"Cannot record {CONFIRMATION_LABELS[confirmation_type]} for sale {sale_id}: "
            f"{CONFIRMATION_LABELS[expected]} comes first",
            sale_id=sale_id,
            current_stage=current,
            required_stage=expected,
            attempted_stage=confirmation_type,
        )


# -- Writes -------------------------------------------------------------------

def confirm_payment(
    *,
    org_id: int,
    sale_id: int,
    confirmation_type: str,
    actor: Actor,
    amount_cents: int | None = None,
    notes: str | None = None,
    policy: CashLedgerPolicy | None = None,
    resource: str | None = None,
) -> list[PaymentConfirmation]:
    """
    Append one stage attestation for a sale and return the updated ledger.

    amount_cents defaults to the sale total. No sale fields are touched.

    Raises InvalidConfirmationType, AuthorizationError, SaleNotFound,
    SaleCancelled, AlreadyFinalized, AlreadyConfirmed, OutOfOrderConfirmation.
    """
    _validate_type(confirmation_type)
    if policy is None:
        policy = load_cash_ledger_policy(org_id)
    _authorize(actor, confirmation_type, policy, resource)

    sale = _get_sale(org_id, sale_id)
    if sale.status in INELIGIBLE_SALE_STATUSES:
        raise SaleCancelled(
            f"Sale {sale_id} is {sale.status}",
            sale_id=sale_id,
            sale_status=sale.status,
        )

    recorded = [event.confirmation_type for event in _ledger_query(org_id, sale_id).all()]
    _check_stage(sale_id, recorded, confirmation_type)

    if amount_cents is None:
        amount_cents = sale.total_cents or 0
    if amount_cents < 0:
        raise ValidationError("amount_cents must be >= 0", amount_cents=amount_cents)

    event = PaymentConfirmation(
        org_id=org_id,
        sale_id=sale_id,
        confirmation_type=confirmation_type,
        previous_type=_previous_type(confirmation_type),
        confirmed_by=actor.user_id,
        amount_cents=amount_cents,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(event)
    append_audit_event(
        org_id=org_id,
        event_type=f"payment.{confirmation_type}",
        entity_type="sale",
        entity_id=sale_id,
        actor_user_id=actor.user_id,
        sale_id=sale_id,
        note=f"amount_cents={amount_cents}",
    )

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise OutOfOrderConfirmation(
            f"Ledger for sale {sale_id} changed while confirming "
            f"{CONFIRMATION_LABELS[confirmation_type]}; reload and try again",
            sale_id=sale_id,
            attempted_stage=confirmation_type,
        )

    logger.info(
        "Payment confirmed org=%s sale=%s type=%s by=%s amount_cents=%s",
        org_id, sale_id, confirmation_type, actor.user_id, amount_cents,
    )
    return _ledger_query(org_id, sale_id).all()


def confirm_payment_batch(
    *,
    org_id: int,
    sale_ids: list[int],
    confirmation_type: str,
    actor: Actor,
    notes: str | None = None,
    resource: str | None = None,
) -> BatchConfirmationResult:
    """
    Apply confirm_payment to each sale in turn.

    The actor is checked once, up front; an unauthorized actor gets an
    AuthorizationError and nothing is written. After that, each sale
    succeeds or fails on its own: earlier successes stay committed when a
    later sale fails.
    """
    if not sale_ids:
        raise EmptySelection("Select at least one sale to confirm")
    _validate_type(confirmation_type)

    policy = load_cash_ledger_policy(org_id)
    _authorize(actor, confirmation_type, policy, resource)

    items = []
    for sale_id in sale_ids:
        try:
            ledger = confirm_payment(
                org_id=org_id,
                sale_id=sale_id,
                confirmation_type=confirmation_type,
                actor=actor,
                notes=notes,
                policy=policy,
                resource=resource,
            )
        except WorkflowError as e:
            db.session.rollback()
            items.append(BatchItemResult(sale_id=sale_id, success=False, error=e.code, message=e.message))
            continue
        items.append(BatchItemResult(sale_id=sale_id, success=True, confirmation=ledger[-1].to_dict()))

    result = BatchConfirmationResult(confirmation_type=confirmation_type, items=items)
    logger.info(
        "Batch %s org=%s by=%s: %s of %s succeeded",
        confirmation_type, org_id, actor.user_id, result.succeeded, len(items),
    )
    return result


# -- Cash sales view ----------------------------------------------------------

def _serialize_cash_sale(sale: Sale, ledger: list[PaymentConfirmation]) -> dict:
    data = sale.to_dict()
    data["payment_label"] = payment_categories.format_payment_method(sale.payment_method)
    data["ledger"] = [event.to_dict() for event in ledger]
    data["next_confirmation_type"] = next_confirmation_type(ledger)
    data["verified"] = any(event.confirmation_type == FINAL_VERIFICATION for event in ledger)
    return data


def list_cash_sales(org_id: int, delivery_type: str | None = None, status: str = "pending") -> dict:
    """
    Cash-bucket sales with their ledgers.

    status: "pending" (no final verification yet), "verified", or "all".
    Stats always cover both pending and verified sales of the selection.
    """
    if status not in CASH_SALE_FILTERS:
        raise ValidationError(f"Unknown status filter '{status}'", allowed=list(CASH_SALE_FILTERS))
    if delivery_type is not None and delivery_type not in DELIVERY_TYPES:
        raise ValidationError(f"Unknown delivery type '{delivery_type}'", allowed=list(DELIVERY_TYPES))

    query = db.session.query(Sale).filter(
        Sale.org_id == org_id,
        Sale.status.notin_(INELIGIBLE_SALE_STATUSES),
    )
    if delivery_type:
        query = query.filter(Sale.delivery_type == delivery_type)
    sales = query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()

    cash_sales = [s for s in sales if payment_categories.is_cash(s.payment_method, s.payment_category)]

    stats = {
        "pending_count": 0,
        "pending_amount_cents": 0,
        "verified_count": 0,
        "verified_amount_cents": 0,
    }
    rows = []
    for sale in cash_sales:
        entry = _serialize_cash_sale(sale, list(sale.confirmations))
        key = "verified" if entry["verified"] else "pending"
        stats[f"{key}_count"] += 1
        stats[f"{key}_amount_cents"] += sale.total_cents or 0

        if status == "all" or status == key:
            rows.append(entry)

    return {"sales": rows, "stats": stats}
