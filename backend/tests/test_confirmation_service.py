"""
Cash confirmation ledger tests.

Verifies:
- Stages are recorded in order: receipt -> handover -> final_verification
- Skipped or repeated stages fail with StateError, never AuthorizationError
- Allowlists decide who signs each stage
- Batch confirmation reports one result per sale without global rollback
- The ledger is append-only and ordered by the database too
"""

import pytest
from sqlalchemy.exc import IntegrityError

from expedition.models import AuditEvent, PaymentConfirmation, SecurityEvent, ImmutableRecordError
from expedition.services import confirmation_service
from expedition.services.errors import (
    AlreadyConfirmed,
    AlreadyFinalized,
    AuthorizationError,
    EmptySelection,
    InvalidConfirmationType,
    OutOfOrderConfirmation,
    SaleCancelled,
    SaleNotFound,
    StateError,
    ValidationError,
)


def confirm(org, sale, confirmation_type, actor, **kwargs):
    return confirmation_service.confirm_payment(
        org_id=org.id,
        sale_id=sale.id,
        confirmation_type=confirmation_type,
        actor=actor,
        **kwargs,
    )


# =============================================================================
# STAGE ORDER
# =============================================================================


class TestStageOrder:

    def test_full_ledger_in_order(self, org, make_sale, financeiro_actor, admin_actor):
        sale = make_sale(total_cents=7500)

        confirm(org, sale, "receipt", financeiro_actor)
        confirm(org, sale, "handover", financeiro_actor)
        ledger = confirm(org, sale, "final_verification", admin_actor)

        assert [e.confirmation_type for e in ledger] == ["receipt", "handover", "final_verification"]
        assert all(e.amount_cents == 7500 for e in ledger)
        assert confirmation_service.next_confirmation_type(ledger) is None

    def test_skipping_a_stage_is_a_state_error(self, org, make_sale, admin_actor):
        sale = make_sale()

        with pytest.raises(OutOfOrderConfirmation) as exc:
            confirm(org, sale, "handover", admin_actor)

        assert isinstance(exc.value, StateError)
        assert exc.value.details["required_stage"] == "receipt"
        assert exc.value.details["attempted_stage"] == "handover"
        assert confirmation_service.get_ledger(org.id, sale.id) == []

    def test_repeating_a_stage_is_a_state_error(self, org, make_sale, financeiro_actor):
        sale = make_sale()
        confirm(org, sale, "receipt", financeiro_actor)

        with pytest.raises(AlreadyConfirmed):
            confirm(org, sale, "receipt", financeiro_actor)

        assert len(confirmation_service.get_ledger(org.id, sale.id)) == 1

    def test_finalized_ledger_is_closed(self, org, make_sale, admin_actor):
        sale = make_sale()
        for confirmation_type in ("receipt", "handover", "final_verification"):
            confirm(org, sale, confirmation_type, admin_actor)

        with pytest.raises(AlreadyFinalized):
            confirm(org, sale, "handover", admin_actor)

    def test_explicit_amount_and_notes(self, org, make_sale, financeiro_actor):
        sale = make_sale(total_cents=5000)
        ledger = confirm(org, sale, "receipt", financeiro_actor, amount_cents=4800, notes="troco R$2")

        assert ledger[0].amount_cents == 4800
        assert ledger[0].notes == "troco R$2"
        assert ledger[0].confirmed_by == financeiro_actor.user_id

    def test_negative_amount_rejected(self, org, make_sale, financeiro_actor):
        sale = make_sale()
        with pytest.raises(ValidationError):
            confirm(org, sale, "receipt", financeiro_actor, amount_cents=-1)

    def test_unknown_type(self, org, make_sale, admin_actor):
        sale = make_sale()
        with pytest.raises(InvalidConfirmationType):
            confirm(org, sale, "refund", admin_actor)

    def test_next_confirmation_type_from_strings(self):
        assert confirmation_service.next_confirmation_type([]) == "receipt"
        assert confirmation_service.next_confirmation_type(["receipt"]) == "handover"
        assert confirmation_service.next_confirmation_type(["receipt", "handover"]) == "final_verification"


# =============================================================================
# AUTHORIZATION
# =============================================================================


class TestAuthorization:

    def test_auxiliar_cannot_final_verify(self, org, make_sale, financeiro_actor, db_session):
        sale = make_sale()
        confirm(org, sale, "receipt", financeiro_actor)
        confirm(org, sale, "handover", financeiro_actor)

        with pytest.raises(AuthorizationError) as exc:
            confirm(org, sale, "final_verification", financeiro_actor)

        assert exc.value.details["required"] == "cash ledger admin allowlist"
        denied = db_session.query(SecurityEvent).filter_by(event_type="CONFIRMATION_DENIED").one()
        assert denied.user_id == financeiro_actor.user_id
        assert denied.action == "payment:final_verification"

    def test_unlisted_user_denied_before_stage_checks(self, org, make_sale, expedicao_actor):
        sale = make_sale()

        # Even an out-of-order request reports the missing authorization first
        with pytest.raises(AuthorizationError):
            confirm(org, sale, "handover", expedicao_actor)

    def test_allowlist_changes_apply_immediately(self, org, make_sale, expedicao_actor):
        from expedition.services import policy_service

        sale = make_sale()
        policy_service.grant_allowlist_entry(
            org_id=org.id, policy="cash_ledger", role="auxiliar", email=expedicao_actor.email,
        )
        ledger = confirm(org, sale, "receipt", expedicao_actor)
        assert len(ledger) == 1


# =============================================================================
# SALE ELIGIBILITY
# =============================================================================


class TestSaleEligibility:

    def test_cancelled_sale(self, org, make_sale, financeiro_actor):
        sale = make_sale(status="cancelled")
        with pytest.raises(SaleCancelled):
            confirm(org, sale, "receipt", financeiro_actor)

    def test_unknown_sale(self, org, financeiro_actor):
        with pytest.raises(SaleNotFound):
            confirmation_service.confirm_payment(
                org_id=org.id, sale_id=999999, confirmation_type="receipt", actor=financeiro_actor,
            )

    def test_sale_of_another_org_is_not_found(self, org, other_org, make_sale, financeiro_actor):
        foreign = make_sale(org_id=other_org.id)
        with pytest.raises(SaleNotFound):
            confirm(org, foreign, "receipt", financeiro_actor)

    def test_sale_fields_untouched(self, org, make_sale, admin_actor, db_session):
        sale = make_sale(status="delivered", total_cents=5000)
        for confirmation_type in ("receipt", "handover", "final_verification"):
            confirm(org, sale, confirmation_type, admin_actor)

        db_session.expire_all()
        assert sale.status == "delivered"
        assert sale.total_cents == 5000


# =============================================================================
# BATCH
# =============================================================================


class TestBatch:

    def test_batch_with_cancelled_sale_in_the_middle(self, org, make_sale, financeiro_actor, db_session):
        sales = [make_sale() for _ in range(5)]
        sales[2].status = "cancelled"
        db_session.commit()

        result = confirmation_service.confirm_payment_batch(
            org_id=org.id,
            sale_ids=[s.id for s in sales],
            confirmation_type="receipt",
            actor=financeiro_actor,
        )

        assert result.succeeded == 4
        assert result.failed == 1
        failed = [item for item in result.items if not item.success]
        assert failed[0].sale_id == sales[2].id
        assert failed[0].error == "sale_cancelled"

        confirmed_ids = {row.sale_id for row in db_session.query(PaymentConfirmation).all()}
        assert confirmed_ids == {sales[i].id for i in (0, 1, 3, 4)}

    def test_batch_result_serialization(self, org, make_sale, financeiro_actor):
        sale = make_sale()
        result = confirmation_service.confirm_payment_batch(
            org_id=org.id, sale_ids=[sale.id, 424242], confirmation_type="receipt", actor=financeiro_actor,
        )
        data = result.to_dict()

        assert data["total"] == 2
        assert data["succeeded"] == 1
        assert data["results"][0]["confirmation"]["sale_id"] == sale.id
        assert data["results"][1]["error"] == "sale_not_found"

    def test_batch_mixes_stage_errors(self, org, make_sale, financeiro_actor):
        ready = make_sale()
        fresh = make_sale()
        confirm(org, ready, "receipt", financeiro_actor)

        result = confirmation_service.confirm_payment_batch(
            org_id=org.id, sale_ids=[ready.id, fresh.id], confirmation_type="handover", actor=financeiro_actor,
        )

        assert [item.success for item in result.items] == [True, False]
        assert result.items[1].error == "out_of_order_confirmation"

    def test_unauthorized_batch_writes_nothing(self, org, make_sale, expedicao_actor, db_session):
        sales = [make_sale() for _ in range(2)]

        with pytest.raises(AuthorizationError):
            confirmation_service.confirm_payment_batch(
                org_id=org.id, sale_ids=[s.id for s in sales], confirmation_type="receipt", actor=expedicao_actor,
            )
        assert db_session.query(PaymentConfirmation).count() == 0

    def test_empty_batch(self, org, financeiro_actor):
        with pytest.raises(EmptySelection):
            confirmation_service.confirm_payment_batch(
                org_id=org.id, sale_ids=[], confirmation_type="receipt", actor=financeiro_actor,
            )


# =============================================================================
# CASH SALES VIEW
# =============================================================================


class TestCashSales:

    def test_lists_cash_sales_with_stats(self, org, make_sale, admin_actor):
        pending = make_sale(total_cents=3000)
        verified = make_sale(total_cents=2000)
        make_sale(payment_method="PIX")
        make_sale(status="cancelled")
        for confirmation_type in ("receipt", "handover", "final_verification"):
            confirm(org, verified, confirmation_type, admin_actor)
        confirm(org, pending, "receipt", admin_actor)

        data = confirmation_service.list_cash_sales(org.id)

        assert [s["id"] for s in data["sales"]] == [pending.id]
        assert data["sales"][0]["next_confirmation_type"] == "handover"
        assert data["sales"][0]["payment_label"] == "Dinheiro"
        assert data["stats"] == {
            "pending_count": 1,
            "pending_amount_cents": 3000,
            "verified_count": 1,
            "verified_amount_cents": 2000,
        }

        verified_rows = confirmation_service.list_cash_sales(org.id, status="verified")["sales"]
        assert [s["id"] for s in verified_rows] == [verified.id]
        assert len(confirmation_service.list_cash_sales(org.id, status="all")["sales"]) == 2

    def test_delivery_type_filter(self, org, make_sale):
        make_sale(delivery_type="pickup")
        motoboy = make_sale(delivery_type="motoboy")

        data = confirmation_service.list_cash_sales(org.id, delivery_type="motoboy")
        assert [s["id"] for s in data["sales"]] == [motoboy.id]

    def test_bad_filters(self, org):
        with pytest.raises(ValidationError):
            confirmation_service.list_cash_sales(org.id, status="done")
        with pytest.raises(ValidationError):
            confirmation_service.list_cash_sales(org.id, delivery_type="drone")


# =============================================================================
# DATABASE GUARANTEES
# =============================================================================


class TestLedgerIntegrity:

    def test_database_rejects_skipped_stage(self, org, make_sale, admin_user, db_session):
        sale = make_sale()
        db_session.add(PaymentConfirmation(
            org_id=org.id,
            sale_id=sale.id,
            confirmation_type="handover",
            previous_type="receipt",
            confirmed_by=admin_user.id,
            amount_cents=sale.total_cents,
        ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_database_rejects_duplicate_stage(self, org, make_sale, admin_user, db_session):
        sale = make_sale()
        for _ in range(2):
            db_session.add(PaymentConfirmation(
                org_id=org.id,
                sale_id=sale.id,
                confirmation_type="receipt",
                confirmed_by=admin_user.id,
                amount_cents=sale.total_cents,
            ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_events_are_append_only(self, org, make_sale, financeiro_actor, db_session):
        sale = make_sale()
        event = confirm(org, sale, "receipt", financeiro_actor)[0]

        event.amount_cents = 1
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()

        db_session.delete(event)
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()

    def test_each_confirmation_is_audited(self, org, make_sale, financeiro_actor, db_session):
        sale = make_sale()
        confirm(org, sale, "receipt", financeiro_actor)

        audit = db_session.query(AuditEvent).filter_by(sale_id=sale.id).one()
        assert audit.event_type == "payment.receipt"
        assert audit.actor_user_id == financeiro_actor.user_id
