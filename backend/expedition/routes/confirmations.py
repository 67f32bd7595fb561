# Overview: Flask API routes for the cash confirmation ledger; parses input and returns JSON responses.

"""
Cash Confirmation API Routes

SECURITY:
- Listing cash sales needs sales_view_all or reports_view
- Confirming a stage is checked by the role gate inside
  confirmation_service against the organization's cash ledger allowlists

The batch endpoint always answers 200 with one result per sale; callers
read "succeeded" / "failed" instead of relying on the HTTP status.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import confirmation_service
from ..services.errors import WorkflowError
from ..decorators import require_auth, require_any_permission


confirmations_bp = Blueprint("cash_confirmations", __name__, url_prefix="/api/cash-confirmations")

VIEW_PERMISSIONS = ("sales_view_all", "reports_view")


def _is_int(value) -> bool:
    # JSON true/false arrive as bool, which is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


def _is_id_list(value) -> bool:
    return isinstance(value, list) and all(_is_int(v) for v in value)


@confirmations_bp.get("/")
@confirmations_bp.get("")
@require_auth
@require_any_permission(*VIEW_PERMISSIONS)
def list_cash_sales_route():
    """
    Cash sales with their ledgers.

    Query params:
    - delivery_type: pickup | motoboy | carrier (optional)
    - status: pending (default) | verified | all
    """
    try:
        result = confirmation_service.list_cash_sales(
            g.org_id,
            delivery_type=request.args.get("delivery_type") or None,
            status=request.args.get("status", "pending"),
        )
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list cash sales")
        return jsonify({"error": "Internal server error"}), 500


@confirmations_bp.get("/sales/<int:sale_id>")
@require_auth
@require_any_permission(*VIEW_PERMISSIONS)
def get_ledger_route(sale_id: int):
    try:
        ledger = confirmation_service.get_ledger(g.org_id, sale_id)
        return jsonify({
            "sale_id": sale_id,
            "ledger": [event.to_dict() for event in ledger],
            "next_confirmation_type": confirmation_service.next_confirmation_type(ledger),
        }), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get ledger")
        return jsonify({"error": "Internal server error"}), 500


@confirmations_bp.post("/sales/<int:sale_id>")
@require_auth
def confirm_payment_route(sale_id: int):
    """
    Record one stage for one sale.

    Request body:
    {
        "confirmation_type": "receipt" | "handover" | "final_verification",
        "amount_cents": 5000,   (optional, defaults to the sale total)
        "notes": "..."          (optional)
    }
    """
    try:
        data = request.get_json() or {}
        confirmation_type = data.get("confirmation_type")
        amount_cents = data.get("amount_cents")

        if not confirmation_type:
            return jsonify({"error": "validation_error", "message": "confirmation_type required"}), 400
        if amount_cents is not None and not _is_int(amount_cents):
            return jsonify({"error": "validation_error", "message": "amount_cents must be an integer"}), 400

        ledger = confirmation_service.confirm_payment(
            org_id=g.org_id,
            sale_id=sale_id,
            confirmation_type=confirmation_type,
            actor=g.actor,
            amount_cents=amount_cents,
            notes=data.get("notes"),
            resource=request.path,
        )

        return jsonify({
            "sale_id": sale_id,
            "ledger": [event.to_dict() for event in ledger],
            "next_confirmation_type": confirmation_service.next_confirmation_type(ledger),
        }), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500


@confirmations_bp.post("/batch")
@require_auth
def confirm_batch_route():
    """
    Record the same stage for several sales, one at a time.

    Request body:
    {
        "confirmation_type": "receipt",
        "sale_ids": [1, 2, 3],
        "notes": "..."   (optional)
    }
    """
    try:
        data = request.get_json() or {}
        confirmation_type = data.get("confirmation_type")
        sale_ids = data.get("sale_ids") or []

        if not confirmation_type:
            return jsonify({"error": "validation_error", "message": "confirmation_type required"}), 400
        if not _is_id_list(sale_ids):
            return jsonify({"error": "validation_error", "message": "sale_ids must be a list of integers"}), 400

        result = confirmation_service.confirm_payment_batch(
            org_id=g.org_id,
            sale_ids=sale_ids,
            confirmation_type=confirmation_type,
            actor=g.actor,
            notes=data.get("notes"),
            resource=request.path,
        )
        return jsonify(result.to_dict()), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to confirm payment batch")
        return jsonify({"error": "Internal server error"}), 500
