# Overview: Flask API routes for delivery closings; parses input and returns JSON responses.

"""
Delivery Closing API Routes

WHY: Operators generate a closing per channel (pickup, motoboy, carrier)
from delivered sales, then financeiro and an admin sign it off.

SECURITY:
- sales_dispatch to generate closings
- sales_dispatch / sales_view_all / reports_view to read them
- Sign-off stages are checked by the role gate inside closing_service,
  not by a route permission: auxiliar needs reports_view, admin needs the
  channel's admin allowlist
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import closing_service, payment_categories
from ..services.errors import WorkflowError
from ..decorators import require_auth, require_permission, require_any_permission


closings_bp = Blueprint("closings", __name__, url_prefix="/api/closings")

VIEW_PERMISSIONS = ("sales_dispatch", "sales_view_all", "reports_view")


def _serialize_available_sale(sale) -> dict:
    data = sale.to_dict()
    data["payment_label"] = payment_categories.format_payment_method(sale.payment_method)
    data["resolved_category"] = payment_categories.resolve_category(sale.payment_method, sale.payment_category)
    return data


def _is_id_list(value) -> bool:
    # JSON true/false arrive as bool, which is an int subclass
    return isinstance(value, list) and all(
        isinstance(v, int) and not isinstance(v, bool) for v in value
    )


@closings_bp.get("/types")
@require_auth
def closing_types_route():
    """Display configuration for every closing type."""
    return jsonify({"types": closing_service.get_closing_type_config()}), 200


@closings_bp.get("/available")
@require_auth
@require_any_permission(*VIEW_PERMISSIONS)
def available_sales_route():
    """
    Sales that can still enter a closing of this type.

    Query params:
    - closing_type: pickup | motoboy | carrier (required)
    - delivered_only: "true" to hide sales not delivered yet
    """
    try:
        closing_type = request.args.get("closing_type")
        if not closing_type:
            return jsonify({"error": "validation_error", "message": "closing_type required"}), 400

        delivered_only = request.args.get("delivered_only", "false").lower() == "true"
        sales = closing_service.list_available_sales(g.org_id, closing_type, delivered_only=delivered_only)
        totals = payment_categories.calculate_category_totals(sales)

        return jsonify({
            "closing_type": closing_type,
            "sales": [_serialize_available_sale(s) for s in sales],
            "totals": totals.to_dict(),
        }), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list available sales")
        return jsonify({"error": "Internal server error"}), 500


@closings_bp.get("/")
@closings_bp.get("")
@require_auth
@require_any_permission(*VIEW_PERMISSIONS)
def list_closings_route():
    """
    List closings of one type, newest first.

    Query params: closing_type (required), status (optional)
    """
    try:
        closing_type = request.args.get("closing_type")
        if not closing_type:
            return jsonify({"error": "validation_error", "message": "closing_type required"}), 400

        closings = closing_service.list_closings(g.org_id, closing_type, status=request.args.get("status"))
        return jsonify({"closings": [c.to_dict() for c in closings]}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list closings")
        return jsonify({"error": "Internal server error"}), 500


@closings_bp.post("/")
@closings_bp.post("")
@require_auth
@require_permission("sales_dispatch")
def create_closing_route():
    """
    Generate a closing from selected sales.

    Request body:
    {
        "closing_type": "pickup",
        "sale_ids": [12, 15, 18],
        "notes": "Turno da tarde"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        closing_type = data.get("closing_type")
        sale_ids = data.get("sale_ids") or []

        if not closing_type:
            return jsonify({"error": "validation_error", "message": "closing_type required"}), 400
        if not _is_id_list(sale_ids):
            return jsonify({"error": "validation_error", "message": "sale_ids must be a list of integers"}), 400

        closing = closing_service.create_closing(
            org_id=g.org_id,
            closing_type=closing_type,
            sale_ids=sale_ids,
            actor=g.actor,
            notes=data.get("notes"),
        )

        return jsonify({
            "closing": closing.to_dict(include_sales=True),
            "summary": closing_service.closing_summary(closing),
        }), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create closing")
        return jsonify({"error": "Internal server error"}), 500


@closings_bp.get("/<int:closing_id>")
@require_auth
@require_any_permission(*VIEW_PERMISSIONS)
def get_closing_route(closing_id: int):
    """Closing with its frozen member rows."""
    try:
        closing = closing_service.get_closing(g.org_id, closing_id)
        return jsonify({
            "closing": closing.to_dict(include_sales=True),
            "summary": closing_service.closing_summary(closing),
        }), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get closing")
        return jsonify({"error": "Internal server error"}), 500


@closings_bp.post("/<int:closing_id>/confirm")
@require_auth
def confirm_closing_route(closing_id: int):
    """
    Sign off one stage of a closing.

    Request body:
    {
        "stage": "auxiliar" | "admin",
        "acknowledge_cash": true   (required for admin when the closing has cash)
    }
    """
    try:
        data = request.get_json() or {}
        stage = data.get("stage")
        acknowledge_cash = data.get("acknowledge_cash", False)
        if not stage:
            return jsonify({"error": "validation_error", "message": "stage required"}), 400
        if not isinstance(acknowledge_cash, bool):
            return jsonify({"error": "validation_error", "message": "acknowledge_cash must be a boolean"}), 400

        closing = closing_service.confirm_closing(
            org_id=g.org_id,
            closing_id=closing_id,
            stage=stage,
            actor=g.actor,
            acknowledge_cash=acknowledge_cash,
            resource=request.path,
        )

        return jsonify({
            "closing": closing.to_dict(),
            "summary": closing_service.closing_summary(closing),
        }), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to confirm closing")
        return jsonify({"error": "Internal server error"}), 500


@closings_bp.get("/<int:closing_id>/events")
@require_auth
@require_any_permission(*VIEW_PERMISSIONS)
def closing_events_route(closing_id: int):
    """Audit trail of a closing (creation and sign-offs)."""
    try:
        events = closing_service.list_closing_events(g.org_id, closing_id)
        return jsonify({"events": [e.to_dict() for e in events]}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list closing events")
        return jsonify({"error": "Internal server error"}), 500
