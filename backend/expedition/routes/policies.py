# Overview: Flask API routes for approval allowlists; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import policy_service
from ..services.errors import WorkflowError
from ..decorators import require_auth, require_permission


policies_bp = Blueprint("policies", __name__, url_prefix="/api/policies")


@policies_bp.get("/")
@policies_bp.get("")
@require_auth
@require_permission("manage_policies")
def get_policies_route():
    """Allowlist entries plus the effective policies built from them."""
    try:
        entries = policy_service.list_allowlist_entries(g.org_id, policy=request.args.get("policy"))
        return jsonify({
            "entries": [e.to_dict() for e in entries],
            "cash_ledger": policy_service.load_cash_ledger_policy(g.org_id).to_dict(),
            "closing": policy_service.load_closing_policy(g.org_id).to_dict(),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list policies")
        return jsonify({"error": "Internal server error"}), 500


@policies_bp.post("/entries")
@require_auth
@require_permission("manage_policies")
def grant_entry_route():
    """
    Add an email to an allowlist.

    Request body:
    {
        "policy": "cash_ledger" | "closing",
        "role": "auxiliar" | "admin",
        "email": "someone@example.com",
        "closing_type": "pickup"   (closing policy only)
    }
    """
    try:
        data = request.get_json() or {}
        entry = policy_service.grant_allowlist_entry(
            org_id=g.org_id,
            policy=data.get("policy"),
            role=data.get("role"),
            email=data.get("email"),
            closing_type=data.get("closing_type"),
            granted_by_user_id=g.current_user.id,
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to grant allowlist entry")
        return jsonify({"error": "Internal server error"}), 500


@policies_bp.delete("/entries/<int:entry_id>")
@require_auth
@require_permission("manage_policies")
def revoke_entry_route(entry_id: int):
    try:
        entry = policy_service.revoke_allowlist_entry(org_id=g.org_id, entry_id=entry_id)
        return jsonify({"revoked": entry}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to revoke allowlist entry")
        return jsonify({"error": "Internal server error"}), 500
