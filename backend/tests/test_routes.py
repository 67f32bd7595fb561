"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Workflow errors map to 400 / 403 / 404 / 409 with a stable error code
- Authorization and stage-order failures read differently
- Batch confirmation returns per-sale results with 200
"""

import pytest

from conftest import auth_headers, get_auth_token


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/closings/types"),
            ("GET", "/api/closings/available?closing_type=pickup"),
            ("GET", "/api/closings?closing_type=pickup"),
            ("POST", "/api/closings"),
            ("GET", "/api/closings/1"),
            ("POST", "/api/closings/1/confirm"),
            ("GET", "/api/cash-confirmations"),
            ("POST", "/api/cash-confirmations/sales/1"),
            ("POST", "/api/cash-confirmations/batch"),
            ("GET", "/api/policies"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_login_and_me(self, client, financeiro_user, allowlists):
        token = get_auth_token(client, "financeiro")
        assert token

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["roles"] == ["financeiro"]
        assert "reports_view" in resp.json["permissions"]
        assert resp.json["capabilities"]["cash_ledger"]["final_verification"] is False
        assert resp.json["capabilities"]["closings"]["pickup"]["auxiliar"] is True

    def test_login_by_email(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"email": "ADMIN@acme.com", "password": "Password123!"})
        assert resp.status_code == 200
        assert resp.json["org_id"] == admin_user.org_id

    def test_bad_password(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})
        assert resp.status_code == 401

    def test_logout_revokes_token(self, client, admin_headers):
        assert client.post("/api/auth/logout", headers=admin_headers).status_code == 200
        assert client.get("/api/auth/me", headers=admin_headers).status_code == 401


# =============================================================================
# CLOSINGS
# =============================================================================


class TestClosingRoutes:

    def test_generate_and_sign(self, client, make_sale, expedicao_headers, financeiro_headers, admin_headers):
        sales = [
            make_sale(payment_method="Cartão Crédito"),
            make_sale(payment_method="PIX"),
            make_sale(payment_method="Dinheiro"),
        ]

        available = client.get("/api/closings/available?closing_type=pickup", headers=expedicao_headers)
        assert available.status_code == 200
        assert available.json["totals"]["total_cents"] == 15000

        created = client.post("/api/closings", headers=expedicao_headers, json={
            "closing_type": "pickup",
            "sale_ids": [s.id for s in sales],
        })
        assert created.status_code == 201
        closing_id = created.json["closing"]["id"]
        assert created.json["closing"]["total_cash_cents"] == 5000
        assert len(created.json["closing"]["sales"]) == 3
        assert created.json["summary"]["next_stage"] == "auxiliar"

        resp = client.post(f"/api/closings/{closing_id}/confirm", headers=financeiro_headers,
                           json={"stage": "auxiliar"})
        assert resp.status_code == 200
        assert resp.json["closing"]["status"] == "confirmed_auxiliar"

        resp = client.post(f"/api/closings/{closing_id}/confirm", headers=admin_headers,
                           json={"stage": "admin"})
        assert resp.status_code == 400
        assert resp.json["error"] == "cash_acknowledgement_required"

        resp = client.post(f"/api/closings/{closing_id}/confirm", headers=admin_headers,
                           json={"stage": "admin", "acknowledge_cash": True})
        assert resp.status_code == 200
        assert resp.json["closing"]["status"] == "confirmed_final"

        events = client.get(f"/api/closings/{closing_id}/events", headers=admin_headers)
        assert [e["event_type"] for e in events.json["events"]][-1] == "closing.confirmed_final"

    @pytest.mark.parametrize("flag", ["false", "true", 1, None])
    def test_cash_acknowledgement_must_be_boolean(self, client, make_sale, expedicao_headers,
                                                  financeiro_headers, admin_headers, flag):
        created = client.post("/api/closings", headers=expedicao_headers, json={
            "closing_type": "pickup",
            "sale_ids": [make_sale(total_cents=5000, payment_method="Dinheiro").id],
        })
        closing_id = created.json["closing"]["id"]
        client.post(f"/api/closings/{closing_id}/confirm", headers=financeiro_headers, json={"stage": "auxiliar"})

        resp = client.post(f"/api/closings/{closing_id}/confirm", headers=admin_headers,
                           json={"stage": "admin", "acknowledge_cash": flag})
        assert resp.status_code == 400
        assert resp.json["error"] == "validation_error"

        closing = client.get(f"/api/closings/{closing_id}", headers=admin_headers)
        assert closing.json["closing"]["status"] == "confirmed_auxiliar"

    def test_auth_and_state_errors_differ(self, client, make_sale, expedicao_headers, financeiro_headers):
        created = client.post("/api/closings", headers=expedicao_headers, json={
            "closing_type": "pickup",
            "sale_ids": [make_sale().id],
        })
        closing_id = created.json["closing"]["id"]

        denied = client.post(f"/api/closings/{closing_id}/confirm", headers=expedicao_headers,
                             json={"stage": "auxiliar"})
        assert denied.status_code == 403
        assert denied.json["error"] == "unauthorized"
        assert denied.json["required"] == "permission reports_view"

        client.post(f"/api/closings/{closing_id}/confirm", headers=financeiro_headers, json={"stage": "auxiliar"})
        repeated = client.post(f"/api/closings/{closing_id}/confirm", headers=financeiro_headers,
                               json={"stage": "auxiliar"})
        assert repeated.status_code == 409
        assert repeated.json["error"] == "already_confirmed"

    def test_financeiro_cannot_generate(self, client, make_sale, financeiro_headers):
        resp = client.post("/api/closings", headers=financeiro_headers, json={
            "closing_type": "pickup",
            "sale_ids": [make_sale().id],
        })
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "sales_dispatch"

    @pytest.mark.parametrize("body,code", [
        ({"closing_type": "pickup", "sale_ids": []}, "empty_selection"),
        ({"closing_type": "drone", "sale_ids": [1]}, "invalid_closing_type"),
    ])
    def test_validation_errors(self, client, expedicao_headers, body, code):
        resp = client.post("/api/closings", headers=expedicao_headers, json=body)
        assert resp.status_code == 400
        assert resp.json["error"] == code

    @pytest.mark.parametrize("sale_ids", [["1"], [True], [1, False]])
    def test_sale_ids_must_be_integers(self, client, make_sale, expedicao_headers, sale_ids):
        make_sale()
        resp = client.post("/api/closings", headers=expedicao_headers,
                           json={"closing_type": "pickup", "sale_ids": sale_ids})
        assert resp.status_code == 400
        assert resp.json["error"] == "validation_error"

    def test_unknown_closing_is_404(self, client, admin_headers):
        resp = client.get("/api/closings/999", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json["error"] == "closing_not_found"

    def test_types(self, client, expedicao_headers):
        resp = client.get("/api/closings/types", headers=expedicao_headers)
        assert resp.status_code == 200
        assert resp.json["types"]["motoboy"]["title"] == "Fechamento de Entregas Motoboy"


# =============================================================================
# CASH CONFIRMATIONS
# =============================================================================


class TestCashConfirmationRoutes:

    def test_single_confirmation(self, client, make_sale, financeiro_headers):
        sale = make_sale(total_cents=4200)

        resp = client.post(f"/api/cash-confirmations/sales/{sale.id}", headers=financeiro_headers,
                           json={"confirmation_type": "receipt"})
        assert resp.status_code == 201
        assert resp.json["ledger"][0]["amount_cents"] == 4200
        assert resp.json["next_confirmation_type"] == "handover"

        ledger = client.get(f"/api/cash-confirmations/sales/{sale.id}", headers=financeiro_headers)
        assert ledger.status_code == 200

    def test_out_of_order_is_409(self, client, make_sale, admin_headers):
        sale = make_sale()
        resp = client.post(f"/api/cash-confirmations/sales/{sale.id}", headers=admin_headers,
                           json={"confirmation_type": "final_verification"})
        assert resp.status_code == 409
        assert resp.json["error"] == "out_of_order_confirmation"
        assert resp.json["required_stage"] == "receipt"

    def test_unlisted_user_is_403(self, client, make_sale, expedicao_headers):
        sale = make_sale()
        resp = client.post(f"/api/cash-confirmations/sales/{sale.id}", headers=expedicao_headers,
                           json={"confirmation_type": "receipt"})
        assert resp.status_code == 403
        assert "expedicao@acme.com" in resp.json["message"]

    def test_batch_reports_each_sale(self, client, make_sale, financeiro_headers):
        sales = [make_sale() for _ in range(5)]
        cancelled = make_sale(status="cancelled")
        sale_ids = [s.id for s in sales[:2]] + [cancelled.id] + [s.id for s in sales[2:4]]

        resp = client.post("/api/cash-confirmations/batch", headers=financeiro_headers, json={
            "confirmation_type": "receipt",
            "sale_ids": sale_ids,
        })
        assert resp.status_code == 200
        assert resp.json["total"] == 5
        assert resp.json["succeeded"] == 4
        assert resp.json["results"][2] == {
            "sale_id": cancelled.id,
            "success": False,
            "error": "sale_cancelled",
            "message": f"Sale {cancelled.id} is cancelled",
        }

    def test_batch_rejects_boolean_ids(self, client, make_sale, financeiro_headers):
        make_sale()
        resp = client.post("/api/cash-confirmations/batch", headers=financeiro_headers, json={
            "confirmation_type": "receipt",
            "sale_ids": [True],
        })
        assert resp.status_code == 400
        assert resp.json["error"] == "validation_error"

    def test_amount_must_be_integer(self, client, make_sale, financeiro_headers):
        sale = make_sale()
        resp = client.post(f"/api/cash-confirmations/sales/{sale.id}", headers=financeiro_headers,
                           json={"confirmation_type": "receipt", "amount_cents": True})
        assert resp.status_code == 400

    def test_list_pending(self, client, make_sale, financeiro_headers):
        make_sale()
        resp = client.get("/api/cash-confirmations?status=pending", headers=financeiro_headers)
        assert resp.status_code == 200
        assert resp.json["stats"]["pending_count"] == 1

    def test_user_without_role_cannot_list(self, client, org, db_session):
        from expedition.services import auth_service

        auth_service.create_user(username="visitante", email="visitante@acme.com",
                                 password="Password123!", org_id=org.id)
        headers = auth_headers(get_auth_token(client, "visitante"))

        resp = client.get("/api/cash-confirmations", headers=headers)
        assert resp.status_code == 403
        assert resp.json["error"] == "permission_denied"


# =============================================================================
# POLICIES
# =============================================================================


class TestPolicyRoutes:

    def test_admin_manages_entries(self, client, admin_headers):
        resp = client.post("/api/policies/entries", headers=admin_headers, json={
            "policy": "closing",
            "role": "admin",
            "email": "gerente@acme.com",
            "closing_type": "motoboy",
        })
        assert resp.status_code == 201
        entry_id = resp.json["entry"]["id"]

        listing = client.get("/api/policies", headers=admin_headers)
        assert "gerente@acme.com" in listing.json["closing"]["admin_emails_by_type"]["motoboy"]

        resp = client.delete(f"/api/policies/entries/{entry_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["revoked"]["email"] == "gerente@acme.com"

    def test_invalid_entry_is_400(self, client, admin_headers):
        resp = client.post("/api/policies/entries", headers=admin_headers, json={
            "policy": "closing", "role": "auxiliar", "email": "x@acme.com", "closing_type": "pickup",
        })
        assert resp.status_code == 400
        assert resp.json["error"] == "invalid_policy_entry"

    def test_financeiro_cannot_manage(self, client, financeiro_headers):
        assert client.get("/api/policies", headers=financeiro_headers).status_code == 403


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["checks"]["database"]["status"] in ("healthy", "degraded")
