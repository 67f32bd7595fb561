"""
CLI bootstrap and allowlist commands.
"""

from expedition.models import ApprovalAllowlistEntry, User
from expedition.services import closing_service, policy_service


def test_system_init_seeds_users_and_allowlists(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init", "--org", "Loja Teste", "--org-code", "LT"])
    assert result.exit_code == 0, result.output
    assert "Initialized Successfully" in result.output

    assert {u.username for u in db_session.query(User).all()} == {"admin", "financeiro", "expedicao"}
    org_id = db_session.query(User).filter_by(username="admin").one().org_id

    cash = policy_service.load_cash_ledger_policy(org_id)
    assert cash.admin_emails == frozenset({"admin@expedition.local"})
    assert cash.auxiliar_emails == frozenset({"financeiro@expedition.local"})
    assert policy_service.load_closing_policy(org_id).admin_emails("carrier") == frozenset({"admin@expedition.local"})

    # Idempotent
    again = runner.invoke(args=["system", "init"])
    assert again.exit_code == 0
    assert db_session.query(ApprovalAllowlistEntry).count() == 5


def test_policies_grant_and_revoke(app, org):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "policies", "grant", "--org-id", str(org.id),
        "--policy", "closing", "--role", "admin", "--closing-type", "motoboy", "--email", "Chefe@Acme.com",
    ])
    assert "PASS chefe@acme.com on closing/admin/motoboy" in result.output

    listed = runner.invoke(args=["policies", "list", "--org-id", str(org.id)])
    assert "chefe@acme.com" in listed.output

    revoked = runner.invoke(args=[
        "policies", "revoke", "--org-id", str(org.id),
        "--policy", "closing", "--role", "admin", "--closing-type", "motoboy", "--email", "chefe@acme.com",
    ])
    assert "PASS Revoked" in revoked.output


def test_policies_grant_rejects_invalid_entry(app, org):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "policies", "grant", "--org-id", str(org.id),
        "--policy", "closing", "--role", "admin", "--email", "chefe@acme.com",
    ])
    assert "FAIL closing_type is required" in result.output


def test_users_create_and_list(app, org):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "users", "create", "--org-id", str(org.id), "--username", "caixa",
        "--email", "caixa@acme.com", "--password", "Password123!", "--role", "financeiro",
    ])
    assert "PASS Created user: caixa (caixa@acme.com) with role 'financeiro'" in result.output

    listed = runner.invoke(args=["users", "list", "--org-id", str(org.id)])
    assert "caixa@acme.com" in listed.output
    assert "financeiro" in listed.output


def test_users_create_rejects_weak_password(app, org, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "users", "create", "--org-id", str(org.id), "--username", "fraco",
        "--email", "fraco@acme.com", "--password", "abc", "--role", "expedicao",
    ])
    assert "FAIL Password validation failed" in result.output
    assert db_session.query(User).filter_by(username="fraco").first() is None


def test_closings_list(app, org, expedicao_actor, make_sale):
    closing_service.create_closing(
        org_id=org.id, closing_type="pickup", sale_ids=[make_sale(total_cents=4200).id], actor=expedicao_actor,
    )
    runner = app.test_cli_runner()

    result = runner.invoke(args=["closings", "list", "--org-id", str(org.id), "--type", "pickup"])
    assert result.exit_code == 0, result.output
    assert "pending" in result.output

    empty = runner.invoke(args=["closings", "list", "--org-id", str(org.id), "--type", "carrier"])
    assert "No closings found." in empty.output
