"""
Approval allowlist management and policy loading.
"""

import pytest

from expedition.services import policy_service
from expedition.services.errors import NotFoundError
from expedition.services.policy_service import PolicyError


def grant(org, **kwargs):
    return policy_service.grant_allowlist_entry(org_id=org.id, **kwargs)


class TestGrant:

    def test_grant_normalizes_email(self, org):
        entry = grant(org, policy="cash_ledger", role="auxiliar", email="  Caixa@Acme.COM ")
        assert entry.email == "caixa@acme.com"
        assert entry.closing_type is None

    def test_grant_is_idempotent(self, org):
        first = grant(org, policy="closing", role="admin", email="boss@acme.com", closing_type="pickup")
        second = grant(org, policy="closing", role="admin", email="BOSS@acme.com", closing_type="pickup")
        assert first.id == second.id
        assert len(policy_service.list_allowlist_entries(org.id)) == 1

    @pytest.mark.parametrize("kwargs", [
        {"policy": "refunds", "role": "admin", "email": "a@acme.com"},
        {"policy": "cash_ledger", "role": "owner", "email": "a@acme.com"},
        {"policy": "cash_ledger", "role": "admin", "email": "not-an-email"},
        {"policy": "cash_ledger", "role": "admin", "email": "a@acme.com", "closing_type": "pickup"},
        {"policy": "closing", "role": "auxiliar", "email": "a@acme.com", "closing_type": "pickup"},
        {"policy": "closing", "role": "admin", "email": "a@acme.com"},
        {"policy": "closing", "role": "admin", "email": "a@acme.com", "closing_type": "drone"},
    ])
    def test_invalid_entries(self, org, kwargs):
        with pytest.raises(PolicyError):
            grant(org, **kwargs)


class TestLoad:

    def test_cash_ledger_policy(self, org, other_org):
        grant(org, policy="cash_ledger", role="auxiliar", email="aux@acme.com")
        grant(org, policy="cash_ledger", role="admin", email="adm@acme.com")
        policy_service.grant_allowlist_entry(
            org_id=other_org.id, policy="cash_ledger", role="admin", email="intruder@beta.com",
        )

        policy = policy_service.load_cash_ledger_policy(org.id)
        assert policy.auxiliar_emails == frozenset({"aux@acme.com"})
        assert policy.admin_emails == frozenset({"adm@acme.com"})

    def test_closing_policy_per_channel(self, org):
        grant(org, policy="closing", role="admin", email="pickup.boss@acme.com", closing_type="pickup")
        grant(org, policy="closing", role="admin", email="rider.boss@acme.com", closing_type="motoboy")

        policy = policy_service.load_closing_policy(org.id)
        assert policy.admin_emails("pickup") == frozenset({"pickup.boss@acme.com"})
        assert policy.admin_emails("motoboy") == frozenset({"rider.boss@acme.com"})
        assert policy.admin_emails("carrier") == frozenset()

    def test_empty_org_denies_everyone(self, org):
        assert policy_service.load_cash_ledger_policy(org.id).to_dict() == {
            "auxiliar_emails": [],
            "admin_emails": [],
        }


class TestRevoke:

    def test_revoke_by_id(self, org):
        entry = grant(org, policy="cash_ledger", role="admin", email="adm@acme.com")
        revoked = policy_service.revoke_allowlist_entry(org_id=org.id, entry_id=entry.id)

        assert revoked["email"] == "adm@acme.com"
        assert policy_service.load_cash_ledger_policy(org.id).admin_emails == frozenset()

    def test_revoke_other_org_entry_is_not_found(self, org, other_org):
        entry = grant(org, policy="cash_ledger", role="admin", email="adm@acme.com")
        with pytest.raises(NotFoundError):
            policy_service.revoke_allowlist_entry(org_id=other_org.id, entry_id=entry.id)

    def test_revoke_by_email(self, org):
        grant(org, policy="closing", role="admin", email="boss@acme.com", closing_type="carrier")

        assert policy_service.revoke_allowlist_email(
            org_id=org.id, policy="closing", role="admin", email="Boss@acme.com", closing_type="carrier",
        ) is True
        assert policy_service.revoke_allowlist_email(
            org_id=org.id, policy="closing", role="admin", email="boss@acme.com", closing_type="carrier",
        ) is False

    def test_list_filters_by_policy(self, org):
        grant(org, policy="cash_ledger", role="admin", email="adm@acme.com")
        grant(org, policy="closing", role="admin", email="adm@acme.com", closing_type="pickup")

        entries = policy_service.list_allowlist_entries(org.id, policy="closing")
        assert [e.closing_type for e in entries] == ["pickup"]
