"""
Pytest fixtures for expedition backend tests.

Provides test database setup, users for each team, approval allowlists,
a sale factory and an authenticated test client.
"""

import itertools

import pytest
from expedition import create_app
from expedition.extensions import db
from expedition.models import Organization, Sale
from expedition.services import auth_service, permission_service, policy_service
from expedition.time_utils import utcnow

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org(db_session):
    """Create the main organization with its default roles."""
    org = Organization(name="Acme Distribuidora", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    permission_service.setup_organization_roles(org.id)
    return org


@pytest.fixture(scope='function')
def other_org(db_session):
    """Second tenant, for isolation checks."""
    org = Organization(name="Beta Comercio", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    permission_service.setup_organization_roles(org.id)
    return org


def make_user(org, username: str, role: str, email: str | None = None):
    user = auth_service.create_user(
        username=username,
        email=email or f"{username}@acme.com",
        password=PASSWORD,
        org_id=org.id,
    )
    auth_service.assign_role(user.id, role)
    return user


@pytest.fixture(scope='function')
def admin_user(org):
    return make_user(org, "admin", "admin")


@pytest.fixture(scope='function')
def financeiro_user(org):
    return make_user(org, "financeiro", "financeiro")


@pytest.fixture(scope='function')
def expedicao_user(org):
    return make_user(org, "expedicao", "expedicao")


@pytest.fixture(scope='function')
def allowlists(org, admin_user, financeiro_user):
    """
    admin@acme.com: cash ledger admin and closing admin for every channel.
    financeiro@acme.com: cash ledger auxiliar.
    """
    policy_service.grant_allowlist_entry(
        org_id=org.id, policy="cash_ledger", role="auxiliar", email=financeiro_user.email,
    )
    policy_service.grant_allowlist_entry(
        org_id=org.id, policy="cash_ledger", role="admin", email=admin_user.email,
    )
    for closing_type in ("pickup", "motoboy", "carrier"):
        policy_service.grant_allowlist_entry(
            org_id=org.id, policy="closing", role="admin", email=admin_user.email,
            closing_type=closing_type,
        )


@pytest.fixture(scope='function')
def admin_actor(admin_user, allowlists):
    return permission_service.build_actor(admin_user)


@pytest.fixture(scope='function')
def financeiro_actor(financeiro_user, allowlists):
    return permission_service.build_actor(financeiro_user)


@pytest.fixture(scope='function')
def expedicao_actor(expedicao_user, allowlists):
    return permission_service.build_actor(expedicao_user)


@pytest.fixture(scope='function')
def make_sale(db_session, org):
    """Factory for delivered sales; override any column via kwargs."""
    numbers = itertools.count(1001)

    def _make_sale(**kwargs):
        values = {
            "org_id": org.id,
            "romaneio_number": next(numbers),
            "lead_name": "Cliente Teste",
            "status": "delivered",
            "total_cents": 5000,
            "payment_method": "Dinheiro",
            "delivery_type": "pickup",
            "delivered_at": utcnow(),
        }
        values.update(kwargs)
        sale = Sale(**values)
        db_session.add(sale)
        db_session.commit()
        return sale

    return _make_sale


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user, allowlists):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def financeiro_headers(client, financeiro_user, allowlists):
    return auth_headers(get_auth_token(client, financeiro_user.username))


@pytest.fixture(scope='function')
def expedicao_headers(client, expedicao_user, allowlists):
    return auth_headers(get_auth_token(client, expedicao_user.username))
