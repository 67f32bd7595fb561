# Overview: Flask CLI command groups for bootstrap, users, approval allowlists and closings.

# backend/expedition/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--org "Org Name"]
#   Idempotent bootstrap: organization, permissions, default roles, default
#   users and their allowlist entries.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--org-id 1]
# - python -m flask users create --org-id 1 --username ana --email ana@example.com --password "Password123!" --role financeiro
#
# Approval allowlists:
# - python -m flask policies list [--org-id 1] [--policy cash_ledger]
# - python -m flask policies grant --policy cash_ledger --role auxiliar --email ana@example.com
# - python -m flask policies grant --policy closing --role admin --closing-type pickup --email chefe@example.com
# - python -m flask policies revoke --policy closing --role admin --closing-type pickup --email chefe@example.com
#
# Closings:
# - python -m flask closings list --type pickup [--status pending]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Organization
from .models.closings import CLOSING_STATUSES
from .models.policies import POLICIES, ALLOWLIST_ROLES, POLICY_CASH_LEDGER, POLICY_CLOSING, ROLE_AUXILIAR, ROLE_ADMIN
from .models.sales import DELIVERY_TYPES
from .permissions import DEFAULT_ROLE_PERMISSIONS
from .services.auth_service import create_user, assign_role, PasswordValidationError
from .services.errors import WorkflowError
from .services import permission_service, policy_service, closing_service


def _resolve_org(org_id):
    if org_id:
        return db.session.query(Organization).filter_by(id=org_id).first()
    return db.session.query(Organization).order_by(Organization.id).first()


def _format_cents(cents) -> str:
    return f"R$ {(cents or 0) / 100:,.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@with_appcontext
def init_system(org_name, org_code):
    """
    Initialize organization, roles, permissions, default users and allowlists.

    Creates:
    - Default organization (if none exists)
    - Permissions catalogue and roles: admin, financeiro, expedicao
    - Users: admin/admin@expedition.local, financeiro/financeiro@expedition.local,
      expedicao/expedicao@expedition.local (password "Password123!")
    - Allowlists: admin on cash ledger admin and every closing admin list,
      financeiro on cash ledger auxiliar

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing expedition system...")

    org = db.session.query(Organization).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created default organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    click.echo("\nSECURITY Initializing permissions and roles...")
    perm_count = permission_service.initialize_permissions()
    role_count = permission_service.create_default_roles(org.id)
    assignment_count = permission_service.assign_default_role_permissions(org.id)
    click.echo(f"PASS Created {perm_count} permissions, {role_count} roles, {assignment_count} role grants")

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"
    default_users = [
        ("admin", "admin@expedition.local", "admin"),
        ("financeiro", "financeiro@expedition.local", "financeiro"),
        ("expedicao", "expedicao@expedition.local", "expedicao"),
    ]

    for username, email, role_name in default_users:
        try:
            existing = db.session.query(User).filter_by(org_id=org.id, username=username).first()
            if existing:
                click.echo(f"WARN  User '{username}' already exists in org, skipping...")
                continue

            user = create_user(username=username, email=email, password=default_password, org_id=org.id)
            assign_role(user.id, role_name)
            click.echo(f"PASS Created user: {username} ({email}) with role '{role_name}'")

        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    click.echo("\nPOLICY Seeding approval allowlists...")
    policy_service.grant_allowlist_entry(
        org_id=org.id, policy=POLICY_CASH_LEDGER, role=ROLE_ADMIN, email="admin@expedition.local",
    )
    policy_service.grant_allowlist_entry(
        org_id=org.id, policy=POLICY_CASH_LEDGER, role=ROLE_AUXILIAR, email="financeiro@expedition.local",
    )
    for closing_type in DELIVERY_TYPES:
        policy_service.grant_allowlist_entry(
            org_id=org.id, policy=POLICY_CLOSING, role=ROLE_ADMIN,
            closing_type=closing_type, email="admin@expedition.local",
        )
    click.echo("PASS Allowlists seeded")

    click.echo("\n" + "="*60)
    click.echo("DONE Expedition System Initialized Successfully!")
    click.echo("="*60)
    click.echo(f"\nOrganization: {org.name} (ID: {org.id})")
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin      -> admin@expedition.local      / Password123!")
    click.echo("   financeiro -> financeiro@expedition.local / Password123!")
    click.echo("   expedicao  -> expedicao@expedition.local  / Password123!")
    click.echo("")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(DEFAULT_ROLE_PERMISSIONS)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(org_id, username, email, password, role):
    """Create a new user within an organization."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization found. Run 'python -m flask system init' first.")
        return

    try:
        user = create_user(username=username, email=email, password=password, org_id=org.id)
        assign_role(user.id, role)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {username} ({user.email}) with role '{role}'")
    click.echo(f"     Organization: {org.name} (ID: {org.id})")


@users_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_users(org_id):
    """List all users with their roles."""
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)
    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Org':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("="*100)

    for user in users:
        role_names = permission_service.get_user_role_names(user.id)
        roles_str = ", ".join(role_names) if role_names else "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.org_id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {roles_str}")

    click.echo("="*100 + "\n")


@click.group('policies')
def policies_group():
    """Approval allowlist management."""


@policies_group.command('list')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--policy', type=click.Choice(POLICIES), help='Filter by policy')
@with_appcontext
def list_policies_cli(org_id, policy):
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return

    entries = policy_service.list_allowlist_entries(org.id, policy=policy)
    if not entries:
        click.echo("No allowlist entries.")
        return

    click.echo(f"\n{'ID':<5} {'Policy':<12} {'Role':<10} {'Type':<10} {'Email'}")
    click.echo("-"*70)
    for entry in entries:
        click.echo(f"{entry.id:<5} {entry.policy:<12} {entry.role:<10} {entry.closing_type or '-':<10} {entry.email}")
    click.echo("")


@policies_group.command('grant')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--policy', type=click.Choice(POLICIES), required=True)
@click.option('--role', type=click.Choice(ALLOWLIST_ROLES), required=True)
@click.option('--closing-type', type=click.Choice(DELIVERY_TYPES), help='Required for the closing policy')
@click.option('--email', required=True)
@with_appcontext
def grant_policy_cli(org_id, policy, role, closing_type, email):
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return

    try:
        entry = policy_service.grant_allowlist_entry(
            org_id=org.id, policy=policy, role=role, closing_type=closing_type, email=email,
        )
    except WorkflowError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS {entry.email} on {entry.policy}/{entry.role}" + (f"/{entry.closing_type}" if entry.closing_type else ""))


@policies_group.command('revoke')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--policy', type=click.Choice(POLICIES), required=True)
@click.option('--role', type=click.Choice(ALLOWLIST_ROLES), required=True)
@click.option('--closing-type', type=click.Choice(DELIVERY_TYPES))
@click.option('--email', required=True)
@with_appcontext
def revoke_policy_cli(org_id, policy, role, closing_type, email):
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return

    if policy_service.revoke_allowlist_email(
        org_id=org.id, policy=policy, role=role, closing_type=closing_type, email=email,
    ):
        click.echo(f"PASS Revoked {email}")
    else:
        click.echo(f"WARN {email} was not on that allowlist")


@click.group('closings')
def closings_group():
    """Delivery closing inspection."""


@closings_group.command('list')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--type', 'closing_type', type=click.Choice(DELIVERY_TYPES), required=True)
@click.option('--status', type=click.Choice(CLOSING_STATUSES))
@with_appcontext
def list_closings_cli(org_id, closing_type, status):
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return

    closings = closing_service.list_closings(org.id, closing_type, status=status)
    if not closings:
        click.echo("No closings found.")
        return

    click.echo(f"\n{closing_service.CLOSING_TYPE_CONFIG[closing_type]['title']}")
    click.echo("="*100)
    click.echo(f"{'#':<6} {'Date':<12} {'Sales':<6} {'Total':>14} {'Card':>14} {'PIX':>14} {'Cash':>14}  {'Status'}")
    click.echo("="*100)
    for c in closings:
        click.echo(
            f"{c.closing_number:<6} {c.closing_date.isoformat():<12} {c.total_sales:<6} "
            f"{_format_cents(c.total_amount_cents):>14} {_format_cents(c.total_card_cents):>14} "
            f"{_format_cents(c.total_pix_cents):>14} {_format_cents(c.total_cash_cents):>14}  {c.status}"
        )
    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(policies_group)
    app.cli.add_command(closings_group)
