"""initial expedition schema

Revision ID: 0001_expedition_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the closing and cash confirmation schema:
- organizations, users, roles, permissions, sessions, security events
- sales: read model owned by the sales module
- delivery_closings / delivery_closing_sales / closing_sequences
- cash_payment_confirmations: append-only ledger with stage ordering
  enforced by constraints
- approval_allowlist_entries: per-organization signer lists
- audit_events: append-only workflow audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_expedition_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Identity
    # ============================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_organizations_code', 'organizations', ['code'], unique=True)
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_permissions_code', 'permissions', ['code'], unique=True)
    op.create_index('ix_permissions_category', 'permissions', ['category'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=64), nullable=True),
        sa.Column('last_name', sa.String(length=64), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'username', name='uq_users_org_username'),
        sa.UniqueConstraint('org_id', 'email', name='uq_users_org_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_org_id', 'users', ['org_id'])
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'name', name='uq_roles_org_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_roles_org_id', 'roles', ['org_id'])

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        _timestamp('assigned_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])
    op.create_index('ix_user_roles_role_id', 'user_roles', ['role_id'])

    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('permission_id', sa.Integer(), nullable=False),
        _timestamp('granted_at'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.ForeignKeyConstraint(['permission_id'], ['permissions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permissions'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'])
    op.create_index('ix_role_permissions_permission_id', 'role_permissions', ['permission_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        _timestamp('created_at'),
        _timestamp('last_used_at'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])
    op.create_index('ix_session_tokens_org_id', 'session_tokens', ['org_id'])

    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        _timestamp('occurred_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_org_id', 'security_events', ['org_id'])
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_occurred_at', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])
    op.create_index('ix_security_events_org_occurred', 'security_events', ['org_id', 'occurred_at'])

    # ============================================================================
    # sales: read model (written by the sales module only)
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('romaneio_number', sa.Integer(), nullable=True),
        sa.Column('lead_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=128), nullable=True),
        sa.Column('payment_category', sa.String(length=32), nullable=True),
        sa.Column('delivery_type', sa.String(length=16), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'romaneio_number', name='uq_sales_org_romaneio'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_org_id', 'sales', ['org_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_delivery_type', 'sales', ['delivery_type'])
    op.create_index('ix_sales_org_delivery_type', 'sales', ['org_id', 'delivery_type'])
    op.create_index('ix_sales_org_status_created', 'sales', ['org_id', 'status', 'created_at'])

    # ============================================================================
    # Closings
    # ============================================================================
    # WHY snapshot totals: a closing is an audit record; the four category
    # subtotals must always add up to the frozen total.
    op.create_table(
        'delivery_closings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('closing_number', sa.Integer(), nullable=False),
        sa.Column('closing_type', sa.String(length=16), nullable=False),
        sa.Column('closing_date', sa.Date(), nullable=False),
        sa.Column('total_sales', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_card_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_pix_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_other_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        sa.Column('confirmed_by_auxiliar', sa.Integer(), nullable=True),
        sa.Column('confirmed_at_auxiliar', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by_admin', sa.Integer(), nullable=True),
        sa.Column('confirmed_at_admin', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['confirmed_by_auxiliar'], ['users.id'], ),
        sa.ForeignKeyConstraint(['confirmed_by_admin'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'closing_type', 'closing_number',
                            name='uq_delivery_closings_org_type_number'),
        sa.CheckConstraint(
            'total_amount_cents = total_card_cents + total_pix_cents + total_cash_cents + total_other_cents',
            name='ck_delivery_closings_totals'),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed_auxiliar', 'confirmed_final')",
            name='ck_delivery_closings_status'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_delivery_closings_org_id', 'delivery_closings', ['org_id'])
    op.create_index('ix_delivery_closings_closing_type', 'delivery_closings', ['closing_type'])
    op.create_index('ix_delivery_closings_status', 'delivery_closings', ['status'])
    op.create_index('ix_delivery_closings_org_type_created', 'delivery_closings',
                    ['org_id', 'closing_type', 'created_at'])

    op.create_table(
        'delivery_closing_sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('closing_id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('closing_type', sa.String(length=16), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=32), nullable=True),
        sa.Column('lead_name', sa.String(length=255), nullable=True),
        sa.Column('payment_method', sa.String(length=128), nullable=True),
        sa.Column('payment_category', sa.String(length=32), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['closing_id'], ['delivery_closings.id'], ),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'closing_type', 'sale_id',
                            name='uq_delivery_closing_sales_org_type_sale'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_delivery_closing_sales_closing_id', 'delivery_closing_sales', ['closing_id'])
    op.create_index('ix_delivery_closing_sales_org_id', 'delivery_closing_sales', ['org_id'])
    op.create_index('ix_delivery_closing_sales_sale_id', 'delivery_closing_sales', ['sale_id'])

    op.create_table(
        'closing_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('closing_type', sa.String(length=16), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'closing_type', name='uq_closing_sequences_org_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_closing_sequences_org_id', 'closing_sequences', ['org_id'])

    # ============================================================================
    # cash_payment_confirmations: append-only ledger
    # ============================================================================
    # WHY constraints: a stage can't repeat (unique sale/type) and can't be
    # skipped (previous_type must exist for the same sale), even when two
    # requests race.
    op.create_table(
        'cash_payment_confirmations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('confirmation_type', sa.String(length=32), nullable=False),
        sa.Column('previous_type', sa.String(length=32), nullable=True),
        sa.Column('confirmed_by', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['confirmed_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(
            ['sale_id', 'previous_type'],
            ['cash_payment_confirmations.sale_id', 'cash_payment_confirmations.confirmation_type'],
            name='fk_cash_confirmations_previous_stage'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'confirmation_type', name='uq_cash_confirmations_sale_type'),
        sa.CheckConstraint(
            "(confirmation_type = 'receipt' AND previous_type IS NULL)"
            " OR (confirmation_type = 'handover' AND previous_type = 'receipt')"
            " OR (confirmation_type = 'final_verification' AND previous_type = 'handover')",
            name='ck_cash_confirmations_stage_order'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_payment_confirmations_org_id', 'cash_payment_confirmations', ['org_id'])
    op.create_index('ix_cash_payment_confirmations_sale_id', 'cash_payment_confirmations', ['sale_id'])
    op.create_index('ix_cash_payment_confirmations_confirmed_by', 'cash_payment_confirmations', ['confirmed_by'])
    op.create_index('ix_cash_confirmations_org_created', 'cash_payment_confirmations', ['org_id', 'created_at'])

    # ============================================================================
    # approval_allowlist_entries
    # ============================================================================
    op.create_table(
        'approval_allowlist_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('policy', sa.String(length=32), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('closing_type', sa.String(length=16), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('granted_by_user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['granted_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'policy', 'role', 'closing_type', 'email',
                            name='uq_approval_allowlist_entry'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_approval_allowlist_entries_org_id', 'approval_allowlist_entries', ['org_id'])
    op.create_index('ix_approval_allowlist_org_policy', 'approval_allowlist_entries', ['org_id', 'policy'])

    # ============================================================================
    # audit_events
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('closing_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        _timestamp('occurred_at'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['closing_id'], ['delivery_closings.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_org_id', 'audit_events', ['org_id'])
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_actor_user_id', 'audit_events', ['actor_user_id'])
    op.create_index('ix_audit_events_closing_id', 'audit_events', ['closing_id'])
    op.create_index('ix_audit_events_sale_id', 'audit_events', ['sale_id'])
    op.create_index('ix_audit_events_org_occurred', 'audit_events', ['org_id', 'occurred_at'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('approval_allowlist_entries')
    op.drop_table('cash_payment_confirmations')
    op.drop_table('closing_sequences')
    op.drop_table('delivery_closing_sales')
    op.drop_table('delivery_closings')
    op.drop_table('sales')
    op.drop_table('security_events')
    op.drop_table('session_tokens')
    op.drop_table('role_permissions')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_table('users')
    op.drop_table('permissions')
    op.drop_table('organizations')
