"""create subscription tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

SUBSCRIPTION_STATUSES = ('TRIAL', 'ACTIVE', 'EXPIRED', 'SUSPENDED', 'CANCELLED')
BILLING_CYCLES = ('MONTHLY', 'YEARLY')
# SQLAlchemy persists enum member names
AUDIT_EVENT_TYPES = (
    'SUBSCRIPTION_CREATED',
    'SUBSCRIPTION_ACTIVATED',
    'SUBSCRIPTION_CANCELLED',
    'CANCELLATION_SCHEDULED',
    'CANCELLATION_REVOKED',
    'SUBSCRIPTION_SUSPENDED',
    'SUBSCRIPTION_REACTIVATED',
    'SUBSCRIPTION_EXPIRED',
    'BILLING_CYCLE_CHANGED',
    'MODULES_ADDED',
    'MODULES_REMOVED',
)


def upgrade() -> None:
    subscription_status = postgresql.ENUM(*SUBSCRIPTION_STATUSES, name='subscription_status', create_type=False)
    billing_cycle = postgresql.ENUM(*BILLING_CYCLES, name='billing_cycle', create_type=False)
    audit_event_type = postgresql.ENUM(*AUDIT_EVENT_TYPES, name='audit_event_type', create_type=False)
    subscription_status.create(op.get_bind(), checkfirst=True)
    billing_cycle.create(op.get_bind(), checkfirst=True)
    audit_event_type.create(op.get_bind(), checkfirst=True)

    # Module catalog
    op.create_table(
        'modules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_core', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('monthly_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('yearly_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('dependencies', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_modules_code', 'modules', ['code'], unique=True)

    # Subscriptions: one per cabinet within an organization
    op.create_table(
        'subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('cabinet_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', subscription_status, nullable=False, server_default='TRIAL'),
        sa.Column('billing_cycle', billing_cycle, nullable=False, server_default='MONTHLY'),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(10), nullable=False, server_default='USD'),
        sa.Column('trial_starts_at', sa.DateTime(), nullable=True),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('active_at', sa.DateTime(), nullable=True),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('renews_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('last_payment_intent_id', sa.String(255), nullable=True),
        sa.Column('last_payment_at', sa.DateTime(), nullable=True),
        sa.Column('next_payment_at', sa.DateTime(), nullable=True),
        sa.Column('in_grace_period', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('grace_period_ends_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'cabinet_id', name='uq_subscriptions_org_cabinet'),
    )
    op.create_index('ix_subscriptions_organization_id', 'subscriptions', ['organization_id'])
    op.create_index('ix_subscriptions_cabinet_id', 'subscriptions', ['cabinet_id'])
    op.create_index('ix_subscriptions_stripe_subscription_id', 'subscriptions', ['stripe_subscription_id'])
    op.create_index('ix_subscriptions_org_status', 'subscriptions', ['organization_id', 'status'])
    # Batch job lookups
    op.create_index('ix_subscriptions_trial_ends_at', 'subscriptions', ['trial_ends_at'])
    op.create_index('ix_subscriptions_grace_period_ends_at', 'subscriptions', ['grace_period_ends_at'])

    op.create_table(
        'subscription_modules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('module_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('module_code', sa.String(50), nullable=False),
        sa.Column('module_name', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_core', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('billing_cycle', billing_cycle, nullable=False, server_default='MONTHLY'),
        sa.Column('currency', sa.String(10), nullable=False, server_default='USD'),
        sa.Column('activated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.Column('deactivation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['module_id'], ['modules.id'], ),
        sa.UniqueConstraint('subscription_id', 'module_id', name='uq_subscription_modules_subscription_module'),
    )
    op.create_index('ix_subscription_modules_organization_id', 'subscription_modules', ['organization_id'])
    op.create_index('ix_subscription_modules_subscription_id', 'subscription_modules', ['subscription_id'])
    op.create_index('ix_subscription_modules_module_id', 'subscription_modules', ['module_id'])
    op.create_index('ix_subscription_modules_module_code', 'subscription_modules', ['module_code'])

    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('event_type', audit_event_type, nullable=False),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_organization_id', 'audit_logs', ['organization_id'])
    op.create_index('ix_audit_logs_event_type', 'audit_logs', ['event_type'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('subscription_modules')
    op.drop_table('subscriptions')
    op.drop_table('modules')
    op.execute('DROP TYPE IF EXISTS audit_event_type')
    op.execute('DROP TYPE IF EXISTS billing_cycle')
    op.execute('DROP TYPE IF EXISTS subscription_status')
