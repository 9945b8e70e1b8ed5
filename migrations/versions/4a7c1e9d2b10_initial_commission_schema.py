"""initial commission schema

Revision ID: 4a7c1e9d2b10
Revises:
Create Date: 2026-10-18 09:12:31.402118

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4a7c1e9d2b10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def _stat_table(name, constraint):
    op.create_table(
        name,
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('total', sa.Numeric(18, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('account_id', 'period_start', name=constraint),
    )
    op.create_index(f'ix_{name}_account_id', name, ['account_id'])
    op.create_index(f'ix_{name}_period_start', name, ['period_start'])


def upgrade():
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('balance', sa.Numeric(18, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('direct_income', sa.Numeric(18, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('passive_income', sa.Numeric(18, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('referral_code', sa.String(length=20), nullable=False, unique=True),
        sa.Column('referrer_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('plan', sa.String(length=20), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_accounts_role', 'accounts', ['role'])
    op.create_index('ix_accounts_referrer_id', 'accounts', ['referrer_id'])
    op.create_index('idx_account_referral_code', 'accounts', ['referral_code'])
    op.create_index('idx_account_balance', 'accounts', ['balance'])

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount > 0', name='chk_ledger_amount_positive'),
    )
    op.create_index('ix_ledger_entries_account_id', 'ledger_entries', ['account_id'])
    op.create_index('ix_ledger_entries_created_at', 'ledger_entries', ['created_at'])
    op.create_index('idx_ledger_account_created', 'ledger_entries', ['account_id', 'created_at'])

    op.create_table(
        'activation_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('subject_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sponsor_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('proof_reference', sa.String(length=500), nullable=False),
        sa.Column('plan', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_activation_requests_subject_id', 'activation_requests', ['subject_id'])
    op.create_index('ix_activation_requests_sponsor_id', 'activation_requests', ['sponsor_id'])
    op.create_index('ix_activation_requests_status', 'activation_requests', ['status'])
    op.create_index(
        'uq_activation_pending_subject', 'activation_requests', ['subject_id'], unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        'upgrade_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('subject_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('new_sponsor_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('referral_code', sa.String(length=20), nullable=False),
        sa.Column('previous_plan', sa.String(length=20), nullable=False),
        sa.Column('new_plan', sa.String(length=20), nullable=False),
        sa.Column('proof_reference', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('discounted', sa.Boolean(), nullable=False),
        sa.Column('discount_amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('original_price', sa.Numeric(18, 2), nullable=False),
        sa.Column('final_price', sa.Numeric(18, 2), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_upgrade_requests_subject_id', 'upgrade_requests', ['subject_id'])
    op.create_index('ix_upgrade_requests_new_sponsor_id', 'upgrade_requests', ['new_sponsor_id'])
    op.create_index('ix_upgrade_requests_status', 'upgrade_requests', ['status'])
    op.create_index(
        'uq_upgrade_open_subject', 'upgrade_requests', ['subject_id'], unique=True,
        sqlite_where=sa.text("status IN ('created', 'sponsor_approved')"),
        postgresql_where=sa.text("status IN ('created', 'sponsor_approved')"),
    )

    op.create_table(
        'discounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('amounts', sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('bank_name', sa.String(length=120), nullable=False),
        sa.Column('bank_account_number', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_withdrawals_account_id', 'withdrawals', ['account_id'])
    op.create_index('ix_withdrawals_status', 'withdrawals', ['status'])
    op.create_index(
        'uq_withdrawal_pending_account', 'withdrawals', ['account_id'], unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    _stat_table('daily_stats', 'uq_daily_stat')
    _stat_table('weekly_stats', 'uq_weekly_stat')
    _stat_table('monthly_stats', 'uq_monthly_stat')

    op.create_table(
        'job_meta',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job', sa.String(length=64), nullable=False, unique=True),
        sa.Column('last_processed_at', sa.DateTime(), nullable=False),
        *_timestamps(),
    )


def downgrade():
    op.drop_table('job_meta')
    for name in ('monthly_stats', 'weekly_stats', 'daily_stats'):
        op.drop_table(name)
    op.drop_table('withdrawals')
    op.drop_table('discounts')
    op.drop_table('upgrade_requests')
    op.drop_table('activation_requests')
    op.drop_table('ledger_entries')
    op.drop_table('accounts')
