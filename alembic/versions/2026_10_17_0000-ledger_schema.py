"""ledger schema

Revision ID: 2026_10_17_0000
Revises:
Create Date: 2026-10-17 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create accounts, ledger, promotions and view records."""

    # ========================================================================
    # accounts
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('is_vip', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('vip_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('referral_code', sa.String(16), nullable=False),
        sa.Column('referred_by', UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('balance >= 0', name='ck_balance_non_negative'),
        sa.CheckConstraint("status IN ('active', 'closed')", name='ck_account_status'),
        sa.UniqueConstraint('referral_code', name='uq_accounts_referral_code'),
    )
    op.create_index('idx_accounts_status', 'accounts', ['status'])

    # ========================================================================
    # ledger_transactions (append-only)
    # ========================================================================
    op.create_table(
        'ledger_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('transaction_type', sa.String(32), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('reference_id', UUID(as_uuid=True), nullable=True),
        sa.Column('balance_before', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('balance_after = balance_before + amount', name='ck_ledger_balance_arithmetic'),
        sa.CheckConstraint('balance_after >= 0', name='ck_ledger_balance_after_non_negative'),
        sa.CheckConstraint(
            "transaction_type IN ('signup_bonus', 'video_promotion', 'video_watch', "
            "'referral_bonus', 'vip_purchase', 'purchase', 'refund', 'admin_adjustment')",
            name='transaction_type',
        ),
    )
    op.create_index('ix_ledger_transactions_account_id', 'ledger_transactions', ['account_id'])
    op.create_index('idx_ledger_account_created', 'ledger_transactions', ['account_id', 'created_at'])
    op.create_index(
        'idx_ledger_reference_id', 'ledger_transactions', ['reference_id'],
        postgresql_where=sa.text('reference_id IS NOT NULL'),
    )

    # ========================================================================
    # promotions
    # ========================================================================
    op.create_table(
        'promotions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_account_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('target_id', sa.String(32), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=False),
        sa.Column('coin_cost', sa.BigInteger(), nullable=False),
        sa.Column('coin_reward_per_view', sa.Integer(), nullable=False),
        sa.Column('target_views', sa.Integer(), nullable=False),
        sa.Column('views_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('hold_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_amount', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('coin_cost > 0', name='ck_promotion_cost_positive'),
        sa.CheckConstraint('coin_reward_per_view > 0', name='ck_promotion_reward_positive'),
        sa.CheckConstraint('duration_seconds >= 10 AND duration_seconds <= 600', name='ck_promotion_duration_bounds'),
        sa.CheckConstraint('target_views >= 1 AND target_views <= 1000', name='ck_promotion_target_bounds'),
        sa.CheckConstraint('views_count >= 0', name='ck_promotion_views_non_negative'),
        sa.CheckConstraint('views_count <= target_views', name='ck_promotion_views_within_target'),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')", name='promotion_status'
        ),
    )
    op.create_index('ix_promotions_owner_account_id', 'promotions', ['owner_account_id'])
    op.create_index('idx_promotions_status_created', 'promotions', ['status', 'created_at'])
    op.create_index('idx_promotions_hold_expires_at', 'promotions', ['hold_expires_at'])

    # ========================================================================
    # view_records
    # ========================================================================
    op.create_table(
        'view_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('promotion_id', UUID(as_uuid=True), sa.ForeignKey('promotions.id'), nullable=False),
        sa.Column('viewer_account_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('watched_duration_seconds', sa.Integer(), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=False),
        sa.Column('coins_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # One view per viewer per promotion, enforced by the database
        sa.UniqueConstraint('promotion_id', 'viewer_account_id', name='uq_view_promotion_viewer'),
        sa.CheckConstraint('watched_duration_seconds >= 0', name='ck_view_watched_non_negative'),
        sa.CheckConstraint('coins_earned >= 0', name='ck_view_coins_non_negative'),
        sa.CheckConstraint('completed OR coins_earned = 0', name='ck_view_incomplete_earns_nothing'),
    )
    op.create_index('ix_view_records_viewer_account_id', 'view_records', ['viewer_account_id'])

    # ========================================================================
    # Ledger rows are never updated or deleted
    # ========================================================================
    op.execute("""
        CREATE OR REPLACE FUNCTION ledger_transactions_append_only()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'ledger_transactions is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_ledger_transactions_append_only
        BEFORE UPDATE OR DELETE ON ledger_transactions
        FOR EACH ROW EXECUTE FUNCTION ledger_transactions_append_only();
    """)


def downgrade() -> None:
    """Drop everything created above."""
    op.execute("DROP TRIGGER IF EXISTS trg_ledger_transactions_append_only ON ledger_transactions")
    op.execute("DROP FUNCTION IF EXISTS ledger_transactions_append_only()")
    op.drop_table('view_records')
    op.drop_table('promotions')
    op.drop_table('ledger_transactions')
    op.drop_table('accounts')
