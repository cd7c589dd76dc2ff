"""Create wallet, points, task, fee and claim tables

Revision ID: 3f1c2a9b7e10
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3f1c2a9b7e10'
down_revision = None
branch_labels = None
depends_on = None

claim_status = sa.Enum(
    'pending', 'submitted', 'disbursed', 'finalized', 'failed', 'reconcile',
    name='claimstatusenum'
)


def upgrade():
    # --- 1. 用户与积分 ---
    op.create_table(
        'wallet_users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('wallet_address', sa.String(44), nullable=False, unique=True),
        sa.Column('referral_code', sa.String(36), nullable=False, unique=True),
        sa.Column('referrer_id', sa.String(36), sa.ForeignKey('wallet_users.id'), nullable=True),
        sa.Column('registered_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'user_points_accounts',
        sa.Column('wallet_user_id', sa.String(36), sa.ForeignKey('wallet_users.id'), primary_key=True),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('has_claimed', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        'points_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_user_id', sa.String(36), sa.ForeignKey('wallet_users.id'), nullable=False),
        sa.Column('change_type', sa.String(60), nullable=False),
        sa.Column('change_amount', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('description', sa.String(255), nullable=True),
    )

    # --- 2. 任务 ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
    )
    op.create_table(
        'completed_tasks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_user_id', sa.String(36), sa.ForeignKey('wallet_users.id'), nullable=False),
        sa.Column('task_id', sa.String(36), sa.ForeignKey('tasks.id'), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('wallet_user_id', 'task_id', name='uix_wallet_task'),
    )

    # --- 3. 手续费 / 空投记录 / 领取意图 ---
    op.create_table(
        'fee_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tx_signature', sa.String(100), nullable=False, unique=True),
        sa.Column('wallet_address', sa.String(44), nullable=False),
        sa.Column('used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reserved_at', sa.DateTime(), nullable=True),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_fee_payments_wallet_address', 'fee_payments', ['wallet_address'])

    op.create_table(
        'airdrop_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(44), nullable=False),
        sa.Column('amount_sent', sa.BigInteger(), nullable=False),
        sa.Column('tx_signature', sa.String(100), nullable=False, unique=True),
        sa.Column('fee_signature', sa.String(100), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_airdrop_log_wallet_address', 'airdrop_log', ['wallet_address'])

    op.create_table(
        'claim_intents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('wallet_address', sa.String(44), nullable=False),
        sa.Column('fee_signature', sa.String(100), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('status', claim_status, nullable=False),
        sa.Column('transfer_signature', sa.String(100), nullable=True, unique=True),
        sa.Column('blockhash', sa.String(64), nullable=True),
        sa.Column('last_valid_block_height', sa.BigInteger(), nullable=True),
        sa.Column('raw_transaction', sa.LargeBinary(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_claim_intents_wallet_address', 'claim_intents', ['wallet_address'])
    op.create_index('ix_claim_intents_fee_signature', 'claim_intents', ['fee_signature'])
    op.create_index('ix_claim_intents_status', 'claim_intents', ['status'])


def downgrade():
    op.drop_index('ix_claim_intents_status', table_name='claim_intents')
    op.drop_index('ix_claim_intents_fee_signature', table_name='claim_intents')
    op.drop_index('ix_claim_intents_wallet_address', table_name='claim_intents')
    op.drop_table('claim_intents')
    claim_status.drop(op.get_bind(), checkfirst=True)

    op.drop_index('ix_airdrop_log_wallet_address', table_name='airdrop_log')
    op.drop_table('airdrop_log')
    op.drop_index('ix_fee_payments_wallet_address', table_name='fee_payments')
    op.drop_table('fee_payments')

    op.drop_table('completed_tasks')
    op.drop_table('tasks')
    op.drop_table('points_history')
    op.drop_table('user_points_accounts')
    op.drop_table('wallet_users')
