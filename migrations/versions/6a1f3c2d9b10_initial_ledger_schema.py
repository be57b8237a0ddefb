"""Initial ledger schema: users, wallets, investments, transactions

Revision ID: 6a1f3c2d9b10
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '6a1f3c2d9b10'
down_revision = None
branch_labels = None
depends_on = None

position_enum = sa.Enum('LEFT', 'RIGHT', name='position')
direction_enum = sa.Enum('CREDIT', 'DEBIT', name='direction')
status_enum = sa.Enum('PENDING', 'COMPLETED', 'REJECTED', name='transactionstatus')
investment_status_enum = sa.Enum('ACTIVE', 'WITHDRAWING', 'WITHDRAWN', name='investmentstatus')


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(length=150), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('sponsor_id', sa.Integer(), nullable=True),
        sa.Column('position', position_enum, nullable=True),
        sa.Column('referral_code', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['sponsor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('referral_code'),
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('idx_user_referral_code', ['referral_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_role'), ['role'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_sponsor_id'), ['sponsor_id'], unique=False)

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Numeric(precision=18, scale=2), server_default=sa.text('0.00'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('wallets', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_wallets_user_id'), ['user_id'], unique=True)

    op.create_table(
        'investments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('package_name', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('monthly_profit_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('unlock_date', sa.DateTime(), nullable=False),
        sa.Column('status', investment_status_enum, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('investments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_investments_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_investments_user_id'), ['user_id'], unique=False)

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('direction', direction_enum, nullable=False),
        sa.Column('income_source', sa.String(length=50), nullable=False),
        sa.Column('status', status_enum, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unlock_date', sa.DateTime(), nullable=True),
        sa.Column('referral_level', sa.Integer(), nullable=True),
        sa.Column('source_user_id', sa.Integer(), nullable=True),
        sa.Column('investment_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=255), nullable=True),
        sa.Column('balance_applied', sa.Boolean(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['investment_id'], ['investments.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['source_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.create_index('idx_tx_user_source_status', ['user_id', 'income_source', 'status'], unique=False)
        batch_op.create_index('idx_tx_user_timestamp', ['user_id', 'timestamp'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_income_source'), ['income_source'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_investment_id'), ['investment_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_reference'), ['reference'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_timestamp'), ['timestamp'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_user_id'), ['user_id'], unique=False)


def downgrade():
    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_transactions_user_id'))
        batch_op.drop_index(batch_op.f('ix_transactions_timestamp'))
        batch_op.drop_index(batch_op.f('ix_transactions_reference'))
        batch_op.drop_index(batch_op.f('ix_transactions_investment_id'))
        batch_op.drop_index(batch_op.f('ix_transactions_income_source'))
        batch_op.drop_index('idx_tx_user_timestamp')
        batch_op.drop_index('idx_tx_user_source_status')
    op.drop_table('transactions')

    with op.batch_alter_table('investments', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_investments_user_id'))
        batch_op.drop_index(batch_op.f('ix_investments_status'))
    op.drop_table('investments')

    with op.batch_alter_table('wallets', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_wallets_user_id'))
    op.drop_table('wallets')

    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_users_sponsor_id'))
        batch_op.drop_index(batch_op.f('ix_users_role'))
        batch_op.drop_index('idx_user_referral_code')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in (investment_status_enum, status_enum, direction_enum, position_enum):
        enum.drop(bind, checkfirst=True)
