"""wallet telegram bindings and link challenges

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261017_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'wallet_telegram_bindings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(length=42), nullable=False),
        sa.Column('telegram_user_id', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('wallet_address', name='uq_wallet_telegram_bindings_wallet'),
        sa.UniqueConstraint('telegram_user_id', name='uq_wallet_telegram_bindings_telegram'),
        sa.UniqueConstraint('wallet_address', 'telegram_user_id', name='uq_wallet_telegram_bindings_pair'),
    )
    op.create_index('ix_wallet_telegram_bindings_id', 'wallet_telegram_bindings', ['id'])

    op.create_table(
        'link_challenges',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nonce', sa.String(length=64), nullable=False),
        sa.Column('wallet_address', sa.String(length=42), nullable=False),
        sa.Column('telegram_user_id', sa.BigInteger(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('consumed_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('nonce', name='uq_link_challenges_nonce'),
    )
    op.create_index('ix_link_challenges_id', 'link_challenges', ['id'])
    op.create_index('ix_link_challenges_expires_at', 'link_challenges', ['expires_at'])
    op.create_index('ix_link_challenges_wallet_telegram', 'link_challenges', ['wallet_address', 'telegram_user_id'])


def downgrade() -> None:
    op.drop_index('ix_link_challenges_wallet_telegram', table_name='link_challenges')
    op.drop_index('ix_link_challenges_expires_at', table_name='link_challenges')
    op.drop_index('ix_link_challenges_id', table_name='link_challenges')
    op.drop_table('link_challenges')

    op.drop_index('ix_wallet_telegram_bindings_id', table_name='wallet_telegram_bindings')
    op.drop_table('wallet_telegram_bindings')
