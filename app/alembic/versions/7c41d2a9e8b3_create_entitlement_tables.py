"""create_entitlement_tables

Revision ID: 7c41d2a9e8b3
Revises:
Create Date: 2026-10-18 09:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '7c41d2a9e8b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('cms_content',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content_type', sa.Enum('movie', 'tv_series', name='content_type'), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=True, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('season_prices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('content_id', sa.Uuid(), nullable=False),
        sa.Column('season_number', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['content_id'], ['cms_content.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('content_id', 'season_number', name='uq_season_prices_content_season')
    )
    op.create_index('ix_season_prices_content_id', 'season_prices', ['content_id'])

    op.create_table('purchases',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('content_id', sa.Uuid(), nullable=False),
        sa.Column('season_number', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.String(length=96), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.Enum('pending', 'completed', 'failed', 'refunded', name='purchase_status'), nullable=False),
        sa.Column('payment_method', sa.String(), nullable=False),
        sa.Column('gateway_payment_id', sa.String(), nullable=True),
        sa.Column('purchased_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['content_id'], ['cms_content.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_purchases_order_id', 'purchases', ['order_id'], unique=True)
    op.create_index('ix_purchases_user_status', 'purchases', ['user_id', 'status'])
    # Entitlement invariant: one non-failed purchase per (user, content, season)
    op.execute(
        "CREATE UNIQUE INDEX uq_purchases_live_tuple ON purchases "
        "(user_id, content_id, coalesce(season_number, -1)) "
        "WHERE status <> 'failed'"
    )

    op.create_table('audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('target_type', sa.String(), nullable=True),
        sa.Column('target_id', sa.String(), nullable=True),
        sa.Column('metadata_json', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.execute("DROP INDEX IF EXISTS uq_purchases_live_tuple")
    op.drop_index('ix_purchases_user_status', table_name='purchases')
    op.drop_index('ix_purchases_order_id', table_name='purchases')
    op.drop_table('purchases')
    op.drop_index('ix_season_prices_content_id', table_name='season_prices')
    op.drop_table('season_prices')
    op.drop_table('cms_content')
    sa.Enum(name='purchase_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='content_type').drop(op.get_bind(), checkfirst=True)
