"""initial schema

Revision ID: 2026_10_17_0000
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, payment_transactions, flashcard_sets and flashcards."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('monthly_limit', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('generated_this_month', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subscription_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('usage_updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("tier IN ('free', 'premium')", name='ck_users_tier'),
        sa.CheckConstraint('generated_this_month >= 0', name='ck_users_generated_non_negative'),
        sa.CheckConstraint('monthly_limit > 0', name='ck_users_monthly_limit_positive'),
    )

    # ========================================================================
    # Create payment_transactions table
    # ========================================================================
    op.create_table(
        'payment_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('gateway_payment_id', sa.String(255), nullable=True),
        sa.Column('order_id', sa.String(128), nullable=True),
        sa.Column('tier_purchased', sa.String(20), nullable=False, server_default='premium'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('gateway_data', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded')",
            name='ck_payment_status',
        ),
    )

    # Indexes for payment_transactions
    op.create_index(
        'uq_payment_transactions_gateway_payment_id',
        'payment_transactions',
        ['gateway_payment_id'],
        unique=True,
        postgresql_where=sa.text('gateway_payment_id IS NOT NULL'),
    )
    op.create_index(
        'idx_payment_transactions_user_status',
        'payment_transactions',
        ['user_id', 'status', 'created_at'],
    )

    # ========================================================================
    # Create flashcard_sets table
    # ========================================================================
    op.create_table(
        'flashcard_sets',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('original_notes', sa.Text(), nullable=False),
        sa.Column('flashcard_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('flashcard_count >= 0', name='ck_flashcard_sets_count_non_negative'),
    )

    op.create_index('idx_flashcard_sets_user_created', 'flashcard_sets', ['user_id', 'created_at'])

    # ========================================================================
    # Create flashcards table
    # ========================================================================
    op.create_table(
        'flashcards',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('set_id', UUID(as_uuid=True), sa.ForeignKey('flashcard_sets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question', sa.Text(), nullable=False),
        sa.Column('answer', sa.Text(), nullable=False),
        sa.Column('difficulty', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('times_reviewed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('times_correct', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('difficulty BETWEEN 1 AND 5', name='ck_flashcards_difficulty_range'),
        sa.CheckConstraint('times_correct <= times_reviewed', name='ck_flashcards_correct_le_reviewed'),
    )

    op.create_index('ix_flashcards_set_id', 'flashcards', ['set_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('ix_flashcards_set_id', table_name='flashcards')
    op.drop_table('flashcards')
    op.drop_index('idx_flashcard_sets_user_created', table_name='flashcard_sets')
    op.drop_table('flashcard_sets')
    op.drop_index('idx_payment_transactions_user_status', table_name='payment_transactions')
    op.drop_index('uq_payment_transactions_gateway_payment_id', table_name='payment_transactions')
    op.drop_table('payment_transactions')
    op.drop_table('users')
