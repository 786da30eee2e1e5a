"""Create credit ledger tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('role', sa.String(length=20), nullable=False, server_default='regular'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'pricing_plans' not in existing_tables:
        op.create_table(
            'pricing_plans',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('key', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=128), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('price_in_minor_units', sa.Integer(), nullable=False),
            sa.Column('token_allowance', sa.Integer(), nullable=False),
            sa.Column('billing_cycle_days', sa.Integer(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_pricing_plans_id', 'pricing_plans', ['id'])
        op.create_index('ix_pricing_plans_key', 'pricing_plans', ['key'], unique=True)

    if 'model_configs' not in existing_tables:
        op.create_table(
            'model_configs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('key', sa.String(length=64), nullable=False),
            sa.Column('display_name', sa.String(length=128), nullable=False),
            sa.Column('input_cost_per_million', sa.Float(), nullable=True),
            sa.Column('output_cost_per_million', sa.Float(), nullable=True),
            sa.Column('free_messages_per_day', sa.Integer(), nullable=False, server_default='3'),
            sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_model_configs_id', 'model_configs', ['id'])
        op.create_index('ix_model_configs_key', 'model_configs', ['key'], unique=True)

    if 'user_subscriptions' not in existing_tables:
        op.create_table(
            'user_subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('plan_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('token_allowance', sa.Integer(), nullable=False),
            sa.Column('token_balance', sa.Integer(), nullable=False),
            sa.Column('tokens_used', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['plan_id'], ['pricing_plans.id'], ondelete='RESTRICT'),
            sa.CheckConstraint('token_balance >= 0', name='ck_user_subscriptions_balance_non_negative'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_user_subscriptions_id', 'user_subscriptions', ['id'])
        op.create_index('ix_user_subscriptions_user_id', 'user_subscriptions', ['user_id'])
        op.create_index('ix_user_subscriptions_user_status', 'user_subscriptions', ['user_id', 'status'])

    if 'token_usage' not in existing_tables:
        op.create_table(
            'token_usage',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('chat_id', sa.String(length=64), nullable=False),
            sa.Column('model_config_id', sa.Integer(), nullable=True),
            sa.Column('subscription_id', sa.Integer(), nullable=True),
            sa.Column('input_tokens', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('output_tokens', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_tokens', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('tokens_deducted', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['model_config_id'], ['model_configs.id'], ondelete='SET NULL'),
            sa.ForeignKeyConstraint(['subscription_id'], ['user_subscriptions.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_token_usage_id', 'token_usage', ['id'])
        op.create_index('ix_token_usage_user_id', 'token_usage', ['user_id'])
        op.create_index('ix_token_usage_chat_id', 'token_usage', ['chat_id'])
        op.create_index('ix_token_usage_subscription_id', 'token_usage', ['subscription_id'])
        op.create_index('ix_token_usage_created_at', 'token_usage', ['created_at'])
        op.create_index('ix_token_usage_user_chat', 'token_usage', ['user_id', 'chat_id'])
        op.create_index('ix_token_usage_user_created', 'token_usage', ['user_id', 'created_at'])

    if 'user_messages' not in existing_tables:
        op.create_table(
            'user_messages',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('chat_id', sa.String(length=64), nullable=False),
            sa.Column('model_config_id', sa.Integer(), nullable=True),
            sa.Column('billable', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('usage_recorded', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['model_config_id'], ['model_configs.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_user_messages_id', 'user_messages', ['id'])
        op.create_index('ix_user_messages_user_created', 'user_messages', ['user_id', 'created_at'])
        op.create_index('ix_user_messages_user_chat', 'user_messages', ['user_id', 'chat_id'])

    if 'payment_transactions' not in existing_tables:
        op.create_table(
            'payment_transactions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.String(length=255), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('plan_id', sa.Integer(), nullable=False),
            sa.Column('amount', sa.Integer(), nullable=False),
            sa.Column('currency', sa.String(length=8), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('payment_id', sa.String(length=255), nullable=True),
            sa.Column('notes', sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['plan_id'], ['pricing_plans.id'], ondelete='RESTRICT'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_payment_transactions_id', 'payment_transactions', ['id'])
        op.create_index('ix_payment_transactions_order_id', 'payment_transactions', ['order_id'], unique=True)
        op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'])

    if 'stripe_events' not in existing_tables:
        op.create_table(
            'stripe_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=False),
            sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_stripe_events_id', 'stripe_events', ['id'])
        op.create_index('ix_stripe_events_stripe_event_id', 'stripe_events', ['stripe_event_id'], unique=True)
        op.create_index('ix_stripe_events_event_type', 'stripe_events', ['event_type'])

    if 'system_settings' not in existing_tables:
        op.create_table(
            'system_settings',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('key', sa.String(length=100), nullable=False),
            sa.Column('value', sa.Text(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_system_settings_id', 'system_settings', ['id'])
        op.create_index('ix_system_settings_key', 'system_settings', ['key'], unique=True)


def downgrade() -> None:
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    # Reverse dependency order
    for table in (
        'system_settings', 'stripe_events', 'payment_transactions', 'user_messages',
        'token_usage', 'user_subscriptions', 'model_configs', 'pricing_plans', 'users'
    ):
        if table in existing_tables:
            op.drop_table(table)
