"""Create core tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

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


def upgrade() -> None:
    # Skip tables that init_db() may already have created
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'instagram_accounts' not in existing_tables:
        op.create_table(
            'instagram_accounts',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('facebook_user_id', sa.String(length=64), nullable=False),
            sa.Column('facebook_page_id', sa.String(length=64), nullable=False),
            sa.Column('facebook_page_name', sa.String(length=255), nullable=True),
            sa.Column('instagram_user_id', sa.String(length=64), nullable=False),
            sa.Column('instagram_username', sa.String(length=255), nullable=True),
            sa.Column('access_token', sa.Text(), nullable=False),
            sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_instagram_accounts_id', 'instagram_accounts', ['id'])
        op.create_index('ix_instagram_accounts_facebook_user_id', 'instagram_accounts', ['facebook_user_id'])
        op.create_index('ix_instagram_accounts_facebook_page_id', 'instagram_accounts', ['facebook_page_id'], unique=True)
        op.create_index('ix_instagram_accounts_instagram_user_id', 'instagram_accounts', ['instagram_user_id'])
        op.create_index('ix_instagram_accounts_token_expires_at', 'instagram_accounts', ['token_expires_at'])

    if 'billing_accounts' not in existing_tables:
        op.create_table(
            'billing_accounts',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('login_account', sa.String(length=255), nullable=False),
            sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
            sa.Column('subscription_id', sa.String(length=255), nullable=True),
            sa.Column('subscription_status', sa.String(length=50), nullable=True),
            sa.Column('subscription_plan', sa.String(length=50), nullable=True),
            sa.Column('subscription_current_period_end', sa.DateTime(timezone=True), nullable=True),
            sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True),
            sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_billing_accounts_id', 'billing_accounts', ['id'])
        op.create_index('ix_billing_accounts_login_account', 'billing_accounts', ['login_account'], unique=True)
        op.create_index('ix_billing_accounts_stripe_customer_id', 'billing_accounts', ['stripe_customer_id'], unique=True)

    if 'licenses' not in existing_tables:
        op.create_table(
            'licenses',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('license_key', sa.String(length=32), nullable=False),
            sa.Column('domain', sa.String(length=255), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('billing_account_id', sa.Integer(), nullable=True),
            sa.Column('user_no', sa.String(length=64), nullable=True),
            sa.Column('user_name', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['billing_account_id'], ['billing_accounts.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_licenses_id', 'licenses', ['id'])
        op.create_index('ix_licenses_license_key', 'licenses', ['license_key'], unique=True)
        op.create_index('ix_licenses_billing_account_id', 'licenses', ['billing_account_id'], unique=True)

    if 'post_attempts' not in existing_tables:
        op.create_table(
            'post_attempts',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('license_id', sa.Integer(), nullable=True),
            sa.Column('facebook_page_id', sa.String(length=64), nullable=False),
            sa.Column('image_url', sa.Text(), nullable=True),
            sa.Column('caption', sa.Text(), nullable=True),
            sa.Column('wordpress_post_id', sa.String(length=64), nullable=True),
            sa.Column('status', sa.String(length=32), nullable=False),
            sa.Column('stage', sa.String(length=32), nullable=False),
            sa.Column('error_code', sa.String(length=64), nullable=True),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('quota_usage', sa.Integer(), nullable=True),
            sa.Column('quota_total', sa.Integer(), nullable=True, server_default='25'),
            sa.Column('container_id', sa.String(length=64), nullable=True),
            sa.Column('media_id', sa.String(length=64), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_post_attempts_id', 'post_attempts', ['id'])
        op.create_index('ix_post_attempts_license_id', 'post_attempts', ['license_id'])
        op.create_index('ix_post_attempts_facebook_page_id', 'post_attempts', ['facebook_page_id'])
        op.create_index('ix_post_attempts_status_created', 'post_attempts', ['status', 'created_at'])

    if 'post_history' not in existing_tables:
        op.create_table(
            'post_history',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('license_id', sa.Integer(), nullable=True),
            sa.Column('facebook_page_id', sa.String(length=64), nullable=False),
            sa.Column('instagram_media_id', sa.String(length=64), nullable=False),
            sa.Column('wordpress_post_id', sa.String(length=64), nullable=True),
            sa.Column('caption', sa.Text(), nullable=True),
            sa.Column('image_url', sa.Text(), nullable=True),
            sa.Column('permalink', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('instagram_media_id', name='uq_post_history_instagram_media_id')
        )
        op.create_index('ix_post_history_id', 'post_history', ['id'])
        op.create_index('ix_post_history_license_id', 'post_history', ['license_id'])
        op.create_index('ix_post_history_facebook_page_id', 'post_history', ['facebook_page_id'])


def downgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    for table in ('post_history', 'post_attempts', 'licenses', 'billing_accounts', 'instagram_accounts'):
        if table in existing_tables:
            op.drop_table(table)
