"""Initial donation schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the donation tables: projects, donations, donation_events,
app_settings and notifications.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'projects',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('slug', sa.String(200), nullable=False, unique=True),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('donation_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('donation_goal', sa.Integer(), nullable=True),
        sa.Column('donation_raised', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gateway_category_code', sa.String(100), nullable=True),
        sa.Column('created', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'donations',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('payment_reference', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('donor_name', sa.String(200), nullable=True),
        sa.Column('donor_email', sa.String(255), nullable=True),
        sa.Column('donor_phone', sa.String(50), nullable=True),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='MYR'),
        sa.Column('project_id', sa.String(15), sa.ForeignKey('projects.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('status', sa.Enum('pending', 'completed', 'failed', 'refunded', name='donationstatus', create_constraint=True), nullable=False, server_default='pending', index=True),
        sa.Column('gateway_bill_code', sa.String(100), nullable=True, index=True),
        sa.Column('gateway_transaction_id', sa.String(100), nullable=True),
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='fpx'),
        sa.Column('environment', sa.String(20), nullable=False, server_default='production'),
        sa.Column('payment_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_reason', sa.String(500), nullable=True),
        sa.Column('receipt_number', sa.String(50), nullable=True, unique=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('receipt_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('session_id', sa.String(100), nullable=True),
        sa.Column('ip_address', sa.String(100), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('created', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # Append-only: no updated column
    op.create_table(
        'donation_events',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('donation_id', sa.String(15), sa.ForeignKey('donations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('event_type', sa.String(50), nullable=False, index=True),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(100), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('created', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'app_settings',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('key', sa.String(100), nullable=False, unique=True),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('notification_type', sa.Enum('donation_received', 'system', name='notificationtype'), nullable=False, index=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.Enum('low', 'normal', 'high', name='notificationpriority'), nullable=False, server_default='normal'),
        sa.Column('related_type', sa.String(50), nullable=True),
        sa.Column('related_id', sa.String(15), nullable=True, index=True),
        sa.Column('notification_metadata', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('app_settings')
    op.drop_table('donation_events')
    op.drop_table('donations')
    op.drop_table('projects')
    # Drop enum types
    op.execute('DROP TYPE IF EXISTS donationstatus')
    op.execute('DROP TYPE IF EXISTS notificationtype')
    op.execute('DROP TYPE IF EXISTS notificationpriority')
