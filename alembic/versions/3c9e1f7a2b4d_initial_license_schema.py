"""Initial license server schema

Revision ID: 3c9e1f7a2b4d
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c9e1f7a2b4d'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

license_status = sa.Enum('ACTIVE', 'EXPIRED', 'REVOKED', 'SUSPENDED', name='licensestatus')
webhook_status = sa.Enum('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'RETRYING', name='webhookstatus')
email_status = sa.Enum('PENDING', 'SENDING', 'SENT', 'RETRYING', 'FAILED', name='emailstatus')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('marketing_consent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'licenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('license_key', sa.String(length=19), nullable=False),
        sa.Column('status', license_status, nullable=False, server_default='ACTIVE'),
        sa.Column('issued_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_activations', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('current_activations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('max_activations >= 1', name='ck_licenses_max_activations_positive'),
        sa.CheckConstraint(
            'current_activations >= 0 AND current_activations <= max_activations',
            name='ck_licenses_activation_bounds',
        ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_licenses_id'), 'licenses', ['id'], unique=False)
    op.create_index(op.f('ix_licenses_user_id'), 'licenses', ['user_id'], unique=False)
    op.create_index(op.f('ix_licenses_license_key'), 'licenses', ['license_key'], unique=True)
    op.create_index(op.f('ix_licenses_status'), 'licenses', ['status'], unique=False)
    op.create_index(op.f('ix_licenses_expires_at'), 'licenses', ['expires_at'], unique=False)

    op.create_table(
        'license_activations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('license_id', sa.Integer(), nullable=False),
        sa.Column('device_fingerprint', sa.String(length=255), nullable=False),
        sa.Column('device_name', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('license_id', 'device_fingerprint', name='uq_license_activations_license_device'),
    )
    op.create_index(op.f('ix_license_activations_id'), 'license_activations', ['id'], unique=False)
    op.create_index(op.f('ix_license_activations_license_id'), 'license_activations', ['license_id'], unique=False)

    op.create_table(
        'license_validations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('license_id', sa.Integer(), nullable=True),
        sa.Column('license_key', sa.String(length=255), nullable=True),
        sa.Column('is_valid', sa.Boolean(), nullable=False),
        sa.Column('validation_message', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('device_fingerprint', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_license_validations_id'), 'license_validations', ['id'], unique=False)
    op.create_index(op.f('ix_license_validations_license_id'), 'license_validations', ['license_id'], unique=False)
    op.create_index(op.f('ix_license_validations_created_at'), 'license_validations', ['created_at'], unique=False)

    op.create_table(
        'paddle_purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('paddle_transaction_id', sa.String(length=255), nullable=False),
        sa.Column('paddle_customer_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('license_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('email_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paddle_data', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_paddle_purchases_id'), 'paddle_purchases', ['id'], unique=False)
    op.create_index(
        op.f('ix_paddle_purchases_paddle_transaction_id'), 'paddle_purchases', ['paddle_transaction_id'], unique=True
    )
    op.create_index(
        op.f('ix_paddle_purchases_paddle_customer_id'), 'paddle_purchases', ['paddle_customer_id'], unique=False
    )
    op.create_index(op.f('ix_paddle_purchases_email'), 'paddle_purchases', ['email'], unique=False)
    op.create_index(op.f('ix_paddle_purchases_license_id'), 'paddle_purchases', ['license_id'], unique=False)
    op.create_index(op.f('ix_paddle_purchases_user_id'), 'paddle_purchases', ['user_id'], unique=False)

    op.create_table(
        'revenuecat_migrations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('revenuecat_user_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('license_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('subscription_type', sa.String(length=20), nullable=False),
        sa.Column('email_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revenuecat_data', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_revenuecat_migrations_id'), 'revenuecat_migrations', ['id'], unique=False)
    op.create_index(
        op.f('ix_revenuecat_migrations_revenuecat_user_id'), 'revenuecat_migrations', ['revenuecat_user_id'], unique=True
    )
    op.create_index(op.f('ix_revenuecat_migrations_email'), 'revenuecat_migrations', ['email'], unique=False)
    op.create_index(op.f('ix_revenuecat_migrations_license_id'), 'revenuecat_migrations', ['license_id'], unique=False)
    op.create_index(op.f('ix_revenuecat_migrations_user_id'), 'revenuecat_migrations', ['user_id'], unique=False)

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=50), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', JSONType, nullable=False),
        sa.Column('result', JSONType, nullable=True),
        sa.Column('status', webhook_status, nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'event_id', name='uq_webhook_events_source_event_id'),
    )
    op.create_index(op.f('ix_webhook_events_id'), 'webhook_events', ['id'], unique=False)
    op.create_index(op.f('ix_webhook_events_source'), 'webhook_events', ['source'], unique=False)
    op.create_index(op.f('ix_webhook_events_event_type'), 'webhook_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_webhook_events_status'), 'webhook_events', ['status'], unique=False)
    op.create_index(op.f('ix_webhook_events_created_at'), 'webhook_events', ['created_at'], unique=False)

    op.create_table(
        'email_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('to_address', sa.String(length=255), nullable=False),
        sa.Column('subject', sa.String(length=500), nullable=False),
        sa.Column('text_content', sa.Text(), nullable=False),
        sa.Column('html_content', sa.Text(), nullable=False),
        sa.Column('status', email_status, nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('message_id', sa.String(length=255), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_email_queue_id'), 'email_queue', ['id'], unique=False)
    op.create_index(op.f('ix_email_queue_to_address'), 'email_queue', ['to_address'], unique=False)
    op.create_index(op.f('ix_email_queue_status'), 'email_queue', ['status'], unique=False)
    op.create_index(op.f('ix_email_queue_next_retry_at'), 'email_queue', ['next_retry_at'], unique=False)
    op.create_index(op.f('ix_email_queue_created_at'), 'email_queue', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('email_queue')
    op.drop_table('webhook_events')
    op.drop_table('revenuecat_migrations')
    op.drop_table('paddle_purchases')
    op.drop_table('license_validations')
    op.drop_table('license_activations')
    op.drop_table('licenses')
    op.drop_table('users')
    email_status.drop(op.get_bind(), checkfirst=True)
    webhook_status.drop(op.get_bind(), checkfirst=True)
    license_status.drop(op.get_bind(), checkfirst=True)
