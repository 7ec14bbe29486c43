"""Initial schema

Revision ID: 001
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None

TRIP_STATUSES = ('ACTIVE', 'PAUSED', 'COMPLETED', 'EXPIRED', 'INACTIVE', 'ARCHIVED')
JOB_TYPES = ('MANUAL_CHECK', 'USER_TRIGGER')
JOB_STATUSES = ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')


def upgrade():
    op.create_table(
        'trips',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(200), nullable=False, server_default=''),
        sa.Column('record_locator', sa.String(20)),
        sa.Column('status', sa.Enum(*TRIP_STATUSES, name='tripstatus'), nullable=False, server_default='ACTIVE'),
        sa.Column('archived_at', sa.DateTime()),
        sa.Column('segments', sa.JSON(), nullable=False),
        sa.Column('departure_date', sa.Date()),
        sa.Column('fare_class', sa.String(30), nullable=False, server_default='main_cabin'),
        sa.Column('pax_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('check_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('next_check_at', sa.DateTime()),
        sa.Column('check_every_minutes', sa.Integer()),
        sa.Column('check_interval', sa.Integer()),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_check_error', sa.Text()),
        sa.Column('last_check_error_at', sa.DateTime()),
        sa.Column('last_checked_at', sa.DateTime()),
        sa.Column('last_successful_check', sa.DateTime()),
        sa.Column('check_lease_token', sa.String(64)),
        sa.Column('check_lease_expires_at', sa.DateTime()),
        sa.Column('paid_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('threshold_usd', sa.Numeric(10, 2)),
        sa.Column('last_checked_price', sa.Numeric(10, 2)),
        sa.Column('last_checked_fares', sa.JSON()),
        sa.Column('price_source', sa.String(20)),
        sa.Column('lowest_seen', sa.Numeric(10, 2)),
        sa.Column('lowest_seen_at', sa.DateTime()),
        sa.Column('lowest_seen_by_fare_class', sa.JSON()),
        sa.Column('price_history', sa.JSON(), nullable=False),
        sa.Column('last_alert_at', sa.DateTime()),
        sa.Column('last_alert_price', sa.Numeric(10, 2)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_trips_id', 'trips', ['id'])
    op.create_index('ix_trips_user_email', 'trips', ['user_email'])
    op.create_index('ix_trips_due', 'trips', ['check_enabled', 'next_check_at', 'departure_date'])

    op.create_table(
        'check_jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_type', sa.Enum(*JOB_TYPES, name='jobtype'), nullable=False),
        sa.Column('status', sa.Enum(*JOB_STATUSES, name='jobstatus'), nullable=False, server_default='PENDING'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('trip_id', sa.Integer(), sa.ForeignKey('trips.id', ondelete='CASCADE')),
        sa.Column('user_email', sa.String(255)),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime()),
        sa.Column('completed_at', sa.DateTime()),
        sa.Column('failed_at', sa.DateTime()),
        sa.Column('result', sa.JSON()),
        sa.Column('error', sa.Text()),
        sa.CheckConstraint(
            "(job_type != 'MANUAL_CHECK' OR trip_id IS NOT NULL) AND "
            "(job_type != 'USER_TRIGGER' OR user_email IS NOT NULL)",
            name='ck_check_jobs_payload',
        ),
    )
    op.create_index('ix_check_jobs_id', 'check_jobs', ['id'])
    op.create_index('ix_check_jobs_user_email', 'check_jobs', ['user_email'])
    op.create_index('ix_check_jobs_queue', 'check_jobs', ['status', 'priority', 'created_at'])

    op.create_table(
        'alerts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('trip_id', sa.Integer(), sa.ForeignKey('trips.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('alert_type', sa.String(50), nullable=False, server_default='price_drop'),
        sa.Column('fare_class', sa.String(30)),
        sa.Column('paid_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('current_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('savings', sa.Numeric(10, 2), nullable=False),
        sa.Column('savings_percent', sa.Numeric(6, 2)),
        sa.Column('price_source', sa.String(20)),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('message_id', sa.String(255)),
        sa.Column('error', sa.Text()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_alerts_id', 'alerts', ['id'])
    op.create_index('ix_alerts_trip_id', 'alerts', ['trip_id'])
    op.create_index('ix_alerts_user_email', 'alerts', ['user_email'])

    op.create_table(
        'user_preferences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('default_check_interval', sa.Integer()),
        sa.Column('price_drop_alerts', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_user_preferences_id', 'user_preferences', ['id'])
    op.create_index('ix_user_preferences_user_email', 'user_preferences', ['user_email'], unique=True)


def downgrade():
    op.drop_table('user_preferences')
    op.drop_table('alerts')
    op.drop_table('check_jobs')
    op.drop_table('trips')
    sa.Enum(name='jobstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='jobtype').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='tripstatus').drop(op.get_bind(), checkfirst=True)
