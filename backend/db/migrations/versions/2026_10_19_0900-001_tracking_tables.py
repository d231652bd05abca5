"""Tracking tables - sessions, location samples, trip events, reminders, notification attempts

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

routes, departures and bookings belong to the booking subsystem and are not
created here.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create tracking_sessions table
    op.create_table(
        'tracking_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('departure_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='SCHEDULED'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('passenger_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('trip_started_at', sa.DateTime(), nullable=True),
        sa.Column('arrived_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('delay_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delay_active', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('delay_reason', sa.String(), nullable=True),
        sa.Column('last_status_change_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('last_status_change_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('departure_id'),
    )

    # Create location_samples table
    op.create_table(
        'location_samples',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('session_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('lat', sa.Float(), nullable=False),
        sa.Column('lon', sa.Float(), nullable=False),
        sa.Column('speed', sa.Float(), nullable=True),
        sa.Column('heading', sa.Float(), nullable=True),
        sa.Column('accuracy', sa.Float(), nullable=True),
        sa.Column('captured_at', sa.DateTime(), nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['session_id'], ['tracking_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_location_samples_session_captured',
        'location_samples',
        ['session_id', 'captured_at'],
    )

    # Create trip_events table
    op.create_table(
        'trip_events',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('session_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('from_status', sa.String(), nullable=False),
        sa.Column('to_status', sa.String(), nullable=False),
        sa.Column('actor', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['session_id'], ['tracking_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_trip_events_session_id', 'trip_events', ['session_id'])

    # Create reminder_records table
    op.create_table(
        'reminder_records',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('departure_id', sa.String(), nullable=False),
        sa.Column('kind', sa.String(), nullable=False, server_default='automatic'),
        sa.Column('status', sa.String(), nullable=False, server_default='dispatching'),
        sa.Column('recipient_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sent_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('departure_id', name='uq_reminder_records_departure'),
    )

    # Create notification_attempts table
    op.create_table(
        'notification_attempts',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('reminder_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('departure_id', sa.String(), nullable=True),
        sa.Column('batch_id', sa.String(), nullable=False),
        sa.Column('batch_kind', sa.String(), nullable=False, server_default='reminder'),
        sa.Column('recipient', sa.String(), nullable=False),
        sa.Column('normalized_recipient', sa.String(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='PENDING'),
        sa.Column('failure_kind', sa.String(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempted_at', sa.DateTime(), nullable=True),
        sa.Column('triggered_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['reminder_id'], ['reminder_records.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notification_attempts_reminder_id', 'notification_attempts', ['reminder_id'])
    op.create_index('ix_notification_attempts_departure_id', 'notification_attempts', ['departure_id'])
    op.create_index('ix_notification_attempts_batch_id', 'notification_attempts', ['batch_id'])


def downgrade() -> None:
    op.drop_index('ix_notification_attempts_batch_id', table_name='notification_attempts')
    op.drop_index('ix_notification_attempts_departure_id', table_name='notification_attempts')
    op.drop_index('ix_notification_attempts_reminder_id', table_name='notification_attempts')
    op.drop_table('notification_attempts')
    op.drop_table('reminder_records')
    op.drop_index('ix_trip_events_session_id', table_name='trip_events')
    op.drop_table('trip_events')
    op.drop_index('ix_location_samples_session_captured', table_name='location_samples')
    op.drop_table('location_samples')
    op.drop_table('tracking_sessions')
