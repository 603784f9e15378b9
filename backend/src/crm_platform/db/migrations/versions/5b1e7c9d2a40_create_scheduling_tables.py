"""Create scheduling and collaborator tables

Revision ID: 5b1e7c9d2a40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1e7c9d2a40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


EVENT_TYPES = ('meeting', 'call', 'task', 'reminder', 'event', 'appointment')
PRIORITIES = ('low', 'medium', 'high', 'urgent')
STATUSES = ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')
RESPONSES = ('invited', 'accepted', 'declined', 'maybe', 'attended', 'no_show')
FREQUENCIES = ('daily', 'weekly', 'monthly', 'yearly')

ENUM_NAMES = (
    'schedule_event_type_enum',
    'schedule_event_priority_enum',
    'schedule_event_status_enum',
    'schedule_recurring_frequency_enum',
    'schedule_attendee_response_enum',
)


def upgrade() -> None:
    op.create_table(
        'schedule_events',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('virtual_meeting_url', sa.String(length=500), nullable=True),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=True),
        sa.Column('all_day', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('event_type', sa.Enum(*EVENT_TYPES, name='schedule_event_type_enum'), nullable=False),
        sa.Column('priority', sa.Enum(*PRIORITIES, name='schedule_event_priority_enum'), nullable=False),
        sa.Column('status', sa.Enum(*STATUSES, name='schedule_event_status_enum'), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=True),
        sa.Column('lead_id', sa.String(length=64), nullable=True),
        sa.Column('sale_id', sa.String(length=64), nullable=True),
        sa.Column('is_private', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('recurring', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('recurring_frequency', sa.Enum(*FREQUENCIES, name='schedule_recurring_frequency_enum'), nullable=True),
        sa.Column('recurring_until', sa.DateTime(), nullable=True),
        sa.Column('recurring_count', sa.Integer(), nullable=True),
        sa.Column('parent_event_id', sa.String(length=64), sa.ForeignKey('schedule_events.id'), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('organizer_name', sa.String(length=255), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('custom_fields', sa.JSON(), nullable=False),
        sa.Column('reminder_minutes', sa.JSON(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_schedule_event_tenant', 'schedule_events', ['tenant_id'])
    op.create_index('ix_schedule_event_tenant_start', 'schedule_events', ['tenant_id', 'start_at'])
    op.create_index('ix_schedule_event_created_by', 'schedule_events', ['tenant_id', 'created_by'])
    op.create_index('ix_schedule_event_parent', 'schedule_events', ['parent_event_id'])

    op.create_table(
        'schedule_event_attendees',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('event_id', sa.String(length=64), sa.ForeignKey('schedule_events.id'), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('response_status', sa.Enum(*RESPONSES, name='schedule_attendee_response_enum'), nullable=False),
        sa.Column('is_organizer', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_schedule_attendee_event', 'schedule_event_attendees', ['event_id'])
    op.create_index('ix_schedule_attendee_user', 'schedule_event_attendees', ['tenant_id', 'user_id'])
    # One active row per participant; removed rows may repeat
    op.create_index(
        'uq_schedule_attendee_active_user',
        'schedule_event_attendees',
        ['event_id', 'user_id'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL AND user_id IS NOT NULL'),
        sqlite_where=sa.text('deleted_at IS NULL AND user_id IS NOT NULL'),
    )
    op.create_index(
        'uq_schedule_attendee_active_email',
        'schedule_event_attendees',
        ['event_id', 'email'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL AND user_id IS NULL'),
        sqlite_where=sa.text('deleted_at IS NULL AND user_id IS NULL'),
    )

    op.create_table(
        'reward_ledger_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('coins', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_reward_ledger_tenant_user', 'reward_ledger_entries', ['tenant_id', 'user_id'])

    op.create_table(
        'audit_log_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_log_tenant_entity', 'audit_log_entries', ['tenant_id', 'entity_type', 'entity_id'])


def downgrade() -> None:
    op.drop_index('ix_audit_log_tenant_entity', table_name='audit_log_entries')
    op.drop_table('audit_log_entries')
    op.drop_index('ix_reward_ledger_tenant_user', table_name='reward_ledger_entries')
    op.drop_table('reward_ledger_entries')

    op.drop_index('uq_schedule_attendee_active_email', table_name='schedule_event_attendees')
    op.drop_index('uq_schedule_attendee_active_user', table_name='schedule_event_attendees')
    op.drop_index('ix_schedule_attendee_user', table_name='schedule_event_attendees')
    op.drop_index('ix_schedule_attendee_event', table_name='schedule_event_attendees')
    op.drop_table('schedule_event_attendees')

    op.drop_index('ix_schedule_event_parent', table_name='schedule_events')
    op.drop_index('ix_schedule_event_created_by', table_name='schedule_events')
    op.drop_index('ix_schedule_event_tenant_start', table_name='schedule_events')
    op.drop_index('ix_schedule_event_tenant', table_name='schedule_events')
    op.drop_table('schedule_events')

    bind = op.get_bind()
    for name in ENUM_NAMES:
        sa.Enum(name=name).drop(bind, checkfirst=True)
