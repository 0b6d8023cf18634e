"""Initial Axis Sync schema

Revision ID: 2026_10_01_0001
Revises:
Create Date: 2026-10-01 00:01:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create accounts, projects, tasks and the sync mapping/cache tables"""

    op.create_table('accounts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expiry', sa.DateTime(), nullable=True),
        sa.Column('dedicated_calendar_id', sa.String(255), nullable=True),
        sa.Column('auto_sync_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True)
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)

    op.create_table('projects',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('color', sa.String(20), nullable=True),
        sa.Column('color_id', sa.String(4), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('account_id', 'name', name='uq_projects_account_name')
    )
    op.create_index('ix_projects_account_id', 'projects', ['account_id'])

    op.create_table('tasks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('project', sa.String(200), nullable=True),
        sa.Column('scheduled_date', sa.DateTime(), nullable=True),
        sa.Column('scheduled_time', sa.String(5), nullable=True),
        sa.Column('scheduled_end_date', sa.DateTime(), nullable=True),
        sa.Column('deadline', sa.DateTime(), nullable=True),
        sa.Column('is_urgent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_important', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(20), nullable=False, server_default='backlog'),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('google_event_id', sa.String(255), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True)
    )
    op.create_index('ix_tasks_account_id', 'tasks', ['account_id'])
    op.create_index('ix_tasks_scheduled_date', 'tasks', ['scheduled_date'])
    op.create_index('ix_tasks_google_event_id', 'tasks', ['google_event_id'])

    op.create_table('connected_calendars',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='google'),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('color', sa.String(20), nullable=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_writable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_synced', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('webhook_channel_id', sa.String(64), nullable=True),
        sa.Column('webhook_resource_id', sa.String(255), nullable=True),
        sa.Column('webhook_expiration', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('account_id', 'external_id', name='uq_connected_calendars_account_external')
    )
    op.create_index('ix_connected_calendars_account_id', 'connected_calendars', ['account_id'])
    op.create_index('ix_connected_calendars_webhook_channel_id', 'connected_calendars', ['webhook_channel_id'])

    op.create_table('task_mappings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('task_id', sa.String(36), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('account_id', sa.String(36), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='google'),
        sa.Column('external_event_id', sa.String(255), nullable=False),
        sa.Column('external_calendar_id', sa.String(255), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(), nullable=False),
        sa.Column('sync_hash', sa.String(64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.UniqueConstraint('task_id', 'provider', name='uq_task_mappings_task_provider'),
        sa.UniqueConstraint('account_id', 'provider', 'external_event_id', name='uq_task_mappings_account_event')
    )
    op.create_index('ix_task_mappings_task_id', 'task_mappings', ['task_id'])
    op.create_index('ix_task_mappings_calendar', 'task_mappings', ['account_id', 'external_calendar_id'])

    op.create_table('calendar_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='google'),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('calendar_id', sa.String(255), nullable=False),
        sa.Column('title', sa.String(500), nullable=False, server_default='Untitled'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start', sa.DateTime(), nullable=False),
        sa.Column('end', sa.DateTime(), nullable=False),
        sa.Column('all_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('location', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('color', sa.String(20), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('account_id', 'external_id', name='uq_calendar_events_account_external')
    )
    op.create_index('ix_calendar_events_range', 'calendar_events', ['account_id', 'start', 'end'])


def downgrade() -> None:
    """Drop the Axis Sync schema"""
    op.drop_table('calendar_events')
    op.drop_table('task_mappings')
    op.drop_table('connected_calendars')
    op.drop_table('tasks')
    op.drop_table('projects')
    op.drop_table('accounts')
