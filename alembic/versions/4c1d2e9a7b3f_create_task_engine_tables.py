"""create_task_engine_tables

Revision ID: 4c1d2e9a7b3f
Revises:
Create Date: 2026-10-18 09:12:41.204117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1d2e9a7b3f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tasks, executions, webhooks and message tables"""
    op.create_table(
        'user_webhooks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('webhook_type', sa.String(length=50), nullable=True),
        sa.Column('outbound_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_webhooks_user_id', 'user_webhooks', ['user_id'])

    op.create_table(
        'agency_tasks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('task_type', sa.String(length=50), nullable=False),
        sa.Column('execution_config', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('status_reason', sa.Text(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('result_summary', sa.Text(), nullable=True),
        sa.Column('assigned_to_bot', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('requires_human_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('human_reviewed_by', sa.Integer(), nullable=True),
        sa.Column('human_reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('notify_on_complete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notify_on_failure', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('source_webhook_id', sa.Integer(), nullable=True),
        sa.Column('conversation_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['source_webhook_id'], ['user_webhooks.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_agency_tasks_user_id', 'agency_tasks', ['user_id'])
    op.create_index('ix_agency_tasks_status', 'agency_tasks', ['status'])

    op.create_table(
        'task_executions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=False),
        sa.Column('triggered_by', sa.String(length=50), nullable=False, server_default='automatic'),
        sa.Column('attempt_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='running'),
        sa.Column('output', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('screenshots', sa.JSON(), nullable=True),
        sa.Column('browser_session_id', sa.String(length=128), nullable=True),
        sa.Column('debug_url', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['task_id'], ['agency_tasks.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_task_executions_task_id', 'task_executions', ['task_id'])

    op.create_table(
        'outbound_messages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('webhook_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=True),
        sa.Column('conversation_id', sa.Integer(), nullable=True),
        sa.Column('message_type', sa.String(length=50), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('recipient_identifier', sa.String(length=255), nullable=False, server_default='owner'),
        sa.Column('delivery_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['webhook_id'], ['user_webhooks.id']),
        sa.ForeignKeyConstraint(['task_id'], ['agency_tasks.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_outbound_messages_webhook_id', 'outbound_messages', ['webhook_id'])
    op.create_index('ix_outbound_messages_task_id', 'outbound_messages', ['task_id'])

    op.create_table(
        'inbound_messages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('webhook_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('sender_identifier', sa.String(length=255), nullable=True),
        sa.Column('message_type', sa.String(length=50), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['webhook_id'], ['user_webhooks.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_inbound_messages_webhook_id', 'inbound_messages', ['webhook_id'])
    op.create_index('ix_inbound_messages_user_id', 'inbound_messages', ['user_id'])


def downgrade() -> None:
    """Drop task engine tables"""
    op.drop_table('inbound_messages')
    op.drop_table('outbound_messages')
    op.drop_table('task_executions')
    op.drop_table('agency_tasks')
    op.drop_table('user_webhooks')
