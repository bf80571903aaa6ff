"""Pipeline automation schema

Revision ID: 3f9b1c6d2e80
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9b1c6d2e80'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'pipelines',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'pipeline_stages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('pipeline_id', sa.Integer(), sa.ForeignKey('pipelines.id'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('sla_days', sa.Integer(), nullable=True),
        sa.Column('exit_criteria', sa.Text(), nullable=True),
        sa.Column('wip_limit', sa.Integer(), nullable=True),
        sa.Column('auto_appointment', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('appointment_minutes', sa.Integer(), nullable=True),
        sa.UniqueConstraint('pipeline_id', 'order_index', name='uq_stage_pipeline_order'),
    )
    op.create_index('ix_pipeline_stages_pipeline_id', 'pipeline_stages', ['pipeline_id'])

    op.create_table(
        'checklist_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('stage_id', sa.Integer(), sa.ForeignKey('pipeline_stages.id'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_checklist_items_stage_id', 'checklist_items', ['stage_id'])

    op.create_table(
        'leads',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text(), server_default=''),
        sa.Column('email', sa.Text(), server_default=''),
        sa.Column('phone', sa.Text(), server_default=''),
        sa.Column('status', sa.Text(), server_default=''),
        sa.Column('lead_score', sa.Integer(), nullable=True),
        sa.Column('score_classification', sa.Text(), nullable=True),
        sa.Column('responsible_user_id', sa.Text(), nullable=True),
        sa.Column('custom_fields', sa.JSON()),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'lead_pipeline_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('lead_id', sa.Integer(), sa.ForeignKey('leads.id'), nullable=False),
        sa.Column('pipeline_id', sa.Integer(), sa.ForeignKey('pipelines.id'), nullable=False),
        sa.Column('current_stage_id', sa.Integer(), sa.ForeignKey('pipeline_stages.id'), nullable=True),
        sa.Column('entered_stage_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('enrollment_status', sa.Text(), nullable=False, server_default='active'),
        sa.Column('health', sa.Text(), nullable=False, server_default='green'),
        sa.Column('checklist_state', sa.JSON()),
        sa.Column('stage_note', sa.Text(), server_default=''),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_lead_pipeline_entries_lead_id', 'lead_pipeline_entries', ['lead_id'])
    op.create_index('ix_lead_pipeline_entries_pipeline_id', 'lead_pipeline_entries', ['pipeline_id'])
    op.create_index('ix_lead_pipeline_entries_stage_status', 'lead_pipeline_entries',
                    ['current_stage_id', 'enrollment_status'])

    op.create_table(
        'stage_transitions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('entry_id', sa.Integer(), sa.ForeignKey('lead_pipeline_entries.id'), nullable=False),
        sa.Column('lead_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.Text(), nullable=False),
        sa.Column('from_pipeline_id', sa.Integer(), nullable=True),
        sa.Column('to_pipeline_id', sa.Integer(), nullable=True),
        sa.Column('from_stage_id', sa.Integer(), nullable=True),
        sa.Column('to_stage_id', sa.Integer(), nullable=True),
        sa.Column('actor', sa.Text(), server_default='user'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_stage_transitions_entry_id', 'stage_transitions', ['entry_id'])

    op.create_table(
        'automation_rules',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('trigger_type', sa.Text(), nullable=False),
        sa.Column('trigger_conditions', sa.JSON()),
        sa.Column('actions', sa.JSON()),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_automation_rules_trigger_type', 'automation_rules', ['trigger_type'])

    op.create_table(
        'automation_executions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('rule_id', sa.Text(), nullable=False),
        sa.Column('rule_name', sa.Text(), server_default=''),
        sa.Column('lead_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.Text(), nullable=False),
        sa.Column('event_context', sa.JSON()),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('steps', sa.JSON()),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_automation_executions_rule_id', 'automation_executions', ['rule_id'])
    op.create_index('ix_automation_executions_lead_id', 'automation_executions', ['lead_id'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('lead_id', sa.Integer(), sa.ForeignKey('leads.id'), nullable=False),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('title', sa.Text(), server_default=''),
        sa.Column('status', sa.Text(), server_default='scheduled'),
        sa.Column('source_rule', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_appointments_lead_id', 'appointments', ['lead_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('lead_id', sa.Integer(), nullable=True),
        sa.Column('priority', sa.Text(), nullable=False, server_default='medium'),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('message', sa.Text(), server_default=''),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_lead_id', 'notifications', ['lead_id'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('appointments')
    op.drop_table('automation_executions')
    op.drop_table('automation_rules')
    op.drop_table('stage_transitions')
    op.drop_table('lead_pipeline_entries')
    op.drop_table('leads')
    op.drop_table('checklist_items')
    op.drop_table('pipeline_stages')
    op.drop_table('pipelines')
