"""create_workflow_engine_tables

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = '3f1c9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUM_TYPES = {
    'message_channel': ('whatsapp', 'email'),
    'workflow_module': ('construction', 'appointments'),
    'workflow_entity_type': ('session', 'budget', 'project'),
    'workflow_state_type': ('initial', 'intermediate', 'final'),
    'workflow_trigger_type': ('on_enter', 'on_exit', 'time_before', 'time_after', 'recurring'),
    'workflow_action_type': ('send_whatsapp', 'send_email', 'update_field', 'create_task'),
    'scheduled_job_status': ('pending', 'processing', 'completed', 'failed', 'cancelled'),
    'workflow_execution_event_type': ('state_change', 'trigger_fired', 'action_executed', 'action_failed'),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUM_TYPES[name], name=name)


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_organizations_provider_id'), 'organizations', ['provider_id'], unique=True)

    op.create_table(
        'message_templates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('channel', _enum('message_channel'), nullable=False),
        sa.Column('subject', sa.String(), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('variables', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'name', 'channel', name='uq_message_templates_org_name'),
    )
    op.create_index('ix_message_templates_organization_id', 'message_templates', ['organization_id'], unique=False)

    op.create_table(
        'workflows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('module', _enum('workflow_module'), nullable=False),
        sa.Column('entity_type', _enum('workflow_entity_type'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'name', name='uq_workflows_org_name'),
    )
    op.create_index('ix_workflows_org_module_entity', 'workflows', ['organization_id', 'module', 'entity_type'], unique=False)
    # At most one default workflow per (organization, module, entity_type)
    op.create_index(
        'uq_workflows_single_default',
        'workflows',
        ['organization_id', 'module', 'entity_type'],
        unique=True,
        postgresql_where=sa.text('is_default'),
    )

    op.create_table(
        'workflow_states',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('state_type', _enum('workflow_state_type'), nullable=False),
        sa.Column('color', sa.String(), nullable=False),
        sa.Column('icon', sa.String(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workflow_id', 'name', name='uq_workflow_states_workflow_name'),
    )
    op.create_index('ix_workflow_states_workflow_id', 'workflow_states', ['workflow_id'], unique=False)

    op.create_table(
        'workflow_transitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('from_state_id', sa.Integer(), nullable=False),
        sa.Column('to_state_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('requires_confirmation', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['from_state_id'], ['workflow_states.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_state_id'], ['workflow_states.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workflow_id', 'from_state_id', 'to_state_id', name='uq_workflow_transitions_edge'),
    )
    op.create_index('ix_workflow_transitions_workflow_id', 'workflow_transitions', ['workflow_id'], unique=False)

    op.create_table(
        'workflow_triggers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('state_id', sa.Integer(), nullable=True),
        sa.Column('transition_id', sa.Integer(), nullable=True),
        sa.Column('trigger_type', _enum('workflow_trigger_type'), nullable=False),
        sa.Column('time_offset_minutes', sa.Integer(), nullable=True),
        sa.Column('time_field', sa.String(), nullable=True),
        sa.Column('recurring_cron', sa.String(), nullable=True),
        sa.Column('conditions', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('state_id IS NOT NULL OR transition_id IS NOT NULL', name='ck_workflow_triggers_bound'),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['state_id'], ['workflow_states.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['transition_id'], ['workflow_transitions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workflow_triggers_workflow_id', 'workflow_triggers', ['workflow_id'], unique=False)
    op.create_index('ix_workflow_triggers_state_id', 'workflow_triggers', ['state_id'], unique=False)

    op.create_table(
        'workflow_actions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('trigger_id', sa.Integer(), nullable=False),
        sa.Column('action_type', _enum('workflow_action_type'), nullable=False),
        sa.Column('action_config', sa.JSON(), nullable=False),
        sa.Column('template_id', sa.Integer(), nullable=True),
        sa.Column('action_order', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['trigger_id'], ['workflow_triggers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['template_id'], ['message_templates.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workflow_actions_trigger_id', 'workflow_actions', ['trigger_id'], unique=False)

    op.create_table(
        'scheduled_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('trigger_id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', _enum('scheduled_job_status'), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['trigger_id'], ['workflow_triggers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    # Partial index serving the dispatcher's due-job scan
    op.create_index(
        'ix_scheduled_jobs_due',
        'scheduled_jobs',
        ['scheduled_for'],
        unique=False,
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index('ix_scheduled_jobs_entity', 'scheduled_jobs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('ix_scheduled_jobs_status', 'scheduled_jobs', ['status'], unique=False)

    op.create_table(
        'workflow_execution_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=True),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('trigger_id', sa.Integer(), nullable=True),
        sa.Column('action_id', sa.Integer(), nullable=True),
        sa.Column('event_type', _enum('workflow_execution_event_type'), nullable=False),
        sa.Column('from_state', sa.String(), nullable=True),
        sa.Column('to_state', sa.String(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['trigger_id'], ['workflow_triggers.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['action_id'], ['workflow_actions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workflow_execution_logs_entity', 'workflow_execution_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('ix_workflow_execution_logs_workflow_id', 'workflow_execution_logs', ['workflow_id'], unique=False)
    op.create_index('ix_workflow_execution_logs_created_at', 'workflow_execution_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('workflow_execution_logs')
    op.drop_table('scheduled_jobs')
    op.drop_table('workflow_actions')
    op.drop_table('workflow_triggers')
    op.drop_table('workflow_transitions')
    op.drop_table('workflow_states')
    op.drop_table('workflows')
    op.drop_table('message_templates')
    op.drop_index(op.f('ix_organizations_provider_id'), table_name='organizations')
    op.drop_table('organizations')

    bind = op.get_bind()
    for name in ENUM_TYPES:
        sa.Enum(name=name).drop(bind, checkfirst=True)
