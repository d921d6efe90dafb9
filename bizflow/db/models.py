from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from ..enums import (
    ActionType,
    ExecutionEventType,
    MessageChannel,
    ScheduledJobStatus,
    StateType,
    TriggerType,
    WorkflowEntityType,
    WorkflowModule,
)

Base = declarative_base()


class OrganizationModel(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    workflows = relationship(
        "WorkflowModel", back_populates="organization", passive_deletes=True
    )
    message_templates = relationship(
        "MessageTemplateModel", back_populates="organization", passive_deletes=True
    )


class MessageTemplateModel(Base):
    __tablename__ = "message_templates"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    channel = Column(
        Enum(*[channel.value for channel in MessageChannel], name="message_channel"),
        nullable=False,
    )
    subject = Column(String, nullable=True)  # email only
    body = Column(Text, nullable=False)
    # [{"name", "description"}] for the editor only, rendering never checks it
    variables = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    organization = relationship("OrganizationModel", back_populates="message_templates")

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "name", "channel", name="uq_message_templates_org_name"
        ),
        Index("ix_message_templates_organization_id", "organization_id"),
    )


class WorkflowModel(Base):
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    module = Column(
        Enum(*[module.value for module in WorkflowModule], name="workflow_module"),
        nullable=False,
    )
    entity_type = Column(
        Enum(
            *[entity_type.value for entity_type in WorkflowEntityType],
            name="workflow_entity_type",
        ),
        nullable=False,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    organization = relationship("OrganizationModel", back_populates="workflows")
    states = relationship(
        "WorkflowStateModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowStateModel.position",
    )
    transitions = relationship(
        "WorkflowTransitionModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowTransitionModel.id",
    )
    triggers = relationship(
        "WorkflowTriggerModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowTriggerModel.id",
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_workflows_org_name"),
        Index(
            "ix_workflows_org_module_entity",
            "organization_id",
            "module",
            "entity_type",
        ),
        # At most one default workflow per (organization, module, entity_type)
        Index(
            "uq_workflows_single_default",
            "organization_id",
            "module",
            "entity_type",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )


class WorkflowStateModel(Base):
    __tablename__ = "workflow_states"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(
        Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False
    )
    # Matched verbatim against the status string reported by the entity service
    name = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    state_type = Column(
        Enum(*[state_type.value for state_type in StateType], name="workflow_state_type"),
        nullable=False,
        default=StateType.INTERMEDIATE.value,
    )
    color = Column(String, nullable=False, default="#6B7280")
    icon = Column(String, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    workflow = relationship("WorkflowModel", back_populates="states")
    triggers = relationship(
        "WorkflowTriggerModel",
        back_populates="state",
        foreign_keys="WorkflowTriggerModel.state_id",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("workflow_id", "name", name="uq_workflow_states_workflow_name"),
        Index("ix_workflow_states_workflow_id", "workflow_id"),
    )


class WorkflowTransitionModel(Base):
    __tablename__ = "workflow_transitions"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(
        Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False
    )
    from_state_id = Column(
        Integer, ForeignKey("workflow_states.id", ondelete="CASCADE"), nullable=False
    )
    to_state_id = Column(
        Integer, ForeignKey("workflow_states.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    requires_confirmation = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    workflow = relationship("WorkflowModel", back_populates="transitions")
    from_state = relationship("WorkflowStateModel", foreign_keys=[from_state_id])
    to_state = relationship("WorkflowStateModel", foreign_keys=[to_state_id])

    __table_args__ = (
        UniqueConstraint(
            "workflow_id",
            "from_state_id",
            "to_state_id",
            name="uq_workflow_transitions_edge",
        ),
        Index("ix_workflow_transitions_workflow_id", "workflow_id"),
    )


class WorkflowTriggerModel(Base):
    __tablename__ = "workflow_triggers"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(
        Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False
    )
    state_id = Column(
        Integer, ForeignKey("workflow_states.id", ondelete="CASCADE"), nullable=True
    )
    transition_id = Column(
        Integer,
        ForeignKey("workflow_transitions.id", ondelete="CASCADE"),
        nullable=True,
    )
    trigger_type = Column(
        Enum(*[trigger.value for trigger in TriggerType], name="workflow_trigger_type"),
        nullable=False,
    )
    time_offset_minutes = Column(Integer, nullable=True)
    # Entity field holding the reference time, e.g. session_date
    time_field = Column(String, nullable=True)
    recurring_cron = Column(String, nullable=True)
    conditions = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    workflow = relationship("WorkflowModel", back_populates="triggers")
    state = relationship(
        "WorkflowStateModel", back_populates="triggers", foreign_keys=[state_id]
    )
    transition = relationship("WorkflowTransitionModel", foreign_keys=[transition_id])
    actions = relationship(
        "WorkflowActionModel",
        back_populates="trigger",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowActionModel.action_order",
    )

    __table_args__ = (
        CheckConstraint(
            "state_id IS NOT NULL OR transition_id IS NOT NULL",
            name="ck_workflow_triggers_bound",
        ),
        Index("ix_workflow_triggers_workflow_id", "workflow_id"),
        Index("ix_workflow_triggers_state_id", "state_id"),
    )


class WorkflowActionModel(Base):
    __tablename__ = "workflow_actions"

    id = Column(Integer, primary_key=True, index=True)
    trigger_id = Column(
        Integer, ForeignKey("workflow_triggers.id", ondelete="CASCADE"), nullable=False
    )
    action_type = Column(
        Enum(*[action.value for action in ActionType], name="workflow_action_type"),
        nullable=False,
    )
    # Decoded per action_type by bizflow.schemas.action_config
    action_config = Column(JSON, nullable=False, default=dict)
    template_id = Column(
        Integer,
        ForeignKey("message_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    action_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    trigger = relationship("WorkflowTriggerModel", back_populates="actions")
    template = relationship("MessageTemplateModel")

    __table_args__ = (Index("ix_workflow_actions_trigger_id", "trigger_id"),)


class ScheduledJobModel(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    trigger_id = Column(
        Integer, ForeignKey("workflow_triggers.id", ondelete="CASCADE"), nullable=False
    )
    # Weak reference, the entity service owns the entity
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(*[status.value for status in ScheduledJobStatus], name="scheduled_job_status"),
        nullable=False,
        default=ScheduledJobStatus.PENDING.value,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    trigger = relationship("WorkflowTriggerModel")

    __table_args__ = (
        Index(
            "ix_scheduled_jobs_due",
            "scheduled_for",
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_scheduled_jobs_entity", "entity_type", "entity_id"),
        Index("ix_scheduled_jobs_status", "status"),
    )


class WorkflowExecutionLogModel(Base):
    __tablename__ = "workflow_execution_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    workflow_id = Column(
        Integer, ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True
    )
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    trigger_id = Column(
        Integer, ForeignKey("workflow_triggers.id", ondelete="SET NULL"), nullable=True
    )
    action_id = Column(
        Integer, ForeignKey("workflow_actions.id", ondelete="SET NULL"), nullable=True
    )
    event_type = Column(
        Enum(
            *[event.value for event in ExecutionEventType],
            name="workflow_execution_event_type",
        ),
        nullable=False,
    )
    from_state = Column(String, nullable=True)
    to_state = Column(String, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    __table_args__ = (
        Index("ix_workflow_execution_logs_entity", "entity_type", "entity_id"),
        Index("ix_workflow_execution_logs_workflow_id", "workflow_id"),
        Index("ix_workflow_execution_logs_created_at", "created_at"),
    )
