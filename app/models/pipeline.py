"""
Pipeline models — a pipeline owns ordered stages, each stage owns checklist items.

The stage with the lowest `order_index` is the pipeline's entry stage.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from app.config import DEFAULT_SLA_DAYS
from app.database import Base


class Pipeline(Base):
    __tablename__ = 'pipelines'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PipelineStage(Base):
    __tablename__ = 'pipeline_stages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    pipeline_id = Column(Integer, ForeignKey('pipelines.id'), nullable=False, index=True)
    name = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False)
    sla_days = Column(Integer, nullable=True)           # None → DEFAULT_SLA_DAYS
    exit_criteria = Column(Text, nullable=True)         # free text the user must acknowledge
    wip_limit = Column(Integer, nullable=True)          # max active entries, None = unlimited
    auto_appointment = Column(Boolean, nullable=False, default=False)
    appointment_minutes = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint('pipeline_id', 'order_index', name='uq_stage_pipeline_order'),
    )

    @property
    def effective_sla_days(self) -> int:
        """Configured SLA, falling back to the default for unset/non-positive values."""
        if self.sla_days and self.sla_days > 0:
            return self.sla_days
        return DEFAULT_SLA_DAYS

    def to_dict(self):
        return {
            'id': self.id,
            'pipeline_id': self.pipeline_id,
            'name': self.name,
            'order_index': self.order_index,
            'sla_days': self.effective_sla_days,
            'exit_criteria': self.exit_criteria or '',
            'wip_limit': self.wip_limit,
        }


class ChecklistItem(Base):
    __tablename__ = 'checklist_items'

    id = Column(Integer, primary_key=True, autoincrement=True)
    stage_id = Column(Integer, ForeignKey('pipeline_stages.id'), nullable=False, index=True)
    title = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    required = Column(Boolean, nullable=False, default=False)
