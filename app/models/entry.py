"""
LeadPipelineEntry — one lead's membership in one pipeline — plus the
StageTransition audit trail written on every move.

`version` is SQLAlchemy's version_id_col: every UPDATE is issued with
`WHERE version = <loaded version>`, so a concurrent writer that loaded a stale
row fails with StaleDataError instead of silently overwriting.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from app.config import ENTRY_ACTIVE, HEALTH_GREEN
from app.database import Base


class LeadPipelineEntry(Base):
    __tablename__ = 'lead_pipeline_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey('leads.id'), nullable=False, index=True)
    pipeline_id = Column(Integer, ForeignKey('pipelines.id'), nullable=False, index=True)
    current_stage_id = Column(Integer, ForeignKey('pipeline_stages.id'), nullable=True)
    entered_stage_at = Column(DateTime(timezone=True), nullable=True)
    enrollment_status = Column(Text, nullable=False, default=ENTRY_ACTIVE)
    health = Column(Text, nullable=False, default=HEALTH_GREEN)
    checklist_state = Column(JSON, default=dict)   # {"<checklist_item_id>": bool}
    stage_note = Column(Text, default='')
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {'version_id_col': version}

    def is_checked(self, item_id) -> bool:
        return bool((self.checklist_state or {}).get(str(item_id)))

    def to_dict(self):
        return {
            'id': self.id,
            'lead_id': self.lead_id,
            'pipeline_id': self.pipeline_id,
            'current_stage_id': self.current_stage_id,
            'entered_stage_at': self.entered_stage_at.isoformat() if self.entered_stage_at else None,
            'enrollment_status': self.enrollment_status,
            'health': self.health,
            'checklist_state': self.checklist_state or {},
            'stage_note': self.stage_note or '',
            'version': self.version,
        }


class StageTransition(Base):
    __tablename__ = 'stage_transitions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(Integer, ForeignKey('lead_pipeline_entries.id'), nullable=False, index=True)
    lead_id = Column(Integer, nullable=False)
    kind = Column(Text, nullable=False)            # enroll/advance/regress/jump/move/transfer/archive
    from_pipeline_id = Column(Integer, nullable=True)
    to_pipeline_id = Column(Integer, nullable=True)
    from_stage_id = Column(Integer, nullable=True)
    to_stage_id = Column(Integer, nullable=True)
    actor = Column(Text, default='user')           # user / automation:<rule name> / scheduler
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
