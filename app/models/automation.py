"""
Automation models — declarative rules and the execution ledger.

AutomationRule.trigger_conditions is a map of context key → expected value
or {"operator": ..., "value": ...}. AutomationRule.actions is an ordered list
of {"type": ..., "parameters": {...}}.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from app.database import Base


class AutomationRule(Base):
    __tablename__ = 'automation_rules'

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    trigger_type = Column(Text, nullable=False, index=True)
    trigger_conditions = Column(JSON, default=dict)
    actions = Column(JSON, default=list)
    enabled = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0)   # insertion order
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'trigger': {
                'type': self.trigger_type,
                'conditions': self.trigger_conditions or {},
            },
            'actions': self.actions or [],
            'enabled': self.enabled,
            'priority': self.priority,
        }


class AutomationExecution(Base):
    __tablename__ = 'automation_executions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    rule_id = Column(Text, nullable=False, index=True)   # kept after the rule is deleted
    rule_name = Column(Text, default='')
    lead_id = Column(Integer, nullable=False, index=True)
    event_type = Column(Text, nullable=False)
    event_context = Column(JSON, default=dict)
    status = Column(Text, nullable=False, default='pending')
    error = Column(Text, nullable=True)
    steps = Column(JSON, default=list)     # [{index, type, status, attempts, result|error}]
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'rule_id': self.rule_id,
            'rule_name': self.rule_name,
            'lead_id': self.lead_id,
            'event_type': self.event_type,
            'status': self.status,
            'error': self.error,
            'steps': self.steps or [],
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
