"""
Lead model — one row per prospective customer.

Well-known attributes are columns; anything else an automation writes lands
in `custom_fields`.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON
from sqlalchemy.sql import func

from app.database import Base


class Lead(Base):
    __tablename__ = 'leads'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, default='')
    email = Column(Text, default='')
    phone = Column(Text, default='')
    status = Column(Text, default='')
    lead_score = Column(Integer, nullable=True)
    score_classification = Column(Text, nullable=True)   # high / medium / low
    responsible_user_id = Column(Text, nullable=True)
    custom_fields = Column(JSON, default=dict)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Columns an update_field action may write directly
    PATCHABLE_COLUMNS = ('name', 'email', 'phone', 'status', 'responsible_user_id')

    def get_field(self, field):
        if field in self.PATCHABLE_COLUMNS:
            return getattr(self, field)
        return (self.custom_fields or {}).get(field)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'status': self.status,
            'lead_score': self.lead_score,
            'score_classification': self.score_classification,
            'responsible_user_id': self.responsible_user_id,
            'custom_fields': self.custom_fields or {},
        }
