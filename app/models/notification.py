"""
Notification model — every message handed to the notification sink.
"""
from sqlalchemy import Column, Integer, Text, DateTime
from sqlalchemy.sql import func

from app.database import Base


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, nullable=True, index=True)
    priority = Column(Text, nullable=False, default='medium')
    title = Column(Text, nullable=False)
    message = Column(Text, default='')
    source = Column(Text, nullable=True)     # rule name / scheduler
    created_at = Column(DateTime(timezone=True), server_default=func.now())
