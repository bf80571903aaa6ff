"""
Appointment model — append-only records created by users or automation rules.
"""
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey
from sqlalchemy.sql import func

from app.database import Base


class Appointment(Base):
    __tablename__ = 'appointments'

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey('leads.id'), nullable=False, index=True)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    title = Column(Text, default='')
    status = Column(Text, default='scheduled')
    source_rule = Column(Text, nullable=True)    # rule name when created by automation
    created_at = Column(DateTime(timezone=True), server_default=func.now())
