"""
Appointment collaborator — creates appointment records and returns their id.
"""
import logging
from datetime import datetime

from app.database import get_session
from app.models.appointment import Appointment
from app.models.lead import Lead
from app.automation.errors import LeadNotFound

logger = logging.getLogger('services.appointments')


class AppointmentService:

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or get_session

    def create(self, lead_id, start_at: datetime, end_at: datetime, title: str = '', source_rule: str = None) -> int:
        if end_at <= start_at:
            raise ValueError("Appointment must end after it starts")

        session = self.session_factory()
        try:
            if session.get(Lead, lead_id) is None:
                raise LeadNotFound(lead_id)
            appointment = Appointment(
                lead_id=lead_id,
                start_at=start_at,
                end_at=end_at,
                title=title or '',
                source_rule=source_rule,
            )
            session.add(appointment)
            session.commit()
            logger.info("Appointment %s created for lead %s at %s", appointment.id, lead_id, start_at.isoformat())
            return appointment.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
