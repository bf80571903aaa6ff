"""
Lead field + score collaborator.

Every change that rules may react to raises a DomainEvent through `dispatch`:
  update_field()  → field_change {field, old_value, new_value, <field>: new_value}
  update_score()  → lead_score   {score, classification, previous_score}
"""
import logging
from typing import Callable, Dict

from app.database import get_session
from app.models.lead import Lead
from app.automation.errors import LeadNotFound
from app.automation.events import DomainEvent
from app.automation.health import utcnow

logger = logging.getLogger('services.leads')

_READ_ONLY_FIELDS = (
    'id', 'created_at', 'updated_at', 'custom_fields', 'last_activity_at',
    'lead_score', 'score_classification',   # written by update_score() only
)


def compute_lead_score(factors: Dict) -> int:
    """
    Additive engagement score:
      appointments_completed × 10
      + max(0, 20 − days_in_pipeline)   (newer leads score higher)
      + interaction_count × 5
      + min(50, revenue / 1000)
    """
    factors = factors or {}
    score = 0.0
    if factors.get('appointments_completed'):
        score += factors['appointments_completed'] * 10
    if factors.get('days_in_pipeline'):
        score += max(0, 20 - factors['days_in_pipeline'])
    if factors.get('interaction_count'):
        score += factors['interaction_count'] * 5
    if factors.get('revenue'):
        score += min(50, factors['revenue'] / 1000)
    return round(score)


def classify_score(score: int) -> str:
    if score >= 80:
        return 'high'
    if score >= 50:
        return 'medium'
    return 'low'


class LeadService:

    def __init__(self, session_factory: Callable = None, dispatch: Callable = None, clock: Callable = None):
        self.session_factory = session_factory or get_session
        self.dispatch = dispatch
        self.clock = clock or utcnow

    def get(self, lead_id) -> Lead:
        session = self.session_factory()
        try:
            lead = session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFound(lead_id)
            return lead
        finally:
            session.close()

    def update_field(self, lead_id, field: str, value, depth: int = 0):
        """Patch one field. Returns (old_value, new_value)."""
        if not field or field in _READ_ONLY_FIELDS:
            raise ValueError(f"Field '{field}' cannot be updated")

        session = self.session_factory()
        try:
            lead = session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFound(lead_id)
            old_value = lead.get_field(field)
            if field in Lead.PATCHABLE_COLUMNS:
                setattr(lead, field, value)
            else:
                custom = dict(lead.custom_fields or {})
                custom[field] = value
                lead.custom_fields = custom
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("Lead %s field '%s' updated", lead_id, field, extra={'lead_id': lead_id})
        if old_value != value:
            self._emit(DomainEvent(
                type='field_change',
                lead_id=lead_id,
                context={'field': field, 'old_value': old_value, 'new_value': value, field: value},
                depth=depth,
            ))
        return old_value, value

    def assign_user(self, lead_id, user_id, depth: int = 0):
        if not user_id:
            raise ValueError("user_id is required")
        return self.update_field(lead_id, 'responsible_user_id', str(user_id), depth=depth)

    def update_score(self, lead_id, factors: Dict, depth: int = 0) -> int:
        score = compute_lead_score(factors)
        classification = classify_score(score)

        session = self.session_factory()
        try:
            lead = session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFound(lead_id)
            previous = lead.lead_score
            lead.lead_score = score
            lead.score_classification = classification
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("Lead %s scored %d (%s)", lead_id, score, classification, extra={'lead_id': lead_id})
        self._emit(DomainEvent(
            type='lead_score',
            lead_id=lead_id,
            context={'score': score, 'classification': classification, 'previous_score': previous},
            depth=depth,
        ))
        return score

    def record_activity(self, lead_id, at=None):
        """Stamp the lead's last interaction (resets the inactivity clock)."""
        session = self.session_factory()
        try:
            lead = session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFound(lead_id)
            lead.last_activity_at = at or self.clock()
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _emit(self, event):
        if self.dispatch is None:
            return
        try:
            self.dispatch(event)
        except Exception:
            logger.error("%s listener failed for lead %s", event.type, event.lead_id, exc_info=True)
