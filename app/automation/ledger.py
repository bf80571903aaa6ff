"""
Execution ledger — audit trail of every rule run against a lead.

Lifecycle: pending → executing → completed | failed. Finished records are
never rewritten or deleted; each action's outcome is appended to `steps`.
"""
import logging
from typing import Callable, Dict, List, Optional

from app.database import get_session
from app.models.automation import AutomationExecution
from app.automation.health import utcnow

logger = logging.getLogger('automation.ledger')

PENDING = 'pending'
EXECUTING = 'executing'
COMPLETED = 'completed'
FAILED = 'failed'

_ALLOWED = {
    PENDING: {EXECUTING, FAILED},
    EXECUTING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}


class ExecutionLedger:

    def __init__(self, session_factory: Callable = None, clock: Callable = None):
        self.session_factory = session_factory or get_session
        self.clock = clock or utcnow

    def open(self, rule, event) -> AutomationExecution:
        """Create a pending record for (rule, lead, event)."""
        session = self.session_factory()
        try:
            execution = AutomationExecution(
                rule_id=rule.id,
                rule_name=rule.name,
                lead_id=event.lead_id,
                event_type=event.type,
                event_context=dict(event.context),
                status=PENDING,
                steps=[],
            )
            session.add(execution)
            session.commit()
            return execution
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def start(self, execution_id) -> AutomationExecution:
        return self._transition(execution_id, EXECUTING, started=True)

    def complete(self, execution_id) -> AutomationExecution:
        return self._transition(execution_id, COMPLETED)

    def fail(self, execution_id, error: str) -> AutomationExecution:
        return self._transition(execution_id, FAILED, error=error)

    def record_step(self, execution_id, step: Dict) -> AutomationExecution:
        session = self.session_factory()
        try:
            execution = self._load(session, execution_id)
            if execution.status != EXECUTING:
                raise ValueError(f"Execution {execution_id} is {execution.status}, cannot record steps")
            execution.steps = list(execution.steps or []) + [step]
            session.commit()
            return execution
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, execution_id) -> AutomationExecution:
        session = self.session_factory()
        try:
            return self._load(session, execution_id)
        finally:
            session.close()

    def list(self, rule_id: str = None, lead_id=None, status: str = None, limit: int = 50) -> List[AutomationExecution]:
        """Most recent first."""
        session = self.session_factory()
        try:
            query = session.query(AutomationExecution)
            if rule_id:
                query = query.filter_by(rule_id=rule_id)
            if lead_id is not None:
                query = query.filter_by(lead_id=lead_id)
            if status:
                query = query.filter_by(status=status)
            return query.order_by(AutomationExecution.id.desc()).limit(limit).all()
        finally:
            session.close()

    # ── Private helpers ───────────────────────────────────────────────────

    def _transition(self, execution_id, new_status, error: Optional[str] = None, started=False):
        session = self.session_factory()
        try:
            execution = self._load(session, execution_id)
            if new_status not in _ALLOWED.get(execution.status, set()):
                raise ValueError(f"Execution {execution_id} cannot go from {execution.status} to {new_status}")
            execution.status = new_status
            if started:
                execution.started_at = self.clock()
            if new_status in (COMPLETED, FAILED):
                execution.finished_at = self.clock()
            if error is not None:
                execution.error = error[:2000]
            session.commit()
            logger.info("Execution %s (%s) → %s", execution.id, execution.rule_name, new_status,
                        extra={'execution_id': execution.id, 'lead_id': execution.lead_id})
            return execution
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _load(session, execution_id) -> AutomationExecution:
        execution = session.get(AutomationExecution, execution_id)
        if execution is None:
            raise ValueError(f"Execution {execution_id} not found")
        return execution
