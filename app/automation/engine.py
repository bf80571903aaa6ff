"""
Automation engine — wires the components together and routes domain events.

    event → TriggerEvaluator.select() → ActionExecutor.execute() per rule
                                              ↳ ExecutionLedger records progress
                                              ↳ StageTransitionManager / LeadService
                                                raise follow-up events (depth + 1)

Events are processed inline by default. With AUTOMATION_ASYNC set they are
enqueued on the RQ 'automation' queue and processed by process_event_job() on
a worker, so leads are handled in parallel while each rule's actions still run
in order inside one job.
"""
import logging
from typing import Callable, Dict, List

from app.config import AUTOMATION_ASYNC, AUTOMATION_MAX_CHAIN_DEPTH
from app.database import get_session
from app.models.automation import AutomationExecution
from app.services.appointments import AppointmentService
from app.services.leads import LeadService
from app.services.notifications import NotificationService
from app.automation.actions import ActionExecutor
from app.automation.events import DomainEvent
from app.automation.ledger import ExecutionLedger, COMPLETED, FAILED
from app.automation.rules import AutomationRuleStore
from app.automation.transitions import StageTransitionManager
from app.automation.triggers import TriggerEvaluator
from app.automation.health import utcnow

logger = logging.getLogger('automation.engine')

JOB_TIMEOUT = 600  # seconds


class AutomationEngine:

    def __init__(
        self,
        session_factory: Callable = None,
        clock: Callable = None,
        notifications: NotificationService = None,
        async_dispatch: bool = AUTOMATION_ASYNC,
        max_chain_depth: int = AUTOMATION_MAX_CHAIN_DEPTH,
        executor_options: Dict = None,
    ):
        self.session_factory = session_factory or get_session
        self.clock = clock or utcnow
        self.async_dispatch = async_dispatch
        self.max_chain_depth = max_chain_depth

        self.store = AutomationRuleStore(self.session_factory)
        self.evaluator = TriggerEvaluator(self.store)
        self.ledger = ExecutionLedger(self.session_factory, self.clock)
        self.transitions = StageTransitionManager(self.session_factory, event_sink=self.dispatch, clock=self.clock)
        self.leads = LeadService(self.session_factory, dispatch=self.dispatch, clock=self.clock)
        self.appointments = AppointmentService(self.session_factory)
        self.notifications = notifications or NotificationService(self.session_factory)
        self.executor = ActionExecutor(
            self.ledger,
            self.transitions,
            self.leads,
            self.appointments,
            self.notifications,
            clock=self.clock,
            **(executor_options or {}),
        )

    # ── Public API ────────────────────────────────────────────────────────

    def dispatch(self, event: DomainEvent):
        """Entry point for every event source (transitions, leads, scheduler, HTTP)."""
        if self.async_dispatch:
            self.enqueue(event)
            return []
        return self.process(event)

    def enqueue(self, event: DomainEvent):
        from app.extensions import get_queue
        job = get_queue().enqueue(process_event_job, event.to_dict(), job_timeout=JOB_TIMEOUT)
        logger.info("Enqueued %s event for lead %s (job %s)", event.type, event.lead_id, job.id)
        return job

    def process(self, event: DomainEvent) -> List[AutomationExecution]:
        """
        Evaluate and run every matching rule for one event.

        One rule failing (even in the ledger itself) never stops the others.
        """
        if event.depth > self.max_chain_depth:
            logger.warning("Dropping %s event for lead %s: automation chain depth %d exceeds %d",
                           event.type, event.lead_id, event.depth, self.max_chain_depth)
            return []

        executions = []
        for rule in self.evaluator.select(event):
            try:
                executions.append(self.executor.execute(rule, event))
            except Exception:
                logger.error("Rule '%s' could not be executed for lead %s", rule.name, event.lead_id,
                             exc_info=True, extra={'rule_id': rule.id, 'lead_id': event.lead_id})

        if executions:
            summary = summarize(executions)
            logger.info("%s event for lead %s: %d completed, %d failed",
                        event.type, event.lead_id, summary['completed'], summary['failed'])
        return executions


def summarize(executions: List[AutomationExecution]) -> Dict:
    return {
        'matched': len(executions),
        'completed': sum(1 for e in executions if e.status == COMPLETED),
        'failed': sum(1 for e in executions if e.status == FAILED),
        'executions': [e.to_dict() for e in executions],
    }


# ── Default engine + RQ job ───────────────────────────────────────────────────

_engine = None


def get_engine() -> AutomationEngine:
    global _engine
    if _engine is None:
        _engine = AutomationEngine()
    return _engine


def process_event_job(event_data: Dict):
    """RQ job: process one serialized DomainEvent on a worker."""
    event = DomainEvent.from_dict(event_data)
    executions = get_engine().process(event)
    return summarize(executions)
