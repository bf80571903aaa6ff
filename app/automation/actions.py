"""
Action execution — runs a matched rule's actions against one lead.

Actions run strictly in declared order and are NOT transactional: when action
N fails, the side effects of actions 1..N-1 stay in place, actions after N are
never attempted, and the execution is recorded as failed with N's error. Each
action's outcome is appended to the execution's `steps`, so a partially
applied rule can be read back from the ledger.

Every action type is an ActionHandler registered in ACTION_HANDLERS; the
executor only sees the uniform run() interface.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Type

from app.config import (
    ACTION_MAX_ATTEMPTS, ACTION_RETRY_BASE_DELAY, ACTION_TIMEOUT_SECONDS,
    DEFAULT_APPOINTMENT_HOUR, DEFAULT_APPOINTMENT_MINUTES,
)
from app.models.automation import AutomationExecution, AutomationRule
from app.automation.errors import ActionExecutionError, ConflictError, EntryNotFound, PipelineError
from app.automation.events import DomainEvent
from app.automation.health import as_utc, utcnow

logger = logging.getLogger('automation.actions')


@dataclass
class ActionContext:
    """What a handler knows about the run it belongs to."""
    rule: AutomationRule
    event: DomainEvent
    execution_id: int

    @property
    def lead_id(self):
        return self.event.lead_id

    @property
    def actor(self) -> str:
        return f'automation:{self.rule.name}'

    @property
    def depth(self) -> int:
        """Depth for events raised by this action's side effects."""
        return self.event.depth + 1


class ActionHandler(ABC):
    """
    Base class for all action types.

    A handler receives the action's parameters and the run context, performs
    exactly one side effect through the executor's collaborators, and returns
    a JSON-friendly dict describing what it did (stored on the step).
    """
    type: str = ''
    description: str = ''

    def __init__(self, executor: 'ActionExecutor'):
        self.executor = executor

    @abstractmethod
    def run(self, parameters: Dict[str, Any], ctx: ActionContext) -> Dict[str, Any]:
        ...


class MoveStageAction(ActionHandler):
    type = 'move_stage'
    description = 'Move the lead to a stage, bypassing the checklist gate'

    def run(self, parameters, ctx):
        stage_id = parameters.get('stage_id')
        if stage_id is None:
            raise ValueError("move_stage requires 'stage_id'")
        transitions = self.executor.transitions
        stage = transitions.get_stage(stage_id)

        entry = transitions.find_active_entry(ctx.lead_id, stage.pipeline_id)
        if entry is None:
            raise EntryNotFound(f"lead {ctx.lead_id} / pipeline {stage.pipeline_id}")

        moved = transitions.move_to(
            entry.id, stage.id, actor=ctx.actor, depth=ctx.depth, note=parameters.get('note'),
        )
        return {'entry_id': moved.id, 'stage_id': moved.current_stage_id}


class CreateAppointmentAction(ActionHandler):
    type = 'create_appointment'
    description = 'Book an appointment slot (60 minutes unless configured)'

    def run(self, parameters, ctx):
        start_at = parameters.get('start_at') or ctx.event.context.get('start_at')
        if start_at:
            start_at = as_utc(_parse_datetime(start_at))
        else:
            # next day at the default hour
            tomorrow = self.executor.clock() + timedelta(days=1)
            start_at = tomorrow.replace(hour=DEFAULT_APPOINTMENT_HOUR, minute=0, second=0, microsecond=0)

        minutes = parameters.get('duration_minutes') or self._stage_minutes(ctx) or DEFAULT_APPOINTMENT_MINUTES
        end_at = start_at + timedelta(minutes=int(minutes))

        appointment_id = self.executor.appointments.create(
            lead_id=ctx.lead_id,
            start_at=start_at,
            end_at=end_at,
            title=parameters.get('title') or ctx.rule.name,
            source_rule=ctx.rule.name,
        )
        return {'appointment_id': appointment_id, 'start_at': start_at.isoformat(), 'end_at': end_at.isoformat()}

    def _stage_minutes(self, ctx):
        """Duration configured on the stage the event refers to, if it books automatically."""
        stage_id = ctx.event.context.get('stage_id') or ctx.event.context.get('to_stage_id')
        if stage_id is None:
            return None
        try:
            stage = self.executor.transitions.get_stage(stage_id)
        except PipelineError:
            return None
        if stage.auto_appointment and stage.appointment_minutes:
            return stage.appointment_minutes
        return None


class SendNotificationAction(ActionHandler):
    type = 'send_notification'
    description = 'Send a message through the notification sink'

    def run(self, parameters, ctx):
        notification_id = self.executor.notifications.send(
            title=parameters.get('title') or f'Automation: {ctx.rule.name}',
            message=parameters.get('message', ''),
            priority=parameters.get('priority', 'medium'),
            lead_id=ctx.lead_id,
            source=ctx.rule.name,
        )
        return {'notification_id': notification_id}


class UpdateFieldAction(ActionHandler):
    type = 'update_field'
    description = 'Patch a single lead field'

    def run(self, parameters, ctx):
        field = parameters.get('field')
        if not field:
            raise ValueError("update_field requires 'field'")
        old_value, new_value = self.executor.leads.update_field(
            ctx.lead_id, field, parameters.get('value'), depth=ctx.depth,
        )
        return {'field': field, 'old_value': old_value, 'new_value': new_value}


class AssignUserAction(ActionHandler):
    type = 'assign_user'
    description = 'Set the responsible user of the lead'

    def run(self, parameters, ctx):
        old_value, new_value = self.executor.leads.assign_user(
            ctx.lead_id, parameters.get('user_id'), depth=ctx.depth,
        )
        return {'previous_user_id': old_value, 'user_id': new_value}


ACTION_HANDLERS: Dict[str, Type[ActionHandler]] = {
    cls.type: cls for cls in (
        MoveStageAction,
        CreateAppointmentAction,
        SendNotificationAction,
        UpdateFieldAction,
        AssignUserAction,
    )
}


def get_handler(handlers: Dict[str, Type[ActionHandler]], action_type: str, executor) -> ActionHandler:
    """Look up and instantiate the handler for an action type."""
    handler_cls = handlers.get(action_type)
    if not handler_cls:
        raise ValueError(f"No handler registered for action type '{action_type}'")
    return handler_cls(executor)


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def _is_retryable(exc: Exception) -> bool:
    """Stale writes are worth another attempt; validation and lookup failures are not."""
    if isinstance(exc, ConflictError):
        return True
    return not isinstance(exc, (PipelineError, ValueError, TypeError, KeyError))


class ActionExecutor:

    def __init__(
        self,
        ledger,
        transitions,
        leads,
        appointments,
        notifications,
        handlers: Dict[str, Type[ActionHandler]] = None,
        clock: Callable = None,
        max_attempts: int = ACTION_MAX_ATTEMPTS,
        retry_base_delay: float = ACTION_RETRY_BASE_DELAY,
        timeout_seconds: float = ACTION_TIMEOUT_SECONDS,
        sleep: Callable = time.sleep,
        monotonic: Callable = time.monotonic,
    ):
        self.ledger = ledger
        self.transitions = transitions
        self.leads = leads
        self.appointments = appointments
        self.notifications = notifications
        self.handlers = handlers or ACTION_HANDLERS
        self.clock = clock or utcnow
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._monotonic = monotonic

    def execute(self, rule: AutomationRule, event: DomainEvent) -> AutomationExecution:
        """
        Run every action of `rule` for `event.lead_id`.

        Returns the finished execution record (completed or failed). Action
        failures are recorded, never raised.
        """
        execution = self.ledger.open(rule, event)
        self.ledger.start(execution.id)
        ctx = ActionContext(rule=rule, event=event, execution_id=execution.id)
        deadline = self._monotonic() + self.timeout_seconds
        log_extra = {'rule_id': rule.id, 'lead_id': event.lead_id, 'execution_id': execution.id}

        for index, action in enumerate(rule.actions or []):
            action_type = action.get('type', '')
            parameters = action.get('parameters') or {}

            if self._monotonic() > deadline:
                error = ActionExecutionError(action_type, index, f"execution exceeded {self.timeout_seconds}s")
                self.ledger.record_step(execution.id, _step(index, action_type, 'skipped', 0, error=str(error)))
                logger.error("Rule '%s' timed out before action #%d", rule.name, index + 1, extra=log_extra)
                return self.ledger.fail(execution.id, str(error))

            attempts = 0
            try:
                handler = get_handler(self.handlers, action_type, self)
                while True:
                    attempts += 1
                    try:
                        result = handler.run(parameters, ctx)
                        break
                    except Exception as e:
                        if attempts >= self.max_attempts or not _is_retryable(e):
                            raise
                        delay = self.retry_base_delay * (2 ** (attempts - 1))
                        logger.warning("Action #%d (%s) of rule '%s' failed (%s) — retrying in %.1fs",
                                       index + 1, action_type, rule.name, e, delay, extra=log_extra)
                        self._sleep(delay)
            except Exception as e:
                error = ActionExecutionError(action_type, index, e)
                self.ledger.record_step(execution.id, _step(index, action_type, 'failed', attempts, error=str(e)))
                logger.error("Rule '%s' failed on lead %s: %s", rule.name, event.lead_id, error,
                             exc_info=True, extra=log_extra)
                return self.ledger.fail(execution.id, str(error))

            self.ledger.record_step(execution.id, _step(index, action_type, 'completed', attempts, result=result))
            logger.info("Rule '%s' action #%d (%s) done", rule.name, index + 1, action_type, extra=log_extra)

        return self.ledger.complete(execution.id)


def _step(index, action_type, status, attempts, result=None, error=None) -> Dict[str, Any]:
    step = {'index': index, 'type': action_type, 'status': status, 'attempts': attempts}
    if result is not None:
        step['result'] = result
    if error is not None:
        step['error'] = error
    return step
