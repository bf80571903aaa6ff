"""
Automation rule store — the single source of truth the evaluator reads.

Rules keep their insertion order in `position`: create() appends, update()
replaces in place, delete() removes. Each mutation is one transaction, so
readers never observe a half-written rule.
"""
import logging
import uuid
from typing import Any, Callable, Dict, List

from app.config import ACTION_TYPES, TRIGGER_TYPES
from app.database import get_session
from app.models.automation import AutomationRule
from app.automation.errors import RuleNotFound

logger = logging.getLogger('automation.rules')

_UPDATABLE = ('name', 'trigger_type', 'trigger_conditions', 'actions', 'enabled', 'priority')


def validate_rule(trigger_type: str, conditions: Any, actions: Any):
    """Raise ValueError if a rule definition is malformed."""
    if trigger_type not in TRIGGER_TYPES:
        raise ValueError(f"Unknown trigger type '{trigger_type}'. Available: {TRIGGER_TYPES}")
    if not isinstance(conditions, dict):
        raise ValueError("Trigger conditions must be an object")
    if not isinstance(actions, list):
        raise ValueError("Actions must be a list")
    for i, action in enumerate(actions):
        if not isinstance(action, dict) or action.get('type') not in ACTION_TYPES:
            raise ValueError(f"Action #{i + 1} has an unknown type. Available: {ACTION_TYPES}")
        if not isinstance(action.get('parameters', {}), dict):
            raise ValueError(f"Action #{i + 1} parameters must be an object")


def _normalize_actions(actions: List[Dict]) -> List[Dict]:
    return [{'type': a['type'], 'parameters': dict(a.get('parameters') or {})} for a in actions]


class AutomationRuleStore:

    def __init__(self, session_factory: Callable = None):
        self.session_factory = session_factory or get_session

    def list(self, trigger_type: str = None, enabled_only: bool = False) -> List[AutomationRule]:
        """Rules in insertion order."""
        session = self.session_factory()
        try:
            query = session.query(AutomationRule)
            if trigger_type:
                query = query.filter(AutomationRule.trigger_type == trigger_type)
            if enabled_only:
                query = query.filter(AutomationRule.enabled.is_(True))
            return query.order_by(AutomationRule.position, AutomationRule.created_at).all()
        finally:
            session.close()

    def get(self, rule_id: str) -> AutomationRule:
        session = self.session_factory()
        try:
            rule = session.get(AutomationRule, rule_id)
            if rule is None:
                raise RuleNotFound(rule_id)
            return rule
        finally:
            session.close()

    def create(self, name: str, trigger_type: str, conditions: Dict = None, actions: List[Dict] = None,
               enabled: bool = True, priority: int = 0) -> AutomationRule:
        conditions = conditions or {}
        actions = actions or []
        if not name or not str(name).strip():
            raise ValueError("Rule name is required")
        validate_rule(trigger_type, conditions, actions)

        session = self.session_factory()
        try:
            last = session.query(AutomationRule.position).order_by(AutomationRule.position.desc()).first()
            rule = AutomationRule(
                id=str(uuid.uuid4()),
                name=str(name).strip(),
                trigger_type=trigger_type,
                trigger_conditions=dict(conditions),
                actions=_normalize_actions(actions),
                enabled=bool(enabled),
                priority=int(priority or 0),
                position=(last[0] + 1) if last else 0,
            )
            session.add(rule)
            session.commit()
            logger.info("Rule '%s' created (%s, %d actions)", rule.name, trigger_type, len(actions))
            return rule
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def update(self, rule_id: str, **changes) -> AutomationRule:
        """Replace the given fields; position (evaluation order) is preserved."""
        unknown = set(changes) - set(_UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        session = self.session_factory()
        try:
            rule = session.get(AutomationRule, rule_id)
            if rule is None:
                raise RuleNotFound(rule_id)
            validate_rule(
                changes.get('trigger_type', rule.trigger_type),
                changes.get('trigger_conditions', rule.trigger_conditions or {}),
                changes.get('actions', rule.actions or []),
            )
            if 'name' in changes and not str(changes['name'] or '').strip():
                raise ValueError("Rule name is required")
            if 'actions' in changes:
                changes['actions'] = _normalize_actions(changes['actions'])
            if 'trigger_conditions' in changes:
                changes['trigger_conditions'] = dict(changes['trigger_conditions'])
            for key, value in changes.items():
                setattr(rule, key, value)
            session.commit()
            logger.info("Rule '%s' updated: %s", rule.name, sorted(changes))
            return rule
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, rule_id: str):
        session = self.session_factory()
        try:
            rule = session.get(AutomationRule, rule_id)
            if rule is None:
                raise RuleNotFound(rule_id)
            session.delete(rule)
            session.commit()
            logger.info("Rule '%s' deleted", rule.name)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
