"""
Trigger evaluator — picks the rules a domain event should fire.

A rule fires when it is enabled, its trigger type equals the event type and
every condition holds against the event context. Matches come back ordered
by descending priority; equal priorities keep insertion order.
"""
import logging
from typing import List

from app.models.automation import AutomationRule
from app.automation.conditions import all_match, parse_conditions
from app.automation.events import DomainEvent

logger = logging.getLogger('automation.triggers')


class TriggerEvaluator:

    def __init__(self, store):
        self.store = store

    def select(self, event: DomainEvent) -> List[AutomationRule]:
        candidates = self.store.list(trigger_type=event.type, enabled_only=True)
        # sorted() is stable, so insertion order survives among equal priorities
        ordered = sorted(candidates, key=lambda rule: -(rule.priority or 0))

        matched = []
        for rule in ordered:
            if rule.trigger_type != event.type or not rule.enabled:
                continue
            if all_match(parse_conditions(rule.trigger_conditions), event.context):
                matched.append(rule)

        logger.info("%s event for lead %s: %d candidate rules, %d matched",
                    event.type, event.lead_id, len(candidates), len(matched))
        return matched
