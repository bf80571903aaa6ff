"""
Trigger conditions — typed variants parsed from a rule's condition map.

A condition map looks like:
    {"to_stage": "Qualified",                                   # Equals
     "score": {"operator": "greater_than", "value": 80},        # GreaterThan
     "notes": {"operator": "contains", "value": "urgent"}}      # Contains

Unknown operators fall back to equality. A context missing the key never
satisfies an ordering or containment condition.
"""
from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True)
class Condition:
    key: str
    value: Any

    operator = 'equals'

    def matches(self, context: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def to_dict(self):
        return {'key': self.key, 'operator': self.operator, 'value': self.value}


@dataclass(frozen=True)
class Equals(Condition):
    operator = 'equals'

    def matches(self, context):
        return context.get(self.key) == self.value


@dataclass(frozen=True)
class GreaterThan(Condition):
    operator = 'greater_than'

    def matches(self, context):
        actual = context.get(self.key)
        if actual is None:
            return False
        try:
            return actual > self.value
        except TypeError:
            return False


@dataclass(frozen=True)
class LessThan(Condition):
    operator = 'less_than'

    def matches(self, context):
        actual = context.get(self.key)
        if actual is None:
            return False
        try:
            return actual < self.value
        except TypeError:
            return False


@dataclass(frozen=True)
class Contains(Condition):
    """Case-sensitive substring match on the string form of the context value."""
    operator = 'contains'

    def matches(self, context):
        actual = context.get(self.key)
        if actual is None:
            return False
        return str(self.value) in str(actual)


OPERATORS = {
    'equals': Equals,
    'greater_than': GreaterThan,
    'less_than': LessThan,
    'contains': Contains,
}


def parse_conditions(conditions: Dict[str, Any]) -> List[Condition]:
    """Turn a rule's condition map into Condition variants, in declaration order."""
    parsed = []
    for key, definition in (conditions or {}).items():
        if isinstance(definition, dict) and 'operator' in definition:
            cls = OPERATORS.get(definition.get('operator'), Equals)
            parsed.append(cls(key, definition.get('value')))
        else:
            parsed.append(Equals(key, definition))
    return parsed


def all_match(conditions: List[Condition], context: Dict[str, Any]) -> bool:
    """Logical AND. An empty condition list always matches."""
    return all(c.matches(context or {}) for c in conditions)
