"""
Domain events fed to the trigger evaluator.

`depth` counts how many automation hops produced the event: 0 for events
raised by users or the scheduler, +1 for each event raised by an action.
"""
from dataclasses import dataclass, field
from typing import Any, Dict

from app.config import TRIGGER_TYPES


@dataclass
class DomainEvent:
    type: str
    lead_id: int
    context: Dict[str, Any] = field(default_factory=dict)
    depth: int = 0

    def __post_init__(self):
        if self.type not in TRIGGER_TYPES:
            raise ValueError(f"Unknown event type '{self.type}'. Available: {TRIGGER_TYPES}")
        if not isinstance(self.context, dict):
            raise ValueError(f"Event context must be an object, got {type(self.context).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'lead_id': self.lead_id,
            'context': self.context,
            'depth': self.depth,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DomainEvent':
        return cls(
            type=data['type'],
            lead_id=data['lead_id'],
            context=data.get('context') or {},
            depth=int(data.get('depth') or 0),
        )
