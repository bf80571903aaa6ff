"""
Checklist gate — decides whether a user may advance an entry out of its stage.

Only user-initiated advances consult the gate; automation moves and jumps
bypass it.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional


@dataclass
class GateResult:
    can_advance: bool
    missing_titles: List[str] = field(default_factory=list)
    criteria_unacknowledged: bool = False


def evaluate_gate(
    items: Iterable,
    checklist_state: Optional[Dict],
    exit_criteria: Optional[str] = None,
    criteria_acknowledged: bool = False,
) -> GateResult:
    """
    Check the required items of a stage against an entry's checklist state.

    Args:
        items:                 ChecklistItems of the entry's current stage.
                               Non-required items are ignored.
        checklist_state:       {item_id: bool}; keys may be ints or strings.
        exit_criteria:         The stage's free-text exit criteria, if any.
        criteria_acknowledged: Caller-supplied acknowledgement of exit_criteria.
    """
    state = {str(k): bool(v) for k, v in (checklist_state or {}).items()}
    required = sorted((i for i in items if i.required), key=lambda i: (i.order_index or 0, i.id))
    missing = [i.title for i in required if not state.get(str(i.id))]

    needs_ack = bool(exit_criteria and exit_criteria.strip())
    unacknowledged = needs_ack and not criteria_acknowledged

    return GateResult(
        can_advance=not missing and not unacknowledged,
        missing_titles=missing,
        criteria_unacknowledged=unacknowledged,
    )
