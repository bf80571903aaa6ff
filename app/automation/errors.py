"""
Automation engine exceptions.

Gate, transition and lookup errors propagate to the initiating caller.
ActionExecutionError is captured by the executor into the ledger and never
reaches the event source.
"""
from typing import List


class PipelineError(Exception):
    """Base class for every engine error."""


class ChecklistIncomplete(PipelineError):
    """A user-initiated advance was blocked by the stage's checklist gate."""
    def __init__(self, missing_titles: List[str], criteria_unacknowledged: bool = False):
        self.missing_titles = list(missing_titles)
        self.criteria_unacknowledged = criteria_unacknowledged
        parts = []
        if self.missing_titles:
            parts.append(f"complete required items: {', '.join(self.missing_titles)}")
        if criteria_unacknowledged:
            parts.append("exit criteria not acknowledged")
        super().__init__("Cannot advance — " + '; '.join(parts))


class InvalidTransition(PipelineError):
    """Target stage not reachable (wrong pipeline, wrong direction, archived entry...)."""


class ConflictError(PipelineError):
    """The entry changed since the caller read it (stale version)."""
    def __init__(self, entry_id, expected_version=None, actual_version=None):
        self.entry_id = entry_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Entry {entry_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ActionExecutionError(PipelineError):
    """Wraps the failure of a single action inside a rule execution."""
    def __init__(self, action_type: str, index: int, cause):
        self.action_type = action_type
        self.index = index
        self.cause = cause
        super().__init__(f"Action #{index + 1} ({action_type}) failed: {cause}")


class RuleNotFound(PipelineError):
    def __init__(self, rule_id):
        self.rule_id = rule_id
        super().__init__(f"Automation rule '{rule_id}' not found")


class EntryNotFound(PipelineError):
    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Pipeline entry '{entry_id}' not found")


class LeadNotFound(PipelineError):
    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead '{lead_id}' not found")
