"""
Stage transitions — every change to a LeadPipelineEntry goes through here.

Two movement variants exist on purpose:
  - advance()            gated: the current stage's checklist + exit criteria
                         must pass, and the target stage's WIP limit is honored.
  - move_to() / jump()   ungated: used by automation (move_stage action) and
                         by the "jump ahead" user flow.

Every successful move resets entered_stage_at, sets health to green, writes a
StageTransition audit row and raises a `stage_change` DomainEvent through the
configured event sink. Checklist state is never cleared; entries for items of
earlier stages simply stop mattering.

Writes are optimistic: callers may pass `expected_version`, and the
version_id_col on the entry rejects concurrent overwrites. Both surface as
ConflictError.
"""
import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm.exc import StaleDataError

from app.config import ENTRY_ACTIVE, ENTRY_ARCHIVED, HEALTH_GREEN
from app.database import get_session
from app.models.entry import LeadPipelineEntry, StageTransition
from app.models.lead import Lead
from app.models.pipeline import Pipeline, PipelineStage, ChecklistItem
from app.automation.checklist import GateResult, evaluate_gate
from app.automation.errors import (
    ChecklistIncomplete, ConflictError, EntryNotFound, InvalidTransition, LeadNotFound,
)
from app.automation.events import DomainEvent
from app.automation.health import compute_health, utcnow

logger = logging.getLogger('automation.transitions')


class StageTransitionManager:

    def __init__(self, session_factory: Callable = None, event_sink: Callable = None, clock: Callable = None):
        self.session_factory = session_factory or get_session
        self.event_sink = event_sink
        self.clock = clock or utcnow

    # ── Queries ───────────────────────────────────────────────────────────

    def get_entry(self, entry_id) -> LeadPipelineEntry:
        session = self.session_factory()
        try:
            return self._load_entry(session, entry_id)
        finally:
            session.close()

    def get_stage(self, stage_id) -> PipelineStage:
        session = self.session_factory()
        try:
            return self._stage(session, stage_id)
        finally:
            session.close()

    def find_active_entry(self, lead_id, pipeline_id) -> Optional[LeadPipelineEntry]:
        session = self.session_factory()
        try:
            return self._active_entry(session, lead_id, pipeline_id)
        finally:
            session.close()

    def gate_status(self, entry_id, criteria_acknowledged: bool = False) -> GateResult:
        """Checklist gate for the entry's current stage, without moving it."""
        session = self.session_factory()
        try:
            entry = self._load_entry(session, entry_id)
            stage = self._stage(session, entry.current_stage_id)
            return self._gate(session, entry, stage, criteria_acknowledged)
        finally:
            session.close()

    # ── Enrollment ────────────────────────────────────────────────────────

    def enroll(self, lead_id, pipeline_id, stage_id=None, note: str = None, actor: str = 'user') -> LeadPipelineEntry:
        """Create an active entry at `stage_id` or at the pipeline's entry stage."""
        session = self.session_factory()
        try:
            if session.get(Lead, lead_id) is None:
                raise LeadNotFound(lead_id)
            pipeline = session.get(Pipeline, pipeline_id)
            if pipeline is None or not pipeline.active:
                raise InvalidTransition(f"Pipeline {pipeline_id} does not exist or is inactive")
            if self._active_entry(session, lead_id, pipeline_id) is not None:
                raise InvalidTransition(f"Lead {lead_id} already has an active entry in pipeline {pipeline_id}")

            if stage_id is None:
                stages = self._stages(session, pipeline_id)
                if not stages:
                    raise InvalidTransition(f"Pipeline {pipeline_id} has no stages")
                stage = stages[0]
            else:
                stage = self._stage(session, stage_id)
                if stage.pipeline_id != pipeline_id:
                    raise InvalidTransition(f"Stage {stage_id} does not belong to pipeline {pipeline_id}")

            now = self.clock()
            entry = LeadPipelineEntry(
                lead_id=lead_id,
                pipeline_id=pipeline_id,
                current_stage_id=stage.id,
                entered_stage_at=now,
                enrollment_status=ENTRY_ACTIVE,
                health=HEALTH_GREEN,
                checklist_state={},
                stage_note=note or '',
            )
            session.add(entry)
            session.flush()
            session.add(StageTransition(
                entry_id=entry.id, lead_id=lead_id, kind='enroll',
                to_pipeline_id=pipeline_id, to_stage_id=stage.id, actor=actor, note=note,
            ))
            session.commit()
            logger.info("Lead %s enrolled in pipeline %s at stage '%s'", lead_id, pipeline_id, stage.name)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self._emit(entry, None, stage, 'enroll', actor, depth=0)
        return entry

    # ── Movement ──────────────────────────────────────────────────────────

    def advance(self, entry_id, target_stage_id=None, criteria_acknowledged: bool = False,
                expected_version: int = None, actor: str = 'user') -> LeadPipelineEntry:
        """Gated one-step advance to the stage immediately after the current one."""
        session = self.session_factory()
        try:
            entry = self._load_active(session, entry_id, expected_version)
            current = self._stage(session, entry.current_stage_id)
            following = [s for s in self._stages(session, entry.pipeline_id) if s.order_index > current.order_index]
            if not following:
                raise InvalidTransition(f"Stage '{current.name}' is the last stage of the pipeline")
            target = following[0]
            if target_stage_id is not None and target_stage_id != target.id:
                raise InvalidTransition(
                    f"advance only moves to the next stage ('{target.name}'); use jump to skip stages"
                )

            gate = self._gate(session, entry, current, criteria_acknowledged)
            if not gate.can_advance:
                raise ChecklistIncomplete(gate.missing_titles, gate.criteria_unacknowledged)

            if target.wip_limit:
                occupied = session.query(LeadPipelineEntry).filter_by(
                    current_stage_id=target.id, enrollment_status=ENTRY_ACTIVE,
                ).count()
                if occupied >= target.wip_limit:
                    raise InvalidTransition(f"Stage '{target.name}' reached its limit of {target.wip_limit} leads")

            self._relocate(session, entry, current, target, 'advance', actor)
            self._commit(session, entry)
        finally:
            session.close()

        self._emit(entry, current, target, 'advance', actor, depth=0)
        return entry

    def regress(self, entry_id, target_stage_id, expected_version: int = None, actor: str = 'user') -> LeadPipelineEntry:
        """Move back to any earlier stage. Never gated."""
        return self._directed_move(entry_id, target_stage_id, 'regress', expected_version, actor)

    def jump(self, entry_id, target_stage_id, expected_version: int = None, actor: str = 'user') -> LeadPipelineEntry:
        """Move ahead to any later stage, skipping intermediates. Not gated."""
        return self._directed_move(entry_id, target_stage_id, 'jump', expected_version, actor)

    def move_to(self, entry_id, target_stage_id, actor: str = 'automation', depth: int = 0,
                note: str = None, expected_version: int = None) -> LeadPipelineEntry:
        """
        Ungated move to any stage of the entry's pipeline (automation path).

        Moving to the stage the entry is already in is a no-op and raises no event.
        """
        session = self.session_factory()
        try:
            entry = self._load_active(session, entry_id, expected_version)
            current = session.get(PipelineStage, entry.current_stage_id) if entry.current_stage_id else None
            target = self._stage(session, target_stage_id)
            if target.pipeline_id != entry.pipeline_id:
                raise InvalidTransition(f"Stage {target_stage_id} is not in pipeline {entry.pipeline_id}")
            if current is not None and target.id == current.id:
                logger.info("Entry %s already in stage '%s' — move skipped", entry.id, target.name)
                return entry
            self._relocate(session, entry, current, target, 'move', actor, note=note)
            self._commit(session, entry)
        finally:
            session.close()

        self._emit(entry, current, target, 'move', actor, depth=depth)
        return entry

    def transfer(self, entry_id, new_pipeline_id, target_stage_id, reason: str,
                 expected_version: int = None, actor: str = 'user') -> LeadPipelineEntry:
        """Reassign the entry to another pipeline. A reason is mandatory."""
        if not reason or not reason.strip():
            raise InvalidTransition("A reason is required to transfer between pipelines")

        session = self.session_factory()
        try:
            entry = self._load_active(session, entry_id, expected_version)
            if new_pipeline_id == entry.pipeline_id:
                raise InvalidTransition("Entry is already in this pipeline")
            pipeline = session.get(Pipeline, new_pipeline_id)
            if pipeline is None or not pipeline.active:
                raise InvalidTransition(f"Pipeline {new_pipeline_id} does not exist or is inactive")
            target = self._stage(session, target_stage_id)
            if target.pipeline_id != new_pipeline_id:
                raise InvalidTransition(f"Stage {target_stage_id} does not belong to pipeline {new_pipeline_id}")
            if self._active_entry(session, entry.lead_id, new_pipeline_id) is not None:
                raise InvalidTransition(
                    f"Lead {entry.lead_id} already has an active entry in pipeline {new_pipeline_id}"
                )

            current = self._stage(session, entry.current_stage_id)
            old_pipeline_id = entry.pipeline_id
            entry.pipeline_id = new_pipeline_id
            note = f"Transferred from pipeline {old_pipeline_id}. Reason: {reason.strip()}"
            self._relocate(session, entry, current, target, 'transfer', actor, note=note,
                           from_pipeline_id=old_pipeline_id)
            self._commit(session, entry)
        finally:
            session.close()

        self._emit(entry, current, target, 'transfer', actor, depth=0)
        return entry

    def archive(self, entry_id, reason: str = None, expected_version: int = None, actor: str = 'user') -> LeadPipelineEntry:
        """Terminal. Archiving an already archived entry is a no-op."""
        session = self.session_factory()
        try:
            entry = self._load_entry(session, entry_id, expected_version)
            if entry.enrollment_status == ENTRY_ARCHIVED:
                return entry
            entry.enrollment_status = ENTRY_ARCHIVED
            entry.stage_note = reason or 'Archived by user'
            session.add(StageTransition(
                entry_id=entry.id, lead_id=entry.lead_id, kind='archive',
                from_pipeline_id=entry.pipeline_id, from_stage_id=entry.current_stage_id,
                actor=actor, note=reason,
            ))
            self._commit(session, entry)
            logger.info("Entry %s archived", entry.id)
            return entry
        finally:
            session.close()

    # ── Entry edits ───────────────────────────────────────────────────────

    def set_checklist_item(self, entry_id, item_id, checked: bool, expected_version: int = None) -> LeadPipelineEntry:
        session = self.session_factory()
        try:
            entry = self._load_active(session, entry_id, expected_version)
            item = session.get(ChecklistItem, item_id)
            if item is None or item.stage_id != entry.current_stage_id:
                raise InvalidTransition(f"Checklist item {item_id} does not belong to the entry's current stage")
            state = dict(entry.checklist_state or {})
            state[str(item_id)] = bool(checked)
            entry.checklist_state = state   # reassign so the JSON column is flagged dirty
            self._commit(session, entry)
            return entry
        finally:
            session.close()

    def set_stage_note(self, entry_id, note: str, expected_version: int = None) -> LeadPipelineEntry:
        session = self.session_factory()
        try:
            entry = self._load_active(session, entry_id, expected_version)
            entry.stage_note = note or ''
            self._commit(session, entry)
            return entry
        finally:
            session.close()

    # ── Health ────────────────────────────────────────────────────────────

    def refresh_health(self, entry_id, now=None) -> Tuple[LeadPipelineEntry, bool]:
        """Recompute health; the row is only written when the value changed."""
        session = self.session_factory()
        try:
            entry = self._load_entry(session, entry_id)
            changed = self._apply_health(session, entry, now or self.clock())
            if changed:
                self._commit(session, entry)
            return entry, changed
        finally:
            session.close()

    def refresh_pipeline_health(self, pipeline_id=None, now=None) -> int:
        """Recompute health for every active entry (optionally of one pipeline). Returns rows changed."""
        now = now or self.clock()
        session = self.session_factory()
        try:
            query = session.query(LeadPipelineEntry).filter_by(enrollment_status=ENTRY_ACTIVE)
            if pipeline_id is not None:
                query = query.filter_by(pipeline_id=pipeline_id)
            changed = sum(1 for entry in query.all() if self._apply_health(session, entry, now))
            if changed:
                try:
                    session.commit()
                except StaleDataError:
                    session.rollback()
                    logger.warning("Health sweep hit a concurrent update — will retry next sweep")
                    return 0
            logger.info("Health sweep: %d entries changed", changed)
            return changed
        finally:
            session.close()

    # ── Private helpers ───────────────────────────────────────────────────

    def _apply_health(self, session, entry, now) -> bool:
        if entry.enrollment_status != ENTRY_ACTIVE or entry.current_stage_id is None:
            return False
        stage = session.get(PipelineStage, entry.current_stage_id)
        sla = stage.effective_sla_days if stage else None
        health = compute_health(now, entry.entered_stage_at, sla)
        if health == entry.health:
            return False
        logger.info("Entry %s health %s → %s", entry.id, entry.health, health)
        entry.health = health
        return True

    def _directed_move(self, entry_id, target_stage_id, kind, expected_version, actor):
        session = self.session_factory()
        try:
            entry = self._load_active(session, entry_id, expected_version)
            current = self._stage(session, entry.current_stage_id)
            target = self._stage(session, target_stage_id)
            if target.pipeline_id != entry.pipeline_id:
                raise InvalidTransition(f"Stage {target_stage_id} is not in pipeline {entry.pipeline_id}")
            if kind == 'regress' and not target.order_index < current.order_index:
                raise InvalidTransition(f"'{target.name}' is not before '{current.name}'")
            if kind == 'jump' and not target.order_index > current.order_index:
                raise InvalidTransition(f"'{target.name}' is not after '{current.name}'")
            self._relocate(session, entry, current, target, kind, actor)
            self._commit(session, entry)
        finally:
            session.close()

        self._emit(entry, current, target, kind, actor, depth=0)
        return entry

    def _relocate(self, session, entry, current, target, kind, actor, note=None, from_pipeline_id=None):
        entry.current_stage_id = target.id
        entry.entered_stage_at = self.clock()
        # always green on entry; with a one-day SLA the next refresh reports yellow
        entry.health = HEALTH_GREEN
        if note:
            entry.stage_note = note
        session.add(StageTransition(
            entry_id=entry.id,
            lead_id=entry.lead_id,
            kind=kind,
            from_pipeline_id=from_pipeline_id or entry.pipeline_id,
            to_pipeline_id=entry.pipeline_id,
            from_stage_id=current.id if current else None,
            to_stage_id=target.id,
            actor=actor,
            note=note,
        ))
        logger.info("Entry %s %s: '%s' → '%s' (%s)", entry.id, kind,
                    current.name if current else '-', target.name, actor)

    def _commit(self, session, entry):
        try:
            session.commit()
        except StaleDataError:
            session.rollback()
            raise ConflictError(entry.id)
        except Exception:
            session.rollback()
            raise

    def _emit(self, entry, from_stage, to_stage, kind, actor, depth):
        if self.event_sink is None:
            return
        event = DomainEvent(
            type='stage_change',
            lead_id=entry.lead_id,
            context={
                'entry_id': entry.id,
                'pipeline_id': entry.pipeline_id,
                'from_stage_id': from_stage.id if from_stage else None,
                'from_stage': from_stage.name if from_stage else None,
                'to_stage_id': to_stage.id,
                'to_stage': to_stage.name,
                'transition': kind,
                'actor': actor,
            },
            depth=depth,
        )
        try:
            self.event_sink(event)
        except Exception:
            # The transition is committed; a failing listener must not undo it
            logger.error("stage_change listener failed for entry %s", entry.id, exc_info=True)

    def _gate(self, session, entry, stage, criteria_acknowledged) -> GateResult:
        items = session.query(ChecklistItem).filter_by(stage_id=stage.id).all()
        return evaluate_gate(items, entry.checklist_state, stage.exit_criteria, criteria_acknowledged)

    @staticmethod
    def _stages(session, pipeline_id) -> List[PipelineStage]:
        return session.query(PipelineStage).filter_by(
            pipeline_id=pipeline_id,
        ).order_by(PipelineStage.order_index).all()

    @staticmethod
    def _stage(session, stage_id) -> PipelineStage:
        stage = session.get(PipelineStage, stage_id) if stage_id is not None else None
        if stage is None:
            raise InvalidTransition(f"Stage {stage_id} does not exist")
        return stage

    @staticmethod
    def _active_entry(session, lead_id, pipeline_id):
        return session.query(LeadPipelineEntry).filter_by(
            lead_id=lead_id, pipeline_id=pipeline_id, enrollment_status=ENTRY_ACTIVE,
        ).first()

    @staticmethod
    def _load_entry(session, entry_id, expected_version=None) -> LeadPipelineEntry:
        entry = session.get(LeadPipelineEntry, entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        if expected_version is not None and entry.version != expected_version:
            raise ConflictError(entry_id, expected_version, entry.version)
        return entry

    def _load_active(self, session, entry_id, expected_version=None) -> LeadPipelineEntry:
        entry = self._load_entry(session, entry_id, expected_version)
        if entry.enrollment_status != ENTRY_ACTIVE:
            raise InvalidTransition(f"Entry {entry_id} is archived")
        return entry
