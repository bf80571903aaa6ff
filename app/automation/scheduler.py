"""
Periodic driver for time-based triggers.

Each tick:
  1. refreshes cached health for every active entry (writes only changes)
  2. emits `time_elapsed` for entries that have spent at least a day in stage
  3. emits `inactivity` for leads idle for INACTIVITY_DAYS or more

Events go through the same AutomationEngine.dispatch() used by reactive
sources. A Redis SET NX key per (event, entry, stage entry, day) makes each
event fire at most once per day value, however often the tick runs. If Redis
is unreachable the tick fails open and emits anyway. A failed dispatch
releases its key and the tick carries on with the remaining events.
"""
import logging
import threading
from typing import Callable, Dict, List

from app.config import (
    ENTRY_ACTIVE, INACTIVITY_DAYS, SCHEDULER_DEDUP_TTL, SCHEDULER_INTERVAL_SECONDS,
)
from app.models.entry import LeadPipelineEntry
from app.models.lead import Lead
from app.models.pipeline import PipelineStage
from app.automation.events import DomainEvent
from app.automation.health import as_utc, compute_health, days_between

logger = logging.getLogger('automation.scheduler')


class AutomationScheduler:

    KEY_PREFIX = 'automation:tick'

    def __init__(self, engine, redis_client=None, clock: Callable = None,
                 inactivity_days: int = INACTIVITY_DAYS, dedup_ttl: int = SCHEDULER_DEDUP_TTL):
        self.engine = engine
        self.redis = redis_client
        self.clock = clock or engine.clock
        self.inactivity_days = inactivity_days
        self.dedup_ttl = dedup_ttl

    def tick(self, now=None) -> Dict[str, int]:
        now = now or self.clock()
        health_updated = self.engine.transitions.refresh_pipeline_health(now=now)

        emitted = skipped = failed = 0
        for key, event in self.collect_events(now):
            if not self._claim(key):
                skipped += 1
                continue
            try:
                self.engine.dispatch(event)
            except Exception:
                # released so the next tick retries it
                logger.error("Dispatch of %s event for lead %s failed", event.type, event.lead_id,
                             exc_info=True, extra={'lead_id': event.lead_id})
                self._release(key)
                failed += 1
                continue
            emitted += 1

        logger.info("Scheduler tick: %d health updates, %d events emitted, %d already sent, %d failed",
                    health_updated, emitted, skipped, failed)
        return {'health_updated': health_updated, 'emitted': emitted, 'skipped': skipped, 'failed': failed}

    def collect_events(self, now) -> List[tuple]:
        """(dedup_key, DomainEvent) pairs for every active entry due an event."""
        session = self.engine.session_factory()
        try:
            rows = session.query(LeadPipelineEntry, PipelineStage, Lead).join(
                PipelineStage, PipelineStage.id == LeadPipelineEntry.current_stage_id,
            ).join(
                Lead, Lead.id == LeadPipelineEntry.lead_id,
            ).filter(
                LeadPipelineEntry.enrollment_status == ENTRY_ACTIVE,
            ).all()
        finally:
            session.close()

        events = []
        for entry, stage, lead in rows:
            if entry.entered_stage_at is None:
                continue
            stamp = int(as_utc(entry.entered_stage_at).timestamp())
            sla_days = stage.effective_sla_days
            days_in_stage = days_between(entry.entered_stage_at, now)

            if days_in_stage >= 1:
                events.append((
                    f'{self.KEY_PREFIX}:time_elapsed:{entry.id}:{stage.id}:{stamp}:{days_in_stage}',
                    DomainEvent(type='time_elapsed', lead_id=entry.lead_id, context={
                        'entry_id': entry.id,
                        'pipeline_id': entry.pipeline_id,
                        'stage_id': stage.id,
                        'stage_name': stage.name,
                        'days_in_stage': days_in_stage,
                        'sla_days': sla_days,
                        'overdue_days': max(0, days_in_stage - sla_days),
                        'health': compute_health(now, entry.entered_stage_at, sla_days),
                    }),
                ))

            # entering a stage counts as activity; health refreshes do not
            last_activity = max(as_utc(entry.entered_stage_at), as_utc(lead.last_activity_at)) \
                if lead.last_activity_at else entry.entered_stage_at
            days_inactive = days_between(last_activity, now)
            if days_inactive >= self.inactivity_days:
                events.append((
                    f'{self.KEY_PREFIX}:inactivity:{entry.id}:{days_inactive}',
                    DomainEvent(type='inactivity', lead_id=entry.lead_id, context={
                        'entry_id': entry.id,
                        'pipeline_id': entry.pipeline_id,
                        'stage_id': stage.id,
                        'days_inactive': days_inactive,
                    }),
                ))
        return events

    def run_forever(self, interval: int = SCHEDULER_INTERVAL_SECONDS, stop_event: threading.Event = None):
        """Tick every `interval` seconds until stop_event is set."""
        stop_event = stop_event or threading.Event()
        logger.info("Scheduler started (interval=%ds)", interval)
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.error("Scheduler tick failed", exc_info=True)
            stop_event.wait(interval)
        logger.info("Scheduler stopped")

    def _claim(self, key) -> bool:
        if self.redis is None:
            return True
        try:
            return bool(self.redis.set(key, '1', nx=True, ex=self.dedup_ttl))
        except Exception:
            logger.warning("Redis unavailable for scheduler dedup — emitting %s anyway", key)
            return True

    def _release(self, key):
        if self.redis is None:
            return
        try:
            self.redis.delete(key)
        except Exception:
            logger.warning("Could not release scheduler key %s; it expires after %ds", key, self.dedup_ttl)
