"""Tests for the periodic scheduler (health sweep + time-based events)."""
import threading
from datetime import timedelta

import pytest
from unittest.mock import patch

from app.automation.scheduler import AutomationScheduler
from app.models.entry import LeadPipelineEntry
from app.models.notification import Notification


@pytest.fixture
def engine(automation_engine):
    return automation_engine


@pytest.fixture
def scheduler(engine, mock_redis, clock):
    return AutomationScheduler(engine, redis_client=mock_redis, clock=clock, inactivity_days=3)


@pytest.fixture
def sales(seed):
    return seed.pipeline(stages=({'name': 'Lead In', 'sla_days': 5}, 'Qualified'))


def _events_by_type(pairs):
    grouped = {}
    for key, event in pairs:
        grouped.setdefault(event.type, []).append((key, event))
    return grouped


class TestCollectEvents:

    def test_time_elapsed_after_a_full_day(self, scheduler, seed, sales, clock):
        lead = seed.lead(last_activity_at=clock())
        entry_id = seed.entry(lead, sales.id, sales.stages[0], entered_stage_at=clock() - timedelta(days=6, hours=1))

        events = _events_by_type(scheduler.collect_events(clock()))
        key, event = events['time_elapsed'][0]

        assert event.lead_id == lead
        assert event.context['entry_id'] == entry_id
        assert event.context['stage_name'] == 'Lead In'
        assert event.context['days_in_stage'] == 6
        assert event.context['sla_days'] == 5
        assert event.context['overdue_days'] == 1
        assert event.context['health'] == 'red'
        assert key.startswith(f'automation:tick:time_elapsed:{entry_id}:{sales.stages[0]}:')
        assert key.endswith(':6')
        assert 'inactivity' not in events

    def test_nothing_on_day_zero(self, scheduler, seed, sales, clock):
        seed.entry(seed.lead(), sales.id, sales.stages[0], entered_stage_at=clock() - timedelta(hours=20))
        assert scheduler.collect_events(clock()) == []

    def test_inactivity_uses_stage_entry_without_activity(self, scheduler, seed, sales, clock):
        entry_id = seed.entry(seed.lead(), sales.id, sales.stages[0], entered_stage_at=clock() - timedelta(days=4))

        key, event = _events_by_type(scheduler.collect_events(clock()))['inactivity'][0]
        assert event.context == {
            'entry_id': entry_id,
            'pipeline_id': sales.id,
            'stage_id': sales.stages[0],
            'days_inactive': 4,
        }
        assert key == f'automation:tick:inactivity:{entry_id}:4'

    def test_recent_activity_suppresses_inactivity(self, scheduler, seed, sales, clock):
        lead = seed.lead(last_activity_at=clock() - timedelta(days=1))
        seed.entry(lead, sales.id, sales.stages[0], entered_stage_at=clock() - timedelta(days=4))

        assert 'inactivity' not in _events_by_type(scheduler.collect_events(clock()))

    def test_archived_entries_ignored(self, scheduler, seed, sales, clock):
        seed.entry(seed.lead(), sales.id, sales.stages[0], entered_stage_at=clock() - timedelta(days=30),
                   enrollment_status='archived')
        assert scheduler.collect_events(clock()) == []


class TestTick:

    def test_dispatches_claimed_events(self, scheduler, engine, seed, sales, clock, mock_redis):
        engine.store.create('Overdue', 'time_elapsed',
                            {'days_in_stage': {'operator': 'greater_than', 'value': 5}},
                            [{'type': 'send_notification', 'parameters': {'title': 'Overdue lead'}}])
        seed.entry(seed.lead(last_activity_at=clock()), sales.id, sales.stages[0],
                   entered_stage_at=clock() - timedelta(days=6))

        result = scheduler.tick()

        assert result == {'health_updated': 1, 'emitted': 1, 'skipped': 0, 'failed': 0}
        assert [n.title for n in seed.all(Notification)] == ['Overdue lead']
        key = mock_redis.set.call_args[0][0]
        assert key.startswith('automation:tick:time_elapsed:')
        assert mock_redis.set.call_args[1] == {'nx': True, 'ex': scheduler.dedup_ttl}

    def test_already_claimed_events_are_skipped(self, scheduler, engine, seed, sales, clock, mock_redis):
        mock_redis.set.return_value = None
        seed.entry(seed.lead(), sales.id, sales.stages[0], entered_stage_at=clock() - timedelta(days=4))

        with patch.object(engine, 'dispatch') as dispatch:
            result = scheduler.tick()

        dispatch.assert_not_called()
        assert result['emitted'] == 0
        assert result['skipped'] == 2      # time_elapsed + inactivity

    def test_redis_outage_fails_open(self, scheduler, engine, seed, sales, clock, mock_redis):
        mock_redis.set.side_effect = ConnectionError('redis down')
        seed.entry(seed.lead(last_activity_at=clock()), sales.id, sales.stages[0],
                   entered_stage_at=clock() - timedelta(days=2))

        with patch.object(engine, 'dispatch') as dispatch:
            result = scheduler.tick()

        assert result['emitted'] == 1
        assert dispatch.call_args[0][0].type == 'time_elapsed'

    def test_health_sweep_persists(self, scheduler, seed, sales, clock):
        entry_id = seed.entry(seed.lead(last_activity_at=clock()), sales.id, sales.stages[0],
                              entered_stage_at=clock() - timedelta(days=4))
        scheduler.tick()
        assert seed.all(LeadPipelineEntry, id=entry_id)[0].health == 'yellow'

    def test_without_redis_every_tick_emits(self, engine, seed, sales, clock):
        scheduler = AutomationScheduler(engine, redis_client=None, clock=clock)
        seed.entry(seed.lead(last_activity_at=clock()), sales.id, sales.stages[0],
                   entered_stage_at=clock() - timedelta(days=2))

        with patch.object(engine, 'dispatch') as dispatch:
            scheduler.tick()
            scheduler.tick()
        assert dispatch.call_count == 2

    def test_failed_dispatch_releases_key_and_continues(self, scheduler, engine, seed, sales, clock, mock_redis):
        for _ in range(3):
            seed.entry(seed.lead(last_activity_at=clock()), sales.id, sales.stages[0],
                       entered_stage_at=clock() - timedelta(days=2))

        with patch.object(engine, 'dispatch', side_effect=[ConnectionError('redis down'), None, None]) as dispatch:
            result = scheduler.tick()

        assert dispatch.call_count == 3
        assert result['emitted'] == 2
        assert result['failed'] == 1
        first_key = mock_redis.set.call_args_list[0][0][0]
        mock_redis.delete.assert_called_once_with(first_key)


class TestRunForever:

    def test_stops_when_event_set(self, scheduler):
        stop = threading.Event()
        with patch.object(scheduler, 'tick', side_effect=lambda: stop.set()) as tick:
            scheduler.run_forever(interval=0, stop_event=stop)
        tick.assert_called_once()

    def test_tick_errors_do_not_kill_the_loop(self, scheduler):
        stop = threading.Event()
        calls = []

        def failing_tick():
            calls.append(1)
            if len(calls) == 2:
                stop.set()
            raise RuntimeError('db down')

        with patch.object(scheduler, 'tick', side_effect=failing_tick):
            scheduler.run_forever(interval=0, stop_event=stop)
        assert len(calls) == 2
