"""Tests for AutomationEngine event routing, chaining and the RQ job."""
import pytest
from unittest.mock import patch, MagicMock

from app.automation.engine import AutomationEngine, process_event_job, summarize
from app.automation.events import DomainEvent
from app.models.automation import AutomationExecution
from app.models.notification import Notification

NOTIFY = {'type': 'send_notification', 'parameters': {'title': 'Stage changed'}}


@pytest.fixture
def engine(automation_engine):
    return automation_engine


@pytest.fixture
def sales(seed):
    return seed.pipeline()


@pytest.fixture
def lead_id(seed):
    return seed.lead()


class TestDomainEvent:

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            DomainEvent(type='page_view', lead_id=1)

    @pytest.mark.parametrize('context', [['x'], 'won', 3])
    def test_non_mapping_context_rejected(self, context):
        with pytest.raises(ValueError, match='context must be an object'):
            DomainEvent(type='field_change', lead_id=1, context=context)

    def test_dict_round_trip_keeps_depth(self):
        event = DomainEvent(type='inactivity', lead_id=3, context={'days_inactive': 4}, depth=2)
        assert DomainEvent.from_dict(event.to_dict()) == event


class TestProcess:

    def test_stage_change_runs_matching_rules(self, engine, seed, sales, lead_id):
        engine.store.create('On meeting', 'stage_change', {'to_stage': 'Meeting'}, [NOTIFY])
        engine.store.create('On won', 'stage_change', {'to_stage': 'Won'}, [NOTIFY])

        entry = engine.transitions.enroll(lead_id, sales.id)
        engine.transitions.jump(entry.id, sales.stages[2])

        executions = seed.all(AutomationExecution)
        assert [(e.rule_name, e.status) for e in executions] == [('On meeting', 'completed')]
        assert executions[0].event_context['to_stage'] == 'Meeting'
        assert seed.count(Notification) == 1

    def test_returns_executions_in_priority_order(self, engine, lead_id):
        engine.store.create('second', 'lead_score', {}, [NOTIFY])
        engine.store.create('first', 'lead_score', {}, [NOTIFY], priority=3)

        executions = engine.process(DomainEvent(type='lead_score', lead_id=lead_id, context={'score': 10}))
        assert [e.rule_name for e in executions] == ['first', 'second']

    def test_failing_rule_does_not_block_others(self, engine, seed, lead_id):
        engine.store.create('broken', 'lead_score', {}, [{'type': 'update_field', 'parameters': {}}], priority=1)
        engine.store.create('fine', 'lead_score', {}, [NOTIFY])

        executions = engine.process(DomainEvent(type='lead_score', lead_id=lead_id))
        summary = summarize(executions)

        assert summary['matched'] == 2
        assert summary['failed'] == 1
        assert summary['completed'] == 1
        assert seed.count(Notification) == 1

    def test_ledger_error_is_contained(self, engine, lead_id):
        engine.store.create('a', 'lead_score', {}, [NOTIFY])
        engine.store.create('b', 'lead_score', {}, [NOTIFY])

        real_execute = engine.executor.execute
        calls = []

        def flaky_execute(rule, event):
            calls.append(rule.name)
            if rule.name == 'a':
                raise RuntimeError('database hiccup')
            return real_execute(rule, event)

        with patch.object(engine.executor, 'execute', side_effect=flaky_execute):
            executions = engine.process(DomainEvent(type='lead_score', lead_id=lead_id))

        assert calls == ['a', 'b']
        assert [e.rule_name for e in executions] == ['b']

    def test_no_matching_rules(self, engine, lead_id):
        assert engine.process(DomainEvent(type='inactivity', lead_id=lead_id)) == []


class TestChaining:

    def test_action_events_chain_to_other_rules(self, engine, seed, sales, lead_id):
        engine.store.create('Hot lead', 'lead_score', {'score': {'operator': 'greater_than', 'value': 80}},
                            [{'type': 'move_stage', 'parameters': {'stage_id': sales.stages[2]}}])
        engine.store.create('Meeting booked', 'stage_change', {'to_stage': 'Meeting'},
                            [{'type': 'create_appointment', 'parameters': {}}])
        engine.transitions.enroll(lead_id, sales.id)

        engine.leads.update_score(lead_id, {'appointments_completed': 5, 'interaction_count': 8})

        executions = seed.all(AutomationExecution)
        assert [e.rule_name for e in executions] == ['Hot lead', 'Meeting booked']
        assert all(e.status == 'completed' for e in executions)

    def test_chain_depth_bounds_rule_loops(self, session_factory, clock, seed, lead_id):
        engine = AutomationEngine(session_factory=session_factory, clock=clock, async_dispatch=False,
                                  max_chain_depth=3)
        pipeline = seed.pipeline(stages=('A', 'B'))
        engine.store.create('B to A', 'stage_change', {'to_stage': 'B'},
                            [{'type': 'move_stage', 'parameters': {'stage_id': pipeline.stages[0]}}])
        engine.store.create('A to B', 'stage_change', {'to_stage': 'A', 'transition': 'move'},
                            [{'type': 'move_stage', 'parameters': {'stage_id': pipeline.stages[1]}}])

        entry = engine.transitions.enroll(lead_id, pipeline.id)
        engine.transitions.jump(entry.id, pipeline.stages[1])

        executions = seed.all(AutomationExecution)
        # depths 0..3 run a rule; the depth-4 event is dropped
        assert len(executions) == 4
        assert all(e.status == 'completed' for e in executions)
        assert engine.transitions.get_entry(entry.id).current_stage_id == pipeline.stages[1]

    def test_event_beyond_max_depth_is_dropped(self, engine, lead_id):
        engine.store.create('any', 'lead_score', {}, [NOTIFY])
        event = DomainEvent(type='lead_score', lead_id=lead_id, depth=engine.max_chain_depth + 1)
        assert engine.process(event) == []


class TestAsyncDispatch:

    def test_dispatch_enqueues_when_async(self, session_factory, clock):
        engine = AutomationEngine(session_factory=session_factory, clock=clock, async_dispatch=True)
        queue = MagicMock()
        queue.enqueue.return_value = MagicMock(id='job-1')
        event = DomainEvent(type='inactivity', lead_id=5, context={'days_inactive': 4})

        with patch('app.extensions.get_queue', return_value=queue):
            assert engine.dispatch(event) == []

        queue.enqueue.assert_called_once_with(process_event_job, event.to_dict(), job_timeout=600)

    def test_dispatch_processes_inline_when_sync(self, engine, lead_id):
        engine.store.create('any', 'inactivity', {}, [NOTIFY])
        executions = engine.dispatch(DomainEvent(type='inactivity', lead_id=lead_id))
        assert len(executions) == 1

    def test_job_processes_serialized_event(self, engine, lead_id):
        engine.store.create('any', 'inactivity', {}, [NOTIFY])
        payload = DomainEvent(type='inactivity', lead_id=lead_id, context={'days_inactive': 5}).to_dict()

        with patch('app.automation.engine.get_engine', return_value=engine):
            summary = process_event_job(payload)

        assert summary['matched'] == 1
        assert summary['completed'] == 1
        assert summary['executions'][0]['event_type'] == 'inactivity'
