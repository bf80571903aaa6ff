"""Tests for the execution ledger lifecycle."""
from types import SimpleNamespace

import pytest

from app.automation.events import DomainEvent
from app.automation.ledger import ExecutionLedger


@pytest.fixture
def ledger(session_factory, clock):
    return ExecutionLedger(session_factory, clock)


@pytest.fixture
def rule():
    return SimpleNamespace(id='rule-1', name='Welcome')


@pytest.fixture
def event():
    return DomainEvent(type='stage_change', lead_id=7, context={'to_stage': 'Won'})


class TestLifecycle:

    def test_open_is_pending(self, ledger, rule, event):
        execution = ledger.open(rule, event)
        assert execution.status == 'pending'
        assert execution.rule_id == 'rule-1'
        assert execution.lead_id == 7
        assert execution.event_context == {'to_stage': 'Won'}
        assert execution.steps == []

    def test_happy_path(self, ledger, rule, event, clock):
        execution = ledger.open(rule, event)
        ledger.start(execution.id)
        ledger.record_step(execution.id, {'index': 0, 'type': 'send_notification', 'status': 'completed'})
        done = ledger.complete(execution.id)

        assert done.status == 'completed'
        assert done.started_at is not None
        assert done.finished_at is not None
        assert [s['index'] for s in ledger.get(execution.id).steps] == [0]

    def test_fail_records_error(self, ledger, rule, event):
        execution = ledger.open(rule, event)
        ledger.start(execution.id)
        failed = ledger.fail(execution.id, 'Action #2 (update_field) failed: boom')
        assert failed.status == 'failed'
        assert 'boom' in failed.error

    def test_finished_records_are_immutable(self, ledger, rule, event):
        execution = ledger.open(rule, event)
        ledger.start(execution.id)
        ledger.complete(execution.id)

        with pytest.raises(ValueError):
            ledger.start(execution.id)
        with pytest.raises(ValueError):
            ledger.fail(execution.id, 'late')
        with pytest.raises(ValueError):
            ledger.record_step(execution.id, {'index': 1})

    def test_cannot_complete_without_starting(self, ledger, rule, event):
        execution = ledger.open(rule, event)
        with pytest.raises(ValueError):
            ledger.complete(execution.id)

    def test_pending_can_fail(self, ledger, rule, event):
        execution = ledger.open(rule, event)
        assert ledger.fail(execution.id, 'never started').status == 'failed'

    def test_unknown_execution(self, ledger):
        with pytest.raises(ValueError):
            ledger.get(999)


class TestList:

    def test_filters_and_newest_first(self, ledger, rule, event):
        other_rule = SimpleNamespace(id='rule-2', name='Other')
        other_lead = DomainEvent(type='stage_change', lead_id=8)

        first = ledger.open(rule, event)
        second = ledger.open(other_rule, event)
        third = ledger.open(rule, other_lead)
        ledger.fail(first.id, 'x')

        assert [e.id for e in ledger.list()] == [third.id, second.id, first.id]
        assert [e.id for e in ledger.list(rule_id='rule-1')] == [third.id, first.id]
        assert [e.id for e in ledger.list(lead_id=7)] == [second.id, first.id]
        assert [e.id for e in ledger.list(status='failed')] == [first.id]
        assert len(ledger.list(limit=1)) == 1
