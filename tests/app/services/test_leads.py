"""Tests for app.services.leads -- lead field, score and activity updates."""
from datetime import timedelta

import pytest

from app.automation.errors import LeadNotFound
from app.automation.health import as_utc
from app.models.lead import Lead
from app.services.leads import LeadService, classify_score, compute_lead_score


@pytest.fixture
def events():
    return []


@pytest.fixture
def service(session_factory, clock, events):
    return LeadService(session_factory, dispatch=events.append, clock=clock)


@pytest.fixture
def lead_id(seed):
    return seed.lead(status='new')


class TestScoring:

    def test_all_factors(self):
        score = compute_lead_score({
            'appointments_completed': 2,     # 20
            'days_in_pipeline': 5,           # 15
            'interaction_count': 3,          # 15
            'revenue': 100000,               # capped at 50
        })
        assert score == 100

    def test_old_leads_get_no_recency_bonus(self):
        assert compute_lead_score({'days_in_pipeline': 45}) == 0

    def test_empty_factors(self):
        assert compute_lead_score({}) == 0
        assert compute_lead_score(None) == 0

    def test_revenue_rounds(self):
        assert compute_lead_score({'revenue': 2600}) == 3

    @pytest.mark.parametrize('score,expected', [(95, 'high'), (80, 'high'), (79, 'medium'), (50, 'medium'), (49, 'low')])
    def test_classification(self, score, expected):
        assert classify_score(score) == expected


class TestUpdateField:

    def test_column_field(self, service, seed, lead_id, events):
        old, new = service.update_field(lead_id, 'status', 'qualified')

        assert (old, new) == ('new', 'qualified')
        assert seed.all(Lead, id=lead_id)[0].status == 'qualified'
        assert events[0].type == 'field_change'
        assert events[0].context == {
            'field': 'status', 'old_value': 'new', 'new_value': 'qualified', 'status': 'qualified',
        }
        assert events[0].depth == 0

    def test_custom_field(self, service, seed, lead_id):
        service.update_field(lead_id, 'industry', 'retail')
        assert seed.all(Lead, id=lead_id)[0].custom_fields == {'industry': 'retail'}

    def test_unchanged_value_raises_no_event(self, service, lead_id, events):
        service.update_field(lead_id, 'status', 'new')
        assert events == []

    def test_depth_is_propagated(self, service, lead_id, events):
        service.update_field(lead_id, 'status', 'won', depth=2)
        assert events[0].depth == 2

    @pytest.mark.parametrize('field', ['id', 'lead_score', 'custom_fields', ''])
    def test_read_only_fields(self, service, lead_id, field):
        with pytest.raises(ValueError):
            service.update_field(lead_id, field, 1)

    def test_missing_lead(self, service):
        with pytest.raises(LeadNotFound):
            service.update_field(999, 'status', 'x')

    def test_assign_user(self, service, seed, lead_id, events):
        service.assign_user(lead_id, 42)
        assert seed.all(Lead, id=lead_id)[0].responsible_user_id == '42'
        assert events[0].context['field'] == 'responsible_user_id'

    def test_assign_user_requires_user(self, service, lead_id):
        with pytest.raises(ValueError):
            service.assign_user(lead_id, None)


class TestUpdateScore:

    def test_stores_and_emits(self, service, seed, lead_id, events):
        score = service.update_score(lead_id, {'appointments_completed': 6})

        assert score == 60
        lead = seed.all(Lead, id=lead_id)[0]
        assert lead.lead_score == 60
        assert lead.score_classification == 'medium'
        assert events[0].type == 'lead_score'
        assert events[0].context == {'score': 60, 'classification': 'medium', 'previous_score': None}

    def test_previous_score_reported(self, service, lead_id, events):
        service.update_score(lead_id, {'interaction_count': 2})
        service.update_score(lead_id, {'interaction_count': 4})
        assert events[1].context['previous_score'] == 10


class TestRecordActivity:

    def test_defaults_to_now(self, service, seed, lead_id, clock):
        service.record_activity(lead_id)
        assert as_utc(seed.all(Lead, id=lead_id)[0].last_activity_at) == clock()

    def test_explicit_time(self, service, seed, lead_id, clock):
        at = clock() - timedelta(days=2)
        service.record_activity(lead_id, at=at)
        assert as_utc(seed.all(Lead, id=lead_id)[0].last_activity_at) == at

    def test_listener_failure_is_contained(self, session_factory, clock, lead_id):
        def broken(event):
            raise RuntimeError('queue down')

        service = LeadService(session_factory, dispatch=broken, clock=clock)
        assert service.update_field(lead_id, 'status', 'won') == ('new', 'won')
