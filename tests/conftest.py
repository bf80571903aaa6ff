"""Shared test fixtures."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, import_models


NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock pinned to a fixed instant; tests move it explicitly."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created.

    StaticPool keeps a single connection so every session sees the same database.
    """
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import_models()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the in-memory engine (same settings as production)."""
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_redis():
    """Mock Redis client. SET NX succeeds unless a test says otherwise."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.set.return_value = True
    with patch('app.extensions.redis_client', mock):
        yield mock


class Seeder:
    """Writes fixture rows directly, one committed session per call."""

    DEFAULT_STAGES = ('Lead In', 'Qualified', 'Meeting', 'Proposal', 'Won')

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, obj):
        session = self.session_factory()
        try:
            session.add(obj)
            session.commit()
            return obj.id
        finally:
            session.close()

    def lead(self, **fields):
        from app.models.lead import Lead
        fields.setdefault('name', 'Test Lead')
        fields.setdefault('email', 'lead@example.com')
        fields.setdefault('custom_fields', {})
        return self._add(Lead(**fields))

    def pipeline(self, name='Sales', stages=DEFAULT_STAGES, active=True):
        """Create a pipeline; stages are names or dicts of PipelineStage columns.

        Returns a namespace with `id` and `stages` (stage ids in order).
        """
        from app.models.pipeline import Pipeline, PipelineStage
        pipeline_id = self._add(Pipeline(name=name, active=active))
        stage_ids = []
        for i, stage in enumerate(stages):
            columns = {'name': stage} if isinstance(stage, str) else dict(stage)
            columns.setdefault('order_index', i)
            stage_ids.append(self._add(PipelineStage(pipeline_id=pipeline_id, **columns)))
        return SimpleNamespace(id=pipeline_id, stages=stage_ids)

    def checklist_item(self, stage_id, title, required=True, order_index=0):
        from app.models.pipeline import ChecklistItem
        return self._add(ChecklistItem(stage_id=stage_id, title=title, required=required, order_index=order_index))

    def entry(self, lead_id, pipeline_id, stage_id, entered_stage_at=NOW, **fields):
        from app.models.entry import LeadPipelineEntry
        fields.setdefault('checklist_state', {})
        return self._add(LeadPipelineEntry(
            lead_id=lead_id,
            pipeline_id=pipeline_id,
            current_stage_id=stage_id,
            entered_stage_at=entered_stage_at,
            **fields,
        ))

    def count(self, model, **filters):
        session = self.session_factory()
        try:
            return session.query(model).filter_by(**filters).count()
        finally:
            session.close()

    def all(self, model, **filters):
        session = self.session_factory()
        try:
            return session.query(model).filter_by(**filters).order_by(model.id).all()
        finally:
            session.close()


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def automation_engine(session_factory, clock):
    """Synchronous engine on the in-memory database, no Slack, no retry sleeps."""
    from app.automation.engine import AutomationEngine
    from app.services.notifications import NotificationService
    return AutomationEngine(
        session_factory=session_factory,
        clock=clock,
        notifications=NotificationService(session_factory, webhook_url=None),
        async_dispatch=False,
        executor_options={'sleep': lambda seconds: None},
    )


@pytest.fixture
def app(automation_engine):
    """Flask test app serving the test engine."""
    from app import create_app
    app = create_app(engine=automation_engine)
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c
