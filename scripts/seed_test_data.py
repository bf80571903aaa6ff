#!/usr/bin/env python3
"""
Seed a demo sales pipeline for trying the automation engine locally.

Creates:
  1. A "Sales" pipeline: Lead In → Qualified → Meeting → Proposal → Won
     (checklist items on Qualified, exit criteria on Proposal,
      auto-booked 45 minute meeting on Meeting)
  2. A "Nurture" pipeline for transfers
  3. A handful of leads enrolled at different stages
  4. Two rules: notify on entering Meeting, book an appointment on high scores

Usage:
    python scripts/seed_test_data.py          # seed everything
    python scripts/seed_test_data.py --clear  # wipe seeded data first

Requires: DATABASE_URL set (or defaults to sqlite:///local.db).
"""
import sys
import os
import argparse
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import get_session, engine, Base, import_models
from app.automation.engine import get_engine
from app.automation.health import utcnow


SEED_PIPELINE_NAMES = ('Sales (seed)', 'Nurture (seed)')

LEADS = [
    {'name': 'Jane Morrison',  'email': 'jane@example.com',   'stage': 0, 'days_ago': 1},
    {'name': 'Mik Andersen',   'email': 'mik@example.com',    'stage': 1, 'days_ago': 6},
    {'name': 'Sophie Laurent', 'email': 'sophie@example.com', 'stage': 2, 'days_ago': 9},
    {'name': 'Carlos Reyes',   'email': 'carlos@example.com', 'stage': 3, 'days_ago': 2},
]


def seed_pipelines(session):
    from app.models.pipeline import Pipeline, PipelineStage, ChecklistItem

    sales = Pipeline(name=SEED_PIPELINE_NAMES[0])
    nurture = Pipeline(name=SEED_PIPELINE_NAMES[1])
    session.add_all([sales, nurture])
    session.flush()

    stages = [
        PipelineStage(pipeline_id=sales.id, name='Lead In', order_index=0, sla_days=3),
        PipelineStage(pipeline_id=sales.id, name='Qualified', order_index=1, sla_days=5),
        PipelineStage(pipeline_id=sales.id, name='Meeting', order_index=2, sla_days=7,
                      auto_appointment=True, appointment_minutes=45),
        PipelineStage(pipeline_id=sales.id, name='Proposal', order_index=3, sla_days=10,
                      exit_criteria='Proposal signed by the customer'),
        PipelineStage(pipeline_id=sales.id, name='Won', order_index=4),
        PipelineStage(pipeline_id=nurture.id, name='Cold', order_index=0, sla_days=30),
        PipelineStage(pipeline_id=nurture.id, name='Warm', order_index=1, sla_days=14),
    ]
    session.add_all(stages)
    session.flush()

    qualified = stages[1]
    session.add_all([
        ChecklistItem(stage_id=qualified.id, title='Budget confirmed', order_index=0, required=True),
        ChecklistItem(stage_id=qualified.id, title='Decision maker identified', order_index=1, required=True),
        ChecklistItem(stage_id=qualified.id, title='Competitors noted', order_index=2, required=False),
    ])
    print(f'  [1] Pipelines: {sales.name} ({sales.id}), {nurture.name} ({nurture.id})')
    return sales, stages


def seed_leads(session, sales, stages):
    from app.models.lead import Lead
    from app.models.entry import LeadPipelineEntry

    now = utcnow()
    for row in LEADS:
        lead = Lead(name=row['name'], email=row['email'], status='open', custom_fields={})
        session.add(lead)
        session.flush()
        session.add(LeadPipelineEntry(
            lead_id=lead.id,
            pipeline_id=sales.id,
            current_stage_id=stages[row['stage']].id,
            entered_stage_at=now - timedelta(days=row['days_ago']),
            checklist_state={},
        ))
    print(f'  [2] Leads:     {len(LEADS)} enrolled in {sales.name}')


def seed_rules(stages):
    store = get_engine().store
    store.create(
        name='Notify on meeting stage',
        trigger_type='stage_change',
        conditions={'to_stage_id': stages[2].id},
        actions=[{'type': 'send_notification',
                  'parameters': {'title': 'Meeting stage reached', 'priority': 'high'}}],
    )
    store.create(
        name='Book call for hot leads',
        trigger_type='lead_score',
        conditions={'score': {'operator': 'greater_than', 'value': 79}},
        actions=[{'type': 'create_appointment', 'parameters': {'title': 'Discovery call'}},
                 {'type': 'update_field', 'parameters': {'field': 'status', 'value': 'hot'}}],
        priority=10,
    )
    print('  [3] Rules:     2 automation rules')


def clear_seeded_data(session):
    from app.models.pipeline import Pipeline, PipelineStage, ChecklistItem
    from app.models.entry import LeadPipelineEntry, StageTransition

    pipelines = session.query(Pipeline).filter(Pipeline.name.in_(SEED_PIPELINE_NAMES)).all()
    if not pipelines:
        print('No seeded data found.')
        return
    pipeline_ids = [p.id for p in pipelines]
    stage_ids = [s.id for s in session.query(PipelineStage).filter(PipelineStage.pipeline_id.in_(pipeline_ids))]
    entry_ids = [e.id for e in session.query(LeadPipelineEntry).filter(LeadPipelineEntry.pipeline_id.in_(pipeline_ids))]

    session.query(StageTransition).filter(StageTransition.entry_id.in_(entry_ids)).delete(synchronize_session=False)
    session.query(LeadPipelineEntry).filter(LeadPipelineEntry.id.in_(entry_ids)).delete(synchronize_session=False)
    session.query(ChecklistItem).filter(ChecklistItem.stage_id.in_(stage_ids)).delete(synchronize_session=False)
    session.query(PipelineStage).filter(PipelineStage.id.in_(stage_ids)).delete(synchronize_session=False)
    session.query(Pipeline).filter(Pipeline.id.in_(pipeline_ids)).delete(synchronize_session=False)
    session.commit()
    print(f'Cleared {len(pipeline_ids)} pipelines, {len(entry_ids)} entries.')


def main():
    parser = argparse.ArgumentParser(description='Seed a demo pipeline for local testing')
    parser.add_argument('--clear', action='store_true', help='Clear seeded data before (or instead of) seeding')
    parser.add_argument('--clear-only', action='store_true', help='Only clear, do not re-seed')
    args = parser.parse_args()

    import_models()
    # Ensure tables exist (for SQLite local dev)
    Base.metadata.create_all(engine)

    session = get_session()
    try:
        if args.clear or args.clear_only:
            clear_seeded_data(session)
            if args.clear_only:
                return

        print('Seeding demo pipeline...')
        sales, stages = seed_pipelines(session)
        seed_leads(session, sales, stages)
        session.commit()
    except Exception as e:
        session.rollback()
        print(f'Error: {e}')
        raise
    finally:
        session.close()

    seed_rules(stages)
    print('\nDone! Try POST /api/entries/<id>/advance or scripts/run_scheduler.py --once.')


if __name__ == '__main__':
    main()
