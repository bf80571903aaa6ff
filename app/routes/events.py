"""
Event ingestion routes — external event sources and lead updates.

POST /api/events feeds an arbitrary domain event to the engine. The lead
endpoints change lead data through LeadService, which raises the matching
field_change / lead_score events itself.
"""
import logging
from flask import Blueprint, current_app, request, jsonify

from app.automation.engine import summarize
from app.automation.events import DomainEvent

logger = logging.getLogger(__name__)

bp = Blueprint('events', __name__)


def _engine():
    return current_app.extensions['automation']


@bp.route('/api/events', methods=['POST'])
def ingest_event():
    data = request.json or {}
    if data.get('lead_id') is None:
        return jsonify({'error': "'lead_id' is required"}), 400
    try:
        event = DomainEvent(type=data.get('type', ''), lead_id=data['lead_id'], context=data.get('context') or {})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    engine = _engine()
    if engine.async_dispatch:
        job = engine.enqueue(event)
        return jsonify({'status': 'queued', 'job_id': job.id}), 202
    return jsonify(summarize(engine.process(event)))


@bp.route('/api/leads/<int:lead_id>/fields', methods=['PATCH'])
def update_fields(lead_id):
    """Patch one or more lead fields: {"fields": {"status": "won", ...}}."""
    data = request.json or {}
    fields = data.get('fields')
    if not isinstance(fields, dict) or not fields:
        return jsonify({'error': "'fields' must be a non-empty object"}), 400

    leads = _engine().leads
    changes = {}
    try:
        for field, value in fields.items():
            old_value, new_value = leads.update_field(lead_id, field, value)
            changes[field] = {'old_value': old_value, 'new_value': new_value}
    except ValueError as e:
        return jsonify({'error': str(e), 'applied': changes}), 400
    return jsonify({'lead_id': lead_id, 'changes': changes})


@bp.route('/api/leads/<int:lead_id>/score', methods=['POST'])
def update_score(lead_id):
    """Recompute the lead score from engagement factors."""
    factors = request.json or {}
    try:
        score = _engine().leads.update_score(lead_id, factors)
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400
    lead = _engine().leads.get(lead_id)
    return jsonify({'lead_id': lead_id, 'score': score, 'classification': lead.score_classification})


@bp.route('/api/leads/<int:lead_id>/activity', methods=['POST'])
def record_activity(lead_id):
    _engine().leads.record_activity(lead_id)
    return jsonify({'ok': True})
