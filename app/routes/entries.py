"""
Pipeline entry routes — enrollment, stage movement, checklist and health.

Every mutating endpoint accepts an optional `version` in the body; when sent,
the write is rejected with 409 if the entry changed in the meantime.
"""
import logging
from flask import Blueprint, current_app, request, jsonify

from app.automation.errors import InvalidTransition

logger = logging.getLogger(__name__)

bp = Blueprint('entries', __name__)


def _transitions():
    return current_app.extensions['automation'].transitions


def _body():
    return request.json or {}


def _required(data, key):
    if data.get(key) is None:
        raise InvalidTransition(f"'{key}' is required")
    return data[key]


@bp.route('/api/entries', methods=['POST'])
def enroll():
    data = _body()
    entry = _transitions().enroll(
        lead_id=_required(data, 'lead_id'),
        pipeline_id=_required(data, 'pipeline_id'),
        stage_id=data.get('stage_id'),
        note=data.get('note'),
    )
    return jsonify(entry.to_dict()), 201


@bp.route('/api/entries/<int:entry_id>')
def get_entry(entry_id):
    """Health is recomputed on read and only written back when it changed."""
    entry, _ = _transitions().refresh_health(entry_id)
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/gate')
def gate(entry_id):
    """Checklist gate for the current stage, for rendering the advance button."""
    result = _transitions().gate_status(
        entry_id, criteria_acknowledged=request.args.get('acknowledged') == 'true',
    )
    return jsonify({
        'can_advance': result.can_advance,
        'missing_titles': result.missing_titles,
        'criteria_unacknowledged': result.criteria_unacknowledged,
    })


@bp.route('/api/entries/<int:entry_id>/advance', methods=['POST'])
def advance(entry_id):
    data = _body()
    entry = _transitions().advance(
        entry_id,
        target_stage_id=data.get('stage_id'),
        criteria_acknowledged=bool(data.get('criteria_acknowledged')),
        expected_version=data.get('version'),
    )
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/regress', methods=['POST'])
def regress(entry_id):
    data = _body()
    entry = _transitions().regress(entry_id, _required(data, 'stage_id'), expected_version=data.get('version'))
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/jump', methods=['POST'])
def jump(entry_id):
    data = _body()
    entry = _transitions().jump(entry_id, _required(data, 'stage_id'), expected_version=data.get('version'))
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/move', methods=['POST'])
def move(entry_id):
    """Ungated move to any stage of the same pipeline."""
    data = _body()
    entry = _transitions().move_to(
        entry_id, _required(data, 'stage_id'),
        actor='user', note=data.get('note'), expected_version=data.get('version'),
    )
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/transfer', methods=['POST'])
def transfer(entry_id):
    data = _body()
    entry = _transitions().transfer(
        entry_id,
        new_pipeline_id=_required(data, 'pipeline_id'),
        target_stage_id=_required(data, 'stage_id'),
        reason=data.get('reason', ''),
        expected_version=data.get('version'),
    )
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/archive', methods=['POST'])
def archive(entry_id):
    data = _body()
    entry = _transitions().archive(entry_id, reason=data.get('reason'), expected_version=data.get('version'))
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/checklist/<int:item_id>', methods=['PUT'])
def set_checklist_item(entry_id, item_id):
    data = _body()
    entry = _transitions().set_checklist_item(
        entry_id, item_id, bool(data.get('checked', True)), expected_version=data.get('version'),
    )
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/note', methods=['PUT'])
def set_note(entry_id):
    data = _body()
    entry = _transitions().set_stage_note(entry_id, data.get('note', ''), expected_version=data.get('version'))
    return jsonify(entry.to_dict())


@bp.route('/api/entries/<int:entry_id>/health', methods=['POST'])
def refresh_health(entry_id):
    entry, changed = _transitions().refresh_health(entry_id)
    return jsonify({'health': entry.health, 'changed': changed})
