"""
Automation rule routes — CRUD over the rule store.

Rule bodies use the same shape the store returns:
    {name, trigger: {type, conditions}, actions: [{type, parameters}], enabled, priority}
"""
import logging
from flask import Blueprint, current_app, request, jsonify

logger = logging.getLogger(__name__)

bp = Blueprint('rules', __name__)


def _store():
    return current_app.extensions['automation'].store


def _rule_fields(data, partial=False):
    """Map a request body onto AutomationRuleStore keyword arguments."""
    fields = {}
    if 'name' in data or not partial:
        fields['name'] = data.get('name', '')
    trigger = data.get('trigger')
    if trigger is not None:
        if not isinstance(trigger, dict):
            raise ValueError("trigger must be an object")
        if 'type' in trigger or not partial:
            fields['trigger_type'] = trigger.get('type')
        if 'conditions' in trigger or not partial:
            fields['trigger_conditions'] = trigger.get('conditions') or {}
    elif not partial:
        raise ValueError("trigger is required")
    if 'actions' in data or not partial:
        fields['actions'] = data.get('actions') or []
    if 'enabled' in data:
        fields['enabled'] = bool(data['enabled'])
    if 'priority' in data:
        fields['priority'] = int(data['priority'] or 0)
    return fields


@bp.route('/api/rules')
def list_rules():
    """List rules in evaluation order, optionally filtered by trigger type."""
    rules = _store().list(
        trigger_type=request.args.get('trigger_type'),
        enabled_only=request.args.get('enabled') == 'true',
    )
    return jsonify([r.to_dict() for r in rules])


@bp.route('/api/rules', methods=['POST'])
def create_rule():
    data = request.json or {}
    try:
        fields = _rule_fields(data)
        rule = _store().create(
            name=fields['name'],
            trigger_type=fields['trigger_type'],
            conditions=fields['trigger_conditions'],
            actions=fields['actions'],
            enabled=fields.get('enabled', True),
            priority=fields.get('priority', 0),
        )
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(rule.to_dict()), 201


@bp.route('/api/rules/<rule_id>')
def get_rule(rule_id):
    return jsonify(_store().get(rule_id).to_dict())


@bp.route('/api/rules/<rule_id>', methods=['PUT', 'PATCH'])
def update_rule(rule_id):
    """PUT replaces the definition, PATCH changes only the fields sent."""
    data = request.json or {}
    try:
        fields = _rule_fields(data, partial=request.method == 'PATCH')
        rule = _store().update(rule_id, **fields)
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(rule.to_dict())


@bp.route('/api/rules/<rule_id>', methods=['DELETE'])
def delete_rule(rule_id):
    _store().delete(rule_id)
    return jsonify({'ok': True})
