"""
Execution ledger routes — read-only audit of rule runs.
"""
from flask import Blueprint, current_app, request, jsonify

bp = Blueprint('executions', __name__)


def _ledger():
    return current_app.extensions['automation'].ledger


@bp.route('/api/executions')
def list_executions():
    """Most recent executions, filterable by rule, lead and status."""
    lead_id = request.args.get('lead_id', type=int)
    limit = min(request.args.get('limit', 50, type=int), 500)
    executions = _ledger().list(
        rule_id=request.args.get('rule_id'),
        lead_id=lead_id,
        status=request.args.get('status'),
        limit=limit,
    )
    return jsonify([e.to_dict() for e in executions])


@bp.route('/api/executions/<int:execution_id>')
def get_execution(execution_id):
    try:
        execution = _ledger().get(execution_id)
    except ValueError as e:
        return jsonify({'error': str(e)}), 404
    return jsonify(execution.to_dict())
