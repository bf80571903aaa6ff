"""
Flask application factory.

Creates and configures the app, attaches the automation engine and
registers all blueprints.
"""
from flask import Flask, jsonify

from app.automation.errors import (
    ChecklistIncomplete, ConflictError, EntryNotFound, InvalidTransition,
    LeadNotFound, PipelineError, RuleNotFound,
)


def register_error_handlers(app):
    """Translate engine errors into JSON responses for the initiating caller."""

    @app.errorhandler(ChecklistIncomplete)
    def checklist_incomplete(e):
        return jsonify({
            'error': str(e),
            'missing_titles': e.missing_titles,
            'criteria_unacknowledged': e.criteria_unacknowledged,
        }), 422

    @app.errorhandler(ConflictError)
    def conflict(e):
        return jsonify({'error': str(e), 'entry_id': e.entry_id}), 409

    @app.errorhandler(RuleNotFound)
    @app.errorhandler(EntryNotFound)
    @app.errorhandler(LeadNotFound)
    def not_found(e):
        return jsonify({'error': str(e)}), 404

    @app.errorhandler(InvalidTransition)
    def invalid_transition(e):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(PipelineError)
    def pipeline_error(e):
        return jsonify({'error': str(e)}), 400


def create_app(engine=None):
    """
    Create and configure the Flask application.

    Args:
        engine: AutomationEngine to serve. Defaults to the process-wide engine
                bound to DATABASE_URL.
    """
    from app.logging_config import configure_logging
    from app.database import import_models

    app = Flask(__name__)

    configure_logging(app)

    # Make sure every table is known to Base.metadata (schema is managed by Alembic)
    import_models()

    if engine is None:
        from app.automation.engine import get_engine
        engine = get_engine()
    app.extensions['automation'] = engine

    register_error_handlers(app)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    # Register blueprints
    from app.routes.rules import bp as rules_bp
    from app.routes.entries import bp as entries_bp
    from app.routes.events import bp as events_bp
    from app.routes.executions import bp as executions_bp

    app.register_blueprint(rules_bp)
    app.register_blueprint(entries_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(executions_bp)

    return app
