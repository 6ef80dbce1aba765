"""
Application factory.

Builds the Flask app with its database, bearer-token login manager,
Socket.IO server (namespace /tasks) and the API blueprints.
"""

import logging

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_login import LoginManager
from flask_socketio import SocketIO

from models import db

logger = logging.getLogger(__name__)


def create_app(config_object=None) -> Flask:
    """
    Create and configure the application.

    Args:
        config_object: Config class or import path (defaults to config.Config)

    Returns:
        Flask app; its SocketIO server is app.extensions['socketio']
    """
    load_dotenv()

    app = Flask(__name__)
    if config_object is None:
        from config import Config
        config_object = Config
    app.config.from_object(config_object)

    # Database
    db.init_app(app)

    # Bearer-token authentication through Flask-Login
    from utils.auth import init_login_manager
    login_manager = LoginManager()
    login_manager.init_app(app)
    init_login_manager(login_manager)

    # Real-time channel
    socketio = SocketIO()
    socketio.init_app(
        app,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE'),
        message_queue=app.config.get('SOCKETIO_MESSAGE_QUEUE'),
        cors_allowed_origins=app.config.get('CLIENT_URL'),
    )

    from services.event_broadcaster import TaskEventBroadcaster
    app.extensions['task_event_broadcaster'] = TaskEventBroadcaster(socketio)

    from routes.tasks_websocket import register_tasks_namespace
    register_tasks_namespace(socketio)

    # Blueprints
    from routes.health import health_bp
    from routes.auth import auth_bp
    from routes.google_auth import google_auth_bp
    from routes.api_tasks import api_tasks_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(google_auth_bp)
    app.register_blueprint(api_tasks_bp)

    _register_error_handlers(app)

    with app.app_context():
        db.create_all()

        from utils.startup_validation import run_startup_validation
        app.extensions['startup_report'] = run_startup_validation(app.config, db.engine)

    logger.info(f"Application created ({app.config.get('ENVIRONMENT')})")
    return app


def _register_error_handlers(app: Flask):
    """JSON error envelope for everything under /api."""

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'success': False, 'message': 'Resource not found', 'code': 'NOT_FOUND'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'success': False, 'message': 'Method not allowed', 'code': 'METHOD_NOT_ALLOWED'}), 405

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        logger.error(f"Unhandled server error: {e}", exc_info=True)
        return jsonify({'success': False, 'message': 'Internal server error', 'code': 'SERVER_ERROR'}), 500
