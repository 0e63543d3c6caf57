"""Flask application factory for the Renewal Tracker API."""

import logging

from flask import Flask, jsonify, request

from config import settings


def create_app(config=None, store=None, clock=None):
    """Create and configure the Flask application.

    ``store`` and ``clock`` override the configured backends, mainly for tests.
    """
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.FLASK_SECRET_KEY
    app.config["SCHEDULER_ENABLED"] = settings.SCHEDULER_ENABLED
    if config:
        app.config.update(config)

    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)

    from web.services import build_services
    app.extensions["renewals"] = build_services(store=store, clock=clock)

    from web.routes.api import bp as api_bp
    app.register_blueprint(api_bp, url_prefix="/api/v1")

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": f"Method {request.method} not allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/health")
    def health_check():
        services = app.extensions["renewals"]
        return jsonify({
            "status": "healthy",
            "version": "0.1.0",
            "scheduler_running": services.driver.running,
        }), 200

    # Start polling (only in non-testing mode)
    if app.config["SCHEDULER_ENABLED"] and not app.config.get("TESTING"):
        from web.scheduler import init_scheduler
        init_scheduler(app)

    return app
