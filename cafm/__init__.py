"""Flask application factory."""
import os
import traceback

from flask import Flask, jsonify

from cafm.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    if app.config.get('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Initialize database (session factory with tenant/audit/history hooks)
    init_db(app)

    # Multi-tenant: bind tenant context before each request, release after
    from cafm.middleware import load_tenant_context, release_tenant_context

    @app.before_request
    def before_request_handler():
        """Load tenant context for each request."""
        load_tenant_context()

    app.teardown_request(release_tenant_context)

    # Error Handlers
    from cafm.exceptions import CafmError

    @app.errorhandler(CafmError)
    def handle_cafm_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"CafmError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"CafmError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'application': app.config.get('APPLICATION_NAME')})

    # Register CLI commands
    from cafm.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
