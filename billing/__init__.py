"""Flask application factory."""
import logging
import traceback

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from billing.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Service modules log under 'billing.*'
    log_level = app.config.get('LOG_LEVEL', 'INFO')
    logging.getLogger('billing').setLevel(log_level)
    app.logger.setLevel(log_level)

    # Error tracking, only when a DSN is configured
    if app.config.get('SENTRY_DSN') and not app.config.get('TESTING'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.1),
            environment=app.config.get('SENTRY_ENVIRONMENT', 'production'),
            release=app.config.get('GIT_COMMIT', 'unknown')
        )

    # Initialize database
    init_db(app)

    # Initialize Redis Cache
    from billing.services.cache_service import init_cache
    init_cache(app)

    # Prometheus request instrumentation
    from billing.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Multi-Tenant: Load user and tenant context before each request
    from billing.middleware import load_user_and_tenant

    @app.before_request
    def before_request_handler():
        """Load user and tenant context for each request."""
        load_user_and_tenant()

    # Error Handlers
    from billing.exceptions import BillingError

    @app.errorhandler(BillingError)
    def handle_billing_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"BillingError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"BillingError [{error.status_code}] {error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'code': error.name.lower().replace(' ', '_'),
                        'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'code': 'internal_error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from billing.blueprints.invoices import invoices_bp
    from billing.blueprints.metrics import metrics_bp
    app.register_blueprint(invoices_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from billing.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
