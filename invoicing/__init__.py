"""Flask application factory."""
import logging
import os
import traceback

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from invoicing.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Prometheus metrics instrumentation
    from invoicing.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind a reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Invoice number allocator (counter backend chosen by config)
    from invoicing.services.numbering_service import init_allocator
    init_allocator(app)

    # Error Handlers
    from invoicing.exceptions import InvoicingError

    @app.errorhandler(InvoicingError)
    def handle_invoicing_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"InvoicingError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"InvoicingError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'success': False, 'error': error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'success': False, 'error': 'Internal Server Error'}), 500

    # Register blueprints
    from invoicing.blueprints.main import main_bp
    from invoicing.blueprints.invoices import invoices_bp
    from invoicing.blueprints.metrics import metrics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from invoicing.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"INVOICE_COUNTER_BACKEND={app.config.get('INVOICE_COUNTER_BACKEND')}")

    return app
