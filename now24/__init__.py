"""Flask application factory."""
import os

from flask import Flask, jsonify

from now24.database import init_db


def create_app(config_object='config.Config', gateway=None, notifier=None):
    """
    Create and configure the Flask application.

    Args:
        config_object: import path of the config class
        gateway: PaymentGateway instance; built from MP_* config when None
        notifier: notifier instance; built from NOTIFIER_BACKEND when None
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for order e-mails
    from now24.services.email_service import init_mail
    init_mail(app)

    # Prometheus metrics instrumentation
    from now24.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Collaborators injected into services
    from now24.services.payment_gateway import init_payment_gateway
    from now24.services.notification_service import init_notifier
    init_payment_gateway(app, gateway)
    init_notifier(app, notifier)

    from now24.middleware import load_user

    @app.before_request
    def before_request_handler():
        """Load user context for each request."""
        load_user()

    # Error Handlers
    from now24.exceptions import Now24Error
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(Now24Error)
    def handle_now24_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"Now24Error [{error.status_code}] {error.code}: {error.message}")
        else:
            app.logger.warning(f"Now24Error [{error.status_code}] {error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'code': error.name.upper().replace(' ', '_'),
                        'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'code': 'INTERNAL_ERROR', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from now24.blueprints.cart import cart_bp
    from now24.blueprints.coupons import coupons_bp
    from now24.blueprints.orders import orders_bp
    from now24.blueprints.payments import payments_bp
    from now24.blueprints.payment_cards import payment_cards_bp
    from now24.blueprints.webhooks import webhooks_bp
    from now24.blueprints.metrics import metrics_bp

    app.register_blueprint(cart_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(payment_cards_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from now24.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")
    app.logger.info(f"NOTIFIER_BACKEND={app.config.get('NOTIFIER_BACKEND')}")

    return app
