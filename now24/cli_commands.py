"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask reconcile-payments: Re-fetch open payment transactions from the gateway
"""

import click
from flask import current_app

from now24.database import get_session, create_tables


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables for every model."""
        create_tables()
        click.echo(click.style('✅ Tabelas criadas.', fg='green'))

    @app.cli.command('reconcile-payments')
    @click.option('--limit', default=100, show_default=True, type=int,
                  help='Maximum number of open transactions to check')
    def reconcile_payments(limit):
        """Re-fetch pending/processing transactions and apply their gateway status."""
        from now24.services.notification_service import get_notifier
        from now24.services.payment_gateway import get_payment_gateway
        from now24.services.payment_service import PaymentService
        from now24.exceptions import PaymentGatewayError

        try:
            gateway = get_payment_gateway()
        except PaymentGatewayError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            return

        service = PaymentService(get_session(), gateway, get_notifier())
        checked = service.reconcile_open_transactions(limit=limit)
        current_app.logger.info(f"[PAYMENT] reconcile-payments checked {checked} transactions")
        click.echo(click.style(f'✅ {checked} transações verificadas.', fg='green'))
