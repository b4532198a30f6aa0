"""
Flask CLI commands for database maintenance.

Commands:
- flask init-db: Create the schema
- flask verify-totals: Report invoices whose total drifted from their lines
"""

import sys

import click

from billing.database import create_schema, get_session


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        create_schema()
        click.echo(click.style('Schema created.', fg='green'))

    @app.cli.command('verify-totals')
    @click.option('--tenant-id', type=int, default=None, help='Only check this tenant')
    def verify_totals(tenant_id):
        """Compare each invoice's total_amount with the sum of its lines."""
        from billing.services.invoice_service import find_total_mismatches

        session = get_session()
        try:
            mismatches = find_total_mismatches(session, tenant_id)
        finally:
            session.remove()

        if not mismatches:
            click.echo(click.style('All invoice totals match their lines.', fg='green'))
            return

        for row in mismatches:
            click.echo(
                f"tenant {row['tenant_id']} invoice {row['invoice_id']} ({row['invoice_number']}): "
                f"stored {row['stored']} != lines {row['computed']}"
            )
        click.echo(click.style(f'{len(mismatches)} invoice(s) with drifted totals.', fg='red'))
        sys.exit(1)
