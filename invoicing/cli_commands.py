"""
Flask CLI commands.

Commands:
- flask init-db: Create the invoice tables and seed the invoice counter
- flask counter peek|reset|set VALUE: Inspect or change the invoice counter
"""

import click
from flask import current_app
from flask.cli import AppGroup

from invoicing.database import create_all
from invoicing.exceptions import StorageUnavailableError
from invoicing.services.numbering_service import get_allocator

counter_cli = AppGroup('counter', help='Inspect or change the invoice number counter.')


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the invoice tables and the counter row if they do not exist."""
        try:
            create_all()
        except Exception as e:
            click.echo(click.style(f'Error creating tables: {e}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style('Tables created.', fg='green'))

        try:
            allocator = get_allocator()
            allocator.ensure_counter()
        except StorageUnavailableError as e:
            click.echo(click.style(f'Counter unavailable: {e.message}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style(f'Counter ready. Next number: {allocator.peek()}', fg='green'))

    app.cli.add_command(counter_cli)


@counter_cli.command('peek')
def counter_peek():
    """Show the next invoice number without consuming it."""
    try:
        click.echo(get_allocator().peek())
    except StorageUnavailableError as e:
        click.echo(click.style(f'Counter unavailable: {e.message}', fg='red'))
        raise SystemExit(1)


@counter_cli.command('reset')
@click.confirmation_option(prompt='Reset the invoice counter to 1?')
def counter_reset():
    """Set the counter back to 1."""
    allocator = get_allocator()
    allocator.reset()
    click.echo(click.style(f'Counter reset. Next number: {allocator.peek()}', fg='yellow'))


@counter_cli.command('set')
@click.argument('value', type=click.IntRange(min=1))
def counter_set(value):
    """Set the next counter value (e.g. when migrating from another system)."""
    allocator = get_allocator()
    allocator.set_counter(value)
    current_app.logger.info(f"Counter set to {value} from CLI")
    click.echo(click.style(f'Next number: {allocator.peek()}', fg='green'))
