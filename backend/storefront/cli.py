# Overview: Flask CLI command groups for schema bootstrap and integrity checks.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app storefront:create_app <group> <command> [options]
#
# Schema bootstrap:
# - python -m flask --app storefront:create_app system init-db
#   Create any missing tables (idempotent).
# - python -m flask --app storefront:create_app system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Integrity checks:
# - python -m flask --app storefront:create_app orders verify-totals
#   List orders whose stored total disagrees with their items. Exit code 1 if any.
# - python -m flask --app storefront:create_app orders transitions
#   Print the order lifecycle.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import order_service


@click.group('system')
def system_group():
    """Schema bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema is up to date.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('orders')
def orders_group():
    """Order integrity commands."""


@orders_group.command('verify-totals')
@with_appcontext
def verify_totals():
    """Report orders whose total_amount_cents differs from the sum of their items."""
    mismatches = order_service.find_total_mismatches()
    if not mismatches:
        click.echo("PASS All order totals match their items.")
        return

    for row in mismatches:
        click.echo(
            f"FAIL {row['order_number']} (id={row['order_id']}, status={row['status']}): "
            f"stored {row['total_amount_cents']} != items {row['items_total_cents']}"
        )
    click.get_current_context().exit(1)


@orders_group.command('transitions')
def show_transitions():
    """Print the allowed order status transitions."""
    for status in order_service.ORDER_STATUSES:
        targets = sorted(order_service.ALLOWED_TRANSITIONS[status])
        click.echo(f"{status:<10} -> {', '.join(targets) if targets else '(terminal)'}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
