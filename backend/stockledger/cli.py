# Overview: Flask CLI command groups for schema bootstrap and ledger verification.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use "flask db upgrade" once migrations exist.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger checks:
# - python -m flask ledger verify [--location-id 1]
#   Check non-negative quantities, the movement chain of every inventory
#   record and every customer's loyalty balance. Exits 1 on any violation.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, InventoryRecord, MovementEntry
from .services import loyalty_service


@click.group('system')
def system_group():
    """Schema bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@click.group('ledger')
def ledger_group():
    """Stock and loyalty ledger checks."""


def find_ledger_violations(location_id=None) -> list[str]:
    """
    Return a human-readable line per broken invariant.

    - quantity and reserved_quantity are never negative
    - a record with movements holds the new_quantity of its latest movement
    - a customer's loyalty balance equals the signed sum of their transactions
    """
    problems = []

    q = db.session.query(InventoryRecord)
    if location_id is not None:
        q = q.filter_by(location_id=location_id)

    for record in q.order_by(InventoryRecord.id.asc()):
        if record.quantity < 0 or record.reserved_quantity < 0:
            problems.append(
                f"record {record.id}: negative quantity ({record.quantity}, reserved {record.reserved_quantity})"
            )

        last = (
            db.session.query(MovementEntry)
            .filter_by(inventory_record_id=record.id)
            .order_by(MovementEntry.id.desc())
            .first()
        )
        if last is not None and last.new_quantity != record.quantity:
            problems.append(
                f"record {record.id}: quantity {record.quantity} but last movement {last.id} left {last.new_quantity}"
            )

    if location_id is None:
        for customer in db.session.query(Customer).order_by(Customer.id.asc()):
            check = loyalty_service.verify_customer_balance(customer.id)
            if not check["consistent"]:
                problems.append(
                    f"customer {customer.id}: balance {check['stored_points']} "
                    f"but transactions sum to {check['ledger_points']}"
                )

    return problems


@ledger_group.command('verify')
@click.option('--location-id', type=int, default=None, help='Only check inventory at this location')
@with_appcontext
def verify_ledger(location_id):
    """Check ledger invariants; exit code 1 when any is broken."""
    problems = find_ledger_violations(location_id)

    if not problems:
        click.echo("PASS Ledger is consistent.")
        return

    for line in problems:
        click.echo(f"FAIL {line}")
    click.echo(f"{len(problems)} problem(s) found.")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
