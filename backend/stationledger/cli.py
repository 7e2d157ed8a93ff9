# Overview: Flask CLI command groups for bootstrap, billing runs and inspection.

# backend/stationledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app stationledger <group> <command> [options]
#
# System bootstrap:
# - flask --app stationledger system init-db
#   Create all tables (idempotent).
# - flask --app stationledger system seed-demo
#   Create a demo station with tanks, nozzles, inventory and two credit owners.
#
# Billing:
# - flask --app stationledger billing generate --month 1 --year 2024
#   Invoice every eligible owner for the month; per-owner failures are reported.
# - flask --app stationledger billing reconcile --owner-id 7 [--fix]
#   Replay an owner's balance and report (or repair) drift.
# - flask --app stationledger billing aging [--as-of 2024-03-31] [--owner-id 7]
#   Outstanding invoices grouped by days past due.
#
# Anomalies:
# - flask --app stationledger anomalies check-shift 12
#   Evaluate a shift and print its anomalies.
# - flask --app stationledger anomalies pending [--station-id 1] [--limit 20]
#   List pending anomalies, critical first.
#
# Inventory:
# - flask --app stationledger inventory low-stock [--station-id 1]
#   List items below their low-stock threshold.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Nozzle, Product, Station, Tank
from .services import anomaly_service, billing_service, credit_service, inventory_service
from .models.owners import OWNER_GROUP_BOX_TRUCK, OWNER_GROUP_GENERAL_CREDIT


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("OK Database schema created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed a demo station.

    Skips if a station with code DEMO already exists.
    """
    if db.session.query(Station).filter_by(code="DEMO").first():
        click.echo("SKIP Demo station already exists")
        return

    station = Station(code="DEMO", name="Demo Station")
    diesel = Product(code="DSL", name="Diesel", unit="L", is_fuel=True)
    gasohol = Product(code="G95", name="Gasohol 95", unit="L", is_fuel=True)
    db.session.add_all([station, diesel, gasohol])
    db.session.flush()

    tank1 = Tank(station_id=station.id, number=1, product_id=diesel.id, capacity_liters=20000)
    tank2 = Tank(station_id=station.id, number=2, product_id=gasohol.id, capacity_liters=15000)
    db.session.add_all([tank1, tank2])
    db.session.flush()
    db.session.add_all([
        Nozzle(station_id=station.id, number=1, product_id=diesel.id, tank_id=tank1.id),
        Nozzle(station_id=station.id, number=2, product_id=diesel.id, tank_id=tank1.id),
        Nozzle(station_id=station.id, number=3, product_id=gasohol.id, tank_id=tank2.id),
    ])
    db.session.commit()

    inventory_service.provision_item(station.id, diesel.id, threshold=2000, quantity=12000)
    inventory_service.provision_item(station.id, gasohol.id, threshold=1500, quantity=8000)
    credit_service.create_owner("Demo Transport Co.", credit_limit=50000, group_type=OWNER_GROUP_GENERAL_CREDIT)
    credit_service.create_owner("Demo Box Truck", credit_limit=20000, group_type=OWNER_GROUP_BOX_TRUCK)

    click.echo(f"OK Seeded station {station.code} (id={station.id})")


@click.group('billing')
def billing_group():
    """Monthly invoicing and balance reconciliation."""


@billing_group.command('generate')
@click.option('--month', type=int, required=True)
@click.option('--year', type=int, required=True)
@with_appcontext
def billing_generate(month, year):
    """Invoice every eligible owner for a month."""
    try:
        result = billing_service.generate_all_monthly_invoices(month, year)
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"{year}-{month:02d}: {result.succeeded} invoiced, "
        f"{result.skipped} skipped, {len(result.failures)} failed"
    )
    for failure in result.failures:
        click.echo(f"  FAIL owner {failure['owner_id']}: {failure['reason']}")


@billing_group.command('reconcile')
@click.option('--owner-id', type=int, required=True)
@click.option('--fix', is_flag=True, help='Overwrite the stored balance with the replayed one')
@with_appcontext
def billing_reconcile(owner_id, fix):
    """Replay an owner's balance from sales, payments and voids."""
    try:
        result = credit_service.reconcile_owner_credit(owner_id, fix=fix)
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"Owner {owner_id}: stored {result.stored_balance}, replayed {result.replayed_balance}")
    if result.is_consistent:
        click.echo("OK Balance consistent")
    elif result.fixed:
        click.echo(f"FIXED Balance set to {result.replayed_balance}")
    else:
        click.echo(f"DRIFT {result.difference} (re-run with --fix to repair)")


@billing_group.command('aging')
@click.option('--as-of', default=None, help='YYYY-MM-DD, defaults to today')
@click.option('--owner-id', type=int, default=None)
@with_appcontext
def billing_aging(as_of, owner_id):
    """Outstanding receivables by days past due."""
    try:
        aging = credit_service.get_receivables_aging(as_of=as_of, owner_id=owner_id)
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"Receivables aging as of {aging.as_of.isoformat()}")
    for bucket, total in aging.totals.items():
        click.echo(f"  {bucket:8} {total}")
    for row in aging.rows:
        invoice = row["invoice"]
        click.echo(
            f"  {invoice.invoice_number} owner {invoice.owner_id} due {invoice.due_date} "
            f"{row['outstanding']} ({row['aging_days']}d, {row['bucket']})"
        )


@click.group('anomalies')
def anomalies_group():
    """Shift anomaly detection and review queue."""


def _echo_anomaly(a):
    click.echo(
        f"  [{a.severity.upper():8}] #{a.id} shift {a.shift_id} {a.shift_date} "
        f"{a.metric} {a.subject_ref} expected={a.expected_value} actual={a.actual_value} "
        f"delta={a.delta}" + (f" ({a.note})" if a.note else "")
    )


@anomalies_group.command('check-shift')
@click.argument('shift_id', type=int)
@with_appcontext
def anomalies_check_shift(shift_id):
    try:
        found = anomaly_service.check_shift_anomalies(shift_id)
    except LedgerError as e:
        raise click.ClickException(e.message)

    if not found:
        click.echo(f"OK Shift {shift_id}: no anomalies")
        return
    click.echo(f"Shift {shift_id}: {len(found)} anomalies")
    for a in found:
        _echo_anomaly(a)


@anomalies_group.command('pending')
@click.option('--station-id', type=int, default=None)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def anomalies_pending(station_id, limit):
    found = anomaly_service.get_pending_anomalies(station_id=station_id, limit=limit)
    if not found:
        click.echo("No pending anomalies")
        return
    for a in found:
        _echo_anomaly(a)


@click.group('inventory')
def inventory_group():
    """Inventory inspection."""


@inventory_group.command('low-stock')
@click.option('--station-id', type=int, default=None)
@with_appcontext
def inventory_low_stock(station_id):
    items = inventory_service.check_low_stock(station_id)
    if not items:
        click.echo("OK Nothing below threshold")
        return
    for item in items:
        name = item.product.name if item.product else f"product {item.product_id}"
        click.echo(
            f"  LOW station {item.station_id} {name}: {item.quantity} (threshold {item.low_stock_threshold})"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(billing_group)
    app.cli.add_command(anomalies_group)
    app.cli.add_command(inventory_group)
