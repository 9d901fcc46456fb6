# Overview: Flask CLI command groups for bootstrap, inspection, and ledger checks.

# backend/hydroflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system seed-demo
#   Idempotent demo data: one route, driver, product and two customers.
#
# Inspection:
# - python -m flask inventory stats
#   Per-product stock buckets plus containers held by customers.
# - python -m flask handovers pending --driver-id 1
#   Preview a driver's unlinked cash pool.
# - python -m flask ledger check [--customer-id 1] [--driver-id 1]
#   Recompute ledgers and report drift against the stored balances.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .errors import NotFound
from .extensions import db
from .models import CustomerProfile, CustomerSpecialPrice, DriverProfile, Product, Route
from .services import handover_service, inventory_service, ledger_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for a fresh database."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed a minimal demo dataset.

    Creates (if missing):
    - Driver "Demo Driver" and route "North" defaulting to that driver
    - Product "BTL-19L" with 200 filled and 50 empty bottles
    - Two customers delivering Monday/Thursday, one with a special price
    """
    driver = db.session.query(DriverProfile).filter_by(name="Demo Driver").first()
    if not driver:
        driver = DriverProfile(name="Demo Driver", phone="0300-0000000")
        db.session.add(driver)
        db.session.flush()
        click.echo(f"PASS Created driver {driver.name} (ID: {driver.id})")

    route = db.session.query(Route).filter_by(name="North").first()
    if not route:
        route = Route(name="North", default_driver_id=driver.id)
        db.session.add(route)
        db.session.flush()
        click.echo(f"PASS Created route {route.name} (ID: {route.id})")

    product = db.session.query(Product).filter_by(sku="BTL-19L").first()
    if not product:
        product = Product(
            sku="BTL-19L",
            name="19L Bottle",
            base_price=Decimal("100.00"),
            is_returnable=True,
            stock_filled=200,
            stock_empty=50,
        )
        db.session.add(product)
        db.session.flush()
        click.echo(f"PASS Created product {product.sku} (ID: {product.id})")

    for name, credit_limit in (("Ali Traders", Decimal("1000.00")), ("Green Villa", Decimal("0.00"))):
        customer = db.session.query(CustomerProfile).filter_by(name=name).first()
        if customer:
            continue
        customer = CustomerProfile(
            name=name,
            route_id=route.id,
            credit_limit=credit_limit,
            default_product_id=product.id,
            default_quantity=2,
            delivery_days=[0, 3],
        )
        db.session.add(customer)
        db.session.flush()
        click.echo(f"PASS Created customer {customer.name} (ID: {customer.id})")
        if credit_limit:
            db.session.add(
                CustomerSpecialPrice(customer_id=customer.id, product_id=product.id, custom_price=Decimal("90.00"))
            )

    db.session.commit()
    click.echo("DONE Demo data ready")


@click.group('inventory')
def inventory_group():
    """Warehouse inventory inspection."""


@inventory_group.command('stats')
@with_appcontext
def inventory_stats():
    stats = inventory_service.get_inventory_stats()
    if not stats["products"]:
        click.echo("No products found")
        return

    click.echo(f"{'ID':<5} {'SKU':<15} {'Filled':>8} {'Empty':>8} {'Damaged':>8} {'Customers':>10} {'Total':>8}")
    click.echo("-" * 68)
    for row in stats["products"]:
        click.echo(
            f"{row['id']:<5} {row['sku']:<15} {row['stock_filled']:>8} {row['stock_empty']:>8} "
            f"{row['stock_damaged']:>8} {row['bottles_with_customers']:>10} {row['total_bottles']:>8}"
        )
    totals = stats["totals"]
    click.echo("-" * 68)
    click.echo(
        f"{'':<5} {'TOTAL':<15} {totals['filled']:>8} {totals['empty']:>8} "
        f"{totals['damaged']:>8} {totals['with_customers']:>10} {totals['total']:>8}"
    )


@click.group('handovers')
def handovers_group():
    """Cash handover inspection."""


@handovers_group.command('pending')
@click.option('--driver-id', type=int, required=True, help='Driver ID')
@with_appcontext
def handovers_pending(driver_id):
    """Show what the driver would hand over right now."""
    try:
        snapshot = handover_service.compute_pending_snapshot(driver_id)
    except NotFound as e:
        raise click.ClickException(str(e))

    click.echo(f"Driver {driver_id}")
    click.echo(f"  Cash orders:     {snapshot['cash_order_count']:>4}  gross {snapshot['gross_cash']}")
    click.echo(f"  Cash expenses:   {snapshot['expense_count']:>4}  total {snapshot['expense_total']}")
    click.echo(f"  Expected cash:         {snapshot['expected_cash']}")
    if snapshot["pending_expense_count"]:
        click.echo(
            f"  WARN {snapshot['pending_expense_count']} unapproved cash expenses "
            f"({snapshot['pending_expense_total']}) not counted"
        )
    if snapshot["pending_handover"]:
        click.echo(f"  WARN Handover {snapshot['pending_handover']['id']} is already PENDING")


@click.group('ledger')
def ledger_group():
    """Ledger consistency checks."""


@ledger_group.command('check')
@click.option('--customer-id', type=int, help='Check a single customer')
@click.option('--driver-id', type=int, help='Check a single driver')
@with_appcontext
def ledger_check(customer_id, driver_id):
    """
    Recompute ledgers and compare with stored balances.

    Without options, every customer and driver is checked. Exits non-zero
    when any drift is found.
    """
    if customer_id or driver_id:
        customer_ids = [customer_id] if customer_id else []
        driver_ids = [driver_id] if driver_id else []
    else:
        customer_ids = [row.id for row in db.session.query(CustomerProfile.id).order_by(CustomerProfile.id)]
        driver_ids = [row.id for row in db.session.query(DriverProfile.id).order_by(DriverProfile.id)]

    failures = 0
    try:
        results = [("customer", ledger_service.verify_customer_ledger(cid)) for cid in customer_ids]
        results += [("driver", ledger_service.verify_driver_ledger(did)) for did in driver_ids]
    except NotFound as e:
        raise click.ClickException(str(e))

    for kind, result in results:
        owner_id = result.get(f"{kind}_id")
        if result["consistent"]:
            click.echo(f"PASS {kind} {owner_id}: {result['entry_count']} entries, balance {result['stored_balance']}")
        else:
            failures += 1
            click.echo(
                f"FAIL {kind} {owner_id}: ledger {result['ledger_sum']} vs stored {result['stored_balance']} "
                f"(drift {result['drift']}, broken entries {result['broken_entry_ids']})"
            )

    if failures:
        raise click.ClickException(f"{failures} ledger(s) inconsistent")
    click.echo(f"DONE {len(results)} ledger(s) consistent")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(handovers_group)
    app.cli.add_command(ledger_group)
