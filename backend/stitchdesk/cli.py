# Overview: Flask CLI command groups for database bootstrap, demo data, and balance inspection.

# backend/stitchdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Shop bootstrap/repair:
# - python -m flask shop init-db
#   Create any missing tables (idempotent).
# - python -m flask shop reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask shop seed-demo
#   Create a demo order with garments, services, a deposit and a refund.
#
# Order inspection:
# - python -m flask orders balance 12
#   Print the balance summary for an order.
# - python -m flask orders list --limit 20
#   List recent orders with their payment status.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Order
from .services import garment_service, order_service, payment_service
from .services.payment_calculations import format_cents


@click.group('shop')
def shop_group():
    """Database bootstrap and demo data commands."""


@shop_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@shop_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask shop seed-demo' for sample data.")


@shop_group.command('seed-demo')
@click.option('--client', 'client_name', default='Demo Client', show_default=True, help='Client name')
@with_appcontext
def seed_demo(client_name):
    """Create one demo order that exercises every balance state."""
    order = order_service.create_order({
        "client_name": client_name,
        "client_email": "demo@example.com",
        "tax_cents": 450,
        "garments": [
            {
                "name": "Wedding dress",
                "services": [
                    {"name": "Hem", "unit_price_cents": 6500},
                    {"name": "Bustle", "unit_price_cents": 8000},
                    {"name": "Steam", "unit_price_cents": 2000},
                ],
            },
            {
                "name": "Suit trousers",
                "services": [
                    {"name": "Taper legs", "unit": "hour", "quantity": "1.5", "unit_price_cents": 4000},
                ],
            },
        ],
    })

    dress = order.garments[0]
    steam = dress.services[2]
    garment_service.remove_service(dress.id, steam.id, reason="Customer declined")

    invoice = order.invoice
    deposit = payment_service.record_payment(
        invoice_id=invoice.id,
        payment_method=payment_service.METHOD_CASH,
        amount_cents=invoice.deposit_amount_cents,
        payment_type="deposit",
    )
    payment_service.refund_payment(deposit.id, amount_cents=1000, reason="Steam removed")

    trousers = order.garments[1]
    for service in trousers.services:
        garment_service.toggle_service_completion(trousers.id, service.id, is_done=True)

    balance = payment_service.get_order_balance(order.id)
    click.echo(f"PASS Created order {order.order_number} (id {order.id})")
    click.echo(f"     Total {format_cents(balance['order_total_cents'])}, "
               f"paid {format_cents(balance['paid_amount_cents'])}, "
               f"status {balance['payment_status']}")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('balance')
@click.argument('order_id', type=int)
@with_appcontext
def order_balance(order_id):
    """Print the balance summary for ORDER_ID."""
    try:
        balance = payment_service.get_order_balance(order_id)
    except payment_service.PaymentError as e:
        raise click.ClickException(str(e))

    click.echo("\n" + "="*60)
    click.echo(f"ORDER {balance['order_number']}  ({balance['client_name']})")
    click.echo("="*60)
    click.echo(f"{'Active total:':<20} {format_cents(balance['order_total_cents'])}")
    click.echo(f"{'Net paid:':<20} {format_cents(balance['paid_amount_cents'])}")
    if balance['credit_cents']:
        click.echo(f"{'Credit:':<20} {format_cents(balance['credit_cents'])}")
    else:
        click.echo(f"{'Balance due:':<20} {format_cents(balance['balance_due_cents'])}")
    click.echo(f"{'Status:':<20} {balance['payment_status']} ({balance['percentage']}%)")
    click.echo("="*60 + "\n")


@orders_group.command('list')
@click.option('--limit', type=int, default=20, show_default=True, help='Number of orders to show')
@with_appcontext
def list_orders(limit):
    """List recent orders with their order and payment status."""
    orders = db.session.query(Order).order_by(Order.id.desc()).limit(limit).all()

    if not orders:
        click.echo("No orders found.")
        return

    click.echo("\n" + "="*98)
    click.echo(f"{'ID':<6} {'Number':<14} {'Client':<24} {'Total':>12} {'Order':<17} {'Payment':<10}")
    click.echo("="*98)
    for order in orders:
        summary = payment_service.calculate_order_summary(order)
        click.echo(
            f"{order.id:<6} {order.order_number:<14} {order.client_name[:24]:<24} "
            f"{format_cents(summary.active_total_cents):>12} {order.status:<17} {summary.payment_status:<10}"
        )
    click.echo("="*98 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(shop_group)
    app.cli.add_command(orders_group)
