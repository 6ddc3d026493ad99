# Overview: Flask CLI command groups for bootstrap, inspection, and stock maintenance.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent; existing tables are left alone).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection/repair:
# - python -m flask stock show 12
#   Show a product's on-hand quantity and reorder level.
# - python -m flask stock adjust 12 -- -3
#   Apply a signed delta through the atomic adjustment (use -- before negatives).
# - python -m flask stock low
#   List active products at or below their reorder level.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import StockError
from .validation import ValidationError
from .services.stock_service import adjust_stock, get_product
from .services.products_service import list_low_stock_products


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo(f"OK  Schema ready ({current_app.config['SQLALCHEMY_DATABASE_URI']})")


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

    click.echo("OK  Database reset complete")


@click.group('stock')
def stock_group():
    """Stock inspection and manual adjustment commands."""


@stock_group.command('show')
@click.argument('product_id', type=int)
@with_appcontext
def show_stock(product_id):
    """Show on-hand quantity for a product."""
    try:
        product = get_product(product_id)
    except StockError as e:
        raise click.ClickException(str(e))
    flag = "  LOW" if product.is_low_stock else ""
    click.echo(
        f"{product.sku}  {product.name}  on hand: {product.quantity}  "
        f"reorder at: {product.reorder_level}{flag}"
    )


@stock_group.command('adjust')
@click.argument('product_id', type=int)
@click.argument('delta', type=int)
@with_appcontext
def adjust(product_id, delta):
    """Apply a signed DELTA to PRODUCT_ID's on-hand quantity."""
    try:
        product = adjust_stock(product_id, delta)
    except (StockError, ValidationError) as e:
        raise click.ClickException(str(e))
    current_app.logger.info("CLI stock adjust: product %s delta %s", product_id, delta)
    click.echo(f"OK  {product.sku} now has {product.quantity} on hand")


@stock_group.command('low')
@with_appcontext
def low_stock():
    """List active products at or below their reorder level."""
    products = list_low_stock_products()
    if not products:
        click.echo("No low-stock products.")
        return
    for p in products:
        click.echo(f"{p.id:>5}  {p.sku:<16} {p.quantity:>6} / {p.reorder_level:<6} {p.name}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
