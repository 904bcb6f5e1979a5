# Overview: Flask CLI command groups for bootstrap and seeding.

# backend/billdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin and cashier users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username cashier2 --email c2@billdesk.local --password "Password123" --role user
#   Create a user (prompts if options are omitted).
#
# Catalog:
# - python -m flask products create --name "Rice 1kg" --barcode 8901 --mrp 60 --price 55 --gst 5 --stock 100
#   Create a product with opening stock.

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .errors import BillingError
from .extensions import db
from .models import Product, User
from .models.auth import ROLES, ROLE_ADMIN, ROLE_USER
from .services.auth_service import create_user


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and default users.

    Creates:
    - admin/admin@billdesk.local (admin)
    - cashier/cashier@billdesk.local (user)
    - All passwords default to: "Password123"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing billing system...")
    db.create_all()

    default_password = "Password123"
    default_users = [
        ("admin", "admin@billdesk.local", ROLE_ADMIN),
        ("cashier", "cashier@billdesk.local", ROLE_USER),
    ]

    for username, email, role in default_users:
        existing = db.session.query(User).filter_by(username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        create_user(username=username, email=email, password=default_password, role=role)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")

    click.echo("\nDONE Billing system initialized")
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin   -> admin@billdesk.local   / Password123")
    click.echo("   cashier -> cashier@billdesk.local / Password123")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), default=ROLE_USER, show_default=True, help='Role')
@click.option('--first-name', default='', help='First name')
@click.option('--last-name', default='', help='Last name')
@with_appcontext
def create_user_cli(username, email, password, role, first_name, last_name):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            first_name=first_name,
            last_name=last_name,
        )
    except BillingError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.username).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<8} {'Active'}")
    for user in users:
        click.echo(
            f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<8} "
            f"{'Yes' if user.is_active else 'No'}"
        )


@click.group('products')
def products_group():
    """Catalog seeding commands."""


@products_group.command('create')
@click.option('--name', required=True, help='Product name')
@click.option('--barcode', default=None, help='Barcode / product code (unique)')
@click.option('--hsn', 'hsn_code', default=None, help='HSN code')
@click.option('--unit', default='pcs', show_default=True)
@click.option('--mrp', type=Decimal, required=True)
@click.option('--price', 'sales_price', type=Decimal, required=True, help='Sales price')
@click.option('--gst', 'gst_rate', type=Decimal, default=Decimal("0"), show_default=True, help='GST rate in percent')
@click.option('--stock', 'stock_quantity', type=Decimal, default=Decimal("0"), show_default=True)
@with_appcontext
def create_product_cli(name, barcode, hsn_code, unit, mrp, sales_price, gst_rate, stock_quantity):
    """Create a catalog product with opening stock."""
    if stock_quantity < 0:
        raise click.ClickException("stock cannot be negative")
    if gst_rate < 0 or gst_rate > 100:
        raise click.ClickException("gst must be between 0 and 100")
    if barcode and db.session.query(Product).filter_by(barcode=barcode).first():
        raise click.ClickException(f"Product with barcode '{barcode}' already exists")

    product = Product(
        name=name,
        barcode=barcode,
        hsn_code=hsn_code,
        unit=unit,
        mrp=mrp,
        sales_price=sales_price,
        gst_rate=gst_rate,
        stock_quantity=stock_quantity,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, stock {product.stock_quantity})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
