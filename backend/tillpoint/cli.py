# Overview: Flask CLI command groups for bootstrap, demo data, and user management.

# backend/tillpoint/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin/manager/cashier users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
# - python -m flask users create --username jane --email jane@tillpoint.local --password "Password123" --role MANAGER
#
# Demo data:
# - python -m flask catalog seed-demo
#   Categories, products, variants and customers to try the till with.

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import Category, Customer, Product, User, Variant
from .permissions import ROLES
from .services.auth_service import create_user


DEFAULT_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and default users.

    Users: admin, manager, cashier (password "Password123").
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Tillpoint...")
    db.create_all()

    for role in ROLES:
        username = role.lower()
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                username=username,
                email=f"{username}@tillpoint.local",
                password=DEFAULT_PASSWORD,
                role=role,
            )
        except PosError as e:
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")
            continue
        click.echo(f"PASS Created user: {username} with role {role}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for role in ROLES:
        click.echo(f"   {role.lower():<8} / {DEFAULT_PASSWORD}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and creation."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        state = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<16} {user.role:<8} {user.email:<32} {state}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES, case_sensitive=False), default='CASHIER', show_default=True)
@with_appcontext
def create_user_command(username, email, password, role):
    try:
        user = create_user(username=username, email=email, password=password, role=role)
    except PosError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role {user.role})")


@click.group('catalog')
def catalog_group():
    """Catalog demo data."""


DEMO_CATEGORIES = [
    ("Beverages", "beverages"),
    ("Snacks", "snacks"),
    ("Apparel", "apparel"),
]

# (category slug, sku, barcode, name, price cents, cost cents, stock, min level)
DEMO_PRODUCTS = [
    ("beverages", "BEV-COLA", "0123456789012", "Cola 330ml", 150, 60, 120, 24),
    ("beverages", "BEV-WATER", "0123456789029", "Still Water 500ml", 100, 30, 200, 48),
    ("snacks", "SNK-CHIPS", "0123456789036", "Salted Chips", 250, 110, 60, 12),
    ("snacks", "SNK-BAR", "0123456789043", "Chocolate Bar", 180, 75, 8, 10),
    ("apparel", "APP-TEE", None, "Logo T-Shirt", 1999, 800, 0, 0),
]

DEMO_VARIANTS = [
    ("APP-TEE", "APP-TEE-S", "Small", {"size": "S"}, 10),
    ("APP-TEE", "APP-TEE-M", "Medium", {"size": "M"}, 15),
    ("APP-TEE", "APP-TEE-L", "Large", {"size": "L"}, 5),
]

DEMO_CUSTOMERS = [
    ("Alice", "Walker", "alice@example.com", "555-0101"),
    ("Bob", "Nguyen", "bob@example.com", "555-0102"),
]


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotent: existing SKUs and emails are left alone."""
    categories = {}
    for name, slug in DEMO_CATEGORIES:
        category = db.session.query(Category).filter_by(slug=slug).first()
        if not category:
            category = Category(name=name, slug=slug)
            db.session.add(category)
        categories[slug] = category
    db.session.flush()

    created = 0
    products = {}
    for slug, sku, barcode, name, price, cost, stock, min_level in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if not product:
            product = Product(
                category_id=categories[slug].id,
                sku=sku,
                barcode=barcode,
                name=name,
                price_cents=price,
                cost_cents=cost,
                stock_quantity=stock,
                min_stock_level=min_level,
            )
            db.session.add(product)
            created += 1
        products[sku] = product
    db.session.flush()

    for product_sku, sku, name, attributes, stock in DEMO_VARIANTS:
        if db.session.query(Variant).filter_by(sku=sku).first():
            continue
        db.session.add(Variant(
            product_id=products[product_sku].id,
            sku=sku,
            name=name,
            attributes=attributes,
            stock_quantity=stock,
        ))
        created += 1

    for first, last, email, phone in DEMO_CUSTOMERS:
        if db.session.query(Customer).filter_by(email=email).first():
            continue
        db.session.add(Customer(first_name=first, last_name=last, email=email, phone=phone))
        created += 1

    db.session.commit()
    click.echo(f"PASS Seeded {created} demo records")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
