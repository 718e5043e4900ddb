# Overview: Flask CLI command groups for bootstrap, fiscal setup, and the e-mail queue.

# backend/fiscalpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--admin-password "..."]
#   Idempotent: creates tables, fiscal settings, subscription state, the
#   final-consumer customer and an admin operator.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Operators:
# - python -m flask users list
# - python -m flask users create --username cashier --password "cash1234"
#
# Catalog:
# - python -m flask catalog add-product --sku P-001 --name "Coffee" --price-cents 250 --tax-bps 1500
# - python -m flask catalog add-customer --name "ACME" --id-type TAX_ID --id-number 1790000000001
#
# Fiscal:
# - python -m flask fiscal status
# - python -m flask fiscal environment production
#   Switches the environment; the operator must confirm it again.
# - python -m flask fiscal confirm production
# - python -m flask fiscal quota
# - python -m flask fiscal refresh
#
# Notifications:
# - python -m flask notifications pending
# - python -m flask notifications sweep

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, FiscalSettings, Product, SubscriptionState, User
from .models.catalog import ID_TYPE_FINAL_CONSUMER, VALID_ID_TYPES
from .services import fiscal_context, notification_service, quota_service
from .services.auth_service import PasswordValidationError, UserError, create_user
from .services.concurrency import get_singleton
from .services.fiscal_context import FiscalContextError


FINAL_CONSUMER_ID_NUMBER = "9999999999999"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', help='Administrator username')
@click.option('--admin-password', default='admin1234', help='Administrator password')
@with_appcontext
def init_system(admin_username, admin_password):
    """
    Initialize the point of sale.

    Creates (when missing):
    - All tables
    - Fiscal settings (test environment, not confirmed)
    - Subscription state (trial)
    - The final-consumer customer used on receipts
    - An administrator operator

    SECURITY: Change the administrator password in production!
    """
    click.echo("START Initializing point of sale...")
    db.create_all()

    settings = get_singleton(FiscalSettings)
    click.echo(f"PASS Fiscal settings: environment={settings.environment}, confirmed={settings.environment_confirmed}")

    state = get_singleton(SubscriptionState)
    db.session.commit()
    click.echo(f"PASS Subscription state: plan={state.plan_kind}, free invoices used={state.free_invoices_used}")

    consumer = db.session.query(Customer).filter_by(is_default=True).first()
    if not consumer:
        consumer = Customer(
            name="Final consumer",
            id_type=ID_TYPE_FINAL_CONSUMER,
            id_number=FINAL_CONSUMER_ID_NUMBER,
            is_default=True,
        )
        db.session.add(consumer)
        db.session.commit()
        click.echo(f"PASS Created final-consumer customer (ID: {consumer.id})")
    else:
        click.echo(f"PASS Using existing final-consumer customer (ID: {consumer.id})")

    if db.session.query(User).filter_by(username=admin_username).first():
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        try:
            create_user(admin_username, admin_password, "Administrator", is_admin=True)
            click.echo(f"PASS Created administrator '{admin_username}'")
        except (PasswordValidationError, UserError) as e:
            click.echo(f"FAIL Could not create administrator: {e}")

    click.echo("DONE Point of sale initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm dropping every table')
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
    """Operator management commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    click.echo(f"{'ID':<5} {'Username':<20} {'Admin':<7} {'Active'}")
    for user in users:
        click.echo(f"{user.id:<5} {user.username:<20} {'Yes' if user.is_admin else 'No':<7} {'Yes' if user.is_active else 'No'}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--display-name', default=None)
@click.option('--admin', 'is_admin', is_flag=True, help='Grant administrator access')
@with_appcontext
def create_user_cli(username, password, display_name, is_admin):
    """Create an operator."""
    try:
        user = create_user(username, password, display_name, is_admin=is_admin)
    except (PasswordValidationError, UserError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user: {user.username} (ID: {user.id})")


@click.group('catalog')
def catalog_group():
    """Products and customers."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--tax-bps', type=int, default=None, help='Tax rate in basis points (default from config)')
@with_appcontext
def add_product(sku, name, price_cents, tax_bps):
    if db.session.query(Product).filter_by(sku=sku).first():
        click.echo(f"FAIL Product with SKU '{sku}' already exists")
        return
    if tax_bps is None:
        tax_bps = current_app.config["DEFAULT_TAX_RATE_BPS"]
    product = Product(sku=sku, name=name, price_cents=price_cents, tax_rate_bps=tax_bps)
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product {product.sku} (ID: {product.id})")


@catalog_group.command('add-customer')
@click.option('--name', required=True)
@click.option('--id-type', type=click.Choice(sorted(VALID_ID_TYPES)), required=True)
@click.option('--id-number', required=True)
@click.option('--email', default=None)
@with_appcontext
def add_customer(name, id_type, id_number, email):
    customer = Customer(name=name, id_type=id_type, id_number=id_number, email=email)
    db.session.add(customer)
    db.session.commit()
    click.echo(f"PASS Created customer {customer.name} (ID: {customer.id})")


@click.group('fiscal')
def fiscal_group():
    """Tax environment and subscription commands."""


@fiscal_group.command('status')
@with_appcontext
def fiscal_status():
    ctx = fiscal_context.load_context()
    for key, value in ctx.to_dict().items():
        click.echo(f"{key:<22} {value}")


@fiscal_group.command('environment')
@click.argument('environment')
@with_appcontext
def set_environment(environment):
    """Switch to ENVIRONMENT (test or production); clears the confirmation."""
    try:
        settings = fiscal_context.change_environment(environment)
    except FiscalContextError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Environment is '{settings.environment}' (confirmed={settings.environment_confirmed})")


@fiscal_group.command('confirm')
@click.argument('environment')
@with_appcontext
def confirm_environment(environment):
    try:
        settings = fiscal_context.confirm_environment(environment)
    except FiscalContextError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Environment '{settings.environment}' confirmed")


@fiscal_group.command('quota')
@with_appcontext
def show_quota():
    status = quota_service.subscription_status()
    for key, value in status.items():
        click.echo(f"{key:<24} {value}")


@fiscal_group.command('refresh')
@with_appcontext
def refresh_subscription():
    status = quota_service.refresh_subscription()
    if status["offline"]:
        click.echo("WARN  Subscription server unreachable; cached state kept")
    click.echo(f"PASS plan={status['plan_kind']} can_emit={status['can_emit']} {status['message']}")


@click.group('notifications')
def notifications_group():
    """Deferred e-mail queue."""


@notifications_group.command('pending')
@with_appcontext
def list_pending():
    rows = notification_service.list_queue()
    if not rows:
        click.echo("Queue is empty.")
        return
    click.echo(f"{'ID':<5} {'Document':<20} {'Address':<30} {'Status':<8} {'Attempts':<9} {'Last error'}")
    for row in rows:
        document = f"{row.document_type}#{row.document_id}"
        click.echo(f"{row.id:<5} {document:<20} {row.address:<30} {row.status:<8} {row.attempts:<9} {row.last_error or ''}")


@notifications_group.command('sweep')
@click.option('--batch-size', type=int, default=None)
@with_appcontext
def run_sweep(batch_size):
    result = notification_service.sweep(batch_size=batch_size)
    if result is None:
        click.echo("WARN  A sweep is already running")
        return
    click.echo(f"PASS Swept {result['total']}: sent={result['sent']} failed={result['failed']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(fiscal_group)
    app.cli.add_command(notifications_group)
