# Overview: Flask CLI command groups for bootstrap, stocking and wallet maintenance.

# backend/campuscare/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Dispensaries:
# - python -m flask dispensaries create --name "Library Kiosk" --building "Main Library" --floor 1 --capacity 20
#   Create a dispensary with slots A1..A10, B1..B10.
# - python -m flask dispensaries list
#
# Catalog mirror:
# - python -m flask catalog add-product --name "Water 500ml" --barcode 890100 --category beverages
#
# Inventory:
# - python -m flask inventory stock --dispensary-id 1 --product-id 1 --slot A1 --quantity 10 --cost 1500 --price 3000
#
# Wallets:
# - python -m flask wallet credit --user-id 42 --amount 10000
# - python -m flask wallet verify --user-id 42
#   Replay the ledger and compare it to the stored balance.
#
# Identity (local development only):
# - python -m flask auth issue-token --user-id 42 --role student

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import CampusCareError
from .models import Dispensary, Product
from .models.inventory import PRODUCT_CATEGORIES
from .services import dispensary_service, inventory_service, ledger_service
from .services.auth_service import Principal, ROLE_ADMIN, VALID_ROLES, issue_token

# Commands run with operator rights; user_id 0 is never issued to a person.
CLI_PRINCIPAL = Principal(user_id=0, role=ROLE_ADMIN)


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA including the wallet ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('dispensaries')
def dispensaries_group():
    """Dispensary management commands."""


@dispensaries_group.command('create')
@click.option('--name', required=True)
@click.option('--building', required=True)
@click.option('--floor', type=int, required=True)
@click.option('--room', default=None)
@click.option('--capacity', type=int, required=True, help='Number of slots')
@with_appcontext
def create_dispensary_cli(name, building, floor, room, capacity):
    """Create a dispensary and lay out its slots."""
    try:
        dispensary = dispensary_service.create_dispensary(
            {
                "name": name,
                "location": {"building": building, "floor": floor, "room": room},
                "capacity": capacity,
            },
            CLI_PRINCIPAL,
        )
    except CampusCareError as e:
        raise click.ClickException(e.message)

    labels = [slot.label for slot in dispensary.slots]
    click.echo(f"PASS Created dispensary: {dispensary.name} (ID: {dispensary.id})")
    click.echo(f"     Slots: {labels[0]}..{labels[-1]} ({len(labels)})")


@dispensaries_group.command('list')
@with_appcontext
def list_dispensaries_cli():
    dispensaries = db.session.query(Dispensary).order_by(Dispensary.id).all()
    if not dispensaries:
        click.echo("No dispensaries found.")
        return

    click.echo(f"\n{'ID':<5} {'Name':<30} {'Building':<25} {'Status':<12} {'Slots':<6}")
    click.echo("-" * 80)
    for d in dispensaries:
        click.echo(f"{d.id:<5} {d.name:<30} {d.building:<25} {d.status:<12} {d.capacity:<6}")


@click.group('catalog')
def catalog_group():
    """Catalog mirror commands."""


@catalog_group.command('add-product')
@click.option('--name', required=True)
@click.option('--barcode', required=True)
@click.option('--category', type=click.Choice(PRODUCT_CATEGORIES), default='other', show_default=True)
@click.option('--brand', default=None)
@click.option('--list-price', 'list_price_cents', type=int, default=None, help='Display price in cents')
@with_appcontext
def add_product_cli(name, barcode, category, brand, list_price_cents):
    """Mirror a catalog product locally."""
    if db.session.query(Product).filter_by(barcode=barcode).first():
        raise click.ClickException(f"Product with barcode {barcode} already exists")

    product = Product(
        name=name,
        barcode=barcode,
        category=category,
        brand=brand,
        list_price_cents=list_price_cents,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Added product: {product.name} (ID: {product.id})")


@click.group('inventory')
def inventory_group():
    """Stocking commands."""


@inventory_group.command('stock')
@click.option('--dispensary-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--slot', 'slot_label', required=True, help='Slot label, e.g. A1')
@click.option('--quantity', type=int, required=True)
@click.option('--cost', 'cost_price_cents', type=int, required=True, help='Cost price in cents')
@click.option('--price', 'selling_price_cents', type=int, required=True, help='Selling price in cents')
@click.option('--restock-level', type=int, default=None)
@click.option('--batch', 'batch_number', default=None)
@with_appcontext
def stock_cli(dispensary_id, product_id, slot_label, quantity, cost_price_cents,
              selling_price_cents, restock_level, batch_number):
    try:
        record = inventory_service.stock_item(
            product_id=product_id,
            dispensary_id=dispensary_id,
            slot_label=slot_label,
            quantity=quantity,
            cost_price_cents=cost_price_cents,
            selling_price_cents=selling_price_cents,
            restock_level=restock_level,
            batch_number=batch_number,
            requester=CLI_PRINCIPAL,
        )
    except CampusCareError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"PASS Slot {record.slot_label}: product {record.product_id} "
        f"now {record.quantity} units ({record.status})"
    )


@click.group('wallet')
def wallet_group():
    """Wallet ledger commands."""


@wallet_group.command('credit')
@click.option('--user-id', type=int, required=True)
@click.option('--amount', 'amount_cents', type=int, required=True, help='Amount in cents')
@click.option('--description', default='Wallet top-up', show_default=True)
@with_appcontext
def credit_cli(user_id, amount_cents, description):
    try:
        entry = ledger_service.credit(
            user_id=user_id,
            amount_cents=amount_cents,
            description=description,
            requester=CLI_PRINCIPAL,
        )
    except CampusCareError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Credited {amount_cents} cents to user {user_id} ({entry.transaction_id})")
    click.echo(f"     Balance: {entry.balance_after_cents} cents")


@wallet_group.command('verify')
@click.option('--user-id', type=int, required=True)
@with_appcontext
def verify_cli(user_id):
    """Replay the ledger and compare it against the stored balance."""
    report = ledger_service.replay_balance(user_id)
    if report["consistent"]:
        click.echo(f"PASS User {user_id}: balance {report['balance_cents']} cents matches ledger")
        return

    click.echo(
        f"FAIL User {user_id}: stored {report['balance_cents']} cents, "
        f"ledger replays to {report['replayed_cents']} cents"
    )
    for brk in report["breaks"]:
        click.echo(
            f"     {brk['transaction_id']}: expected {brk['expected_cents']}, "
            f"recorded {brk['recorded_cents']}"
        )
    raise SystemExit(1)


@click.group('auth')
def auth_group():
    """Local identity helpers."""


@auth_group.command('issue-token')
@click.option('--user-id', type=int, required=True)
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), required=True)
@with_appcontext
def issue_token_cli(user_id, role):
    """Print a bearer token for a user. Production tokens come from the identity service."""
    click.echo(issue_token(user_id, role))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(dispensaries_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(wallet_group)
    app.cli.add_command(auth_group)
