# Overview: Flask CLI command groups for bootstrap, seeding, and maintenance.

# backend/inventory_engine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent). Use `flask db upgrade` for migrated deployments.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
# - python -m flask orgs create --name "Acme Travel" --code "ACME"
#
# Catalog seeding (the catalog itself is owned upstream):
# - python -m flask catalog add-supplier --org-id 1 --name "Hotel Sol" --priority 150
# - python -m flask catalog add-variant --org-id 1 --name "Double Room" --code DBL
#
# Availability:
# - python -m flask availability generate --org-id 1 --variant-id 3 --from 2026-03-01 --to 2026-03-31 [--quantity 10]
#   Seed daily allocations; existing dates are skipped.
#
# Maintenance:
# - python -m flask maintenance expire-holds [--now 2026-03-01T00:00:00Z]
#   Release holds past their release period (schedule this, e.g. every 15 minutes).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Supplier, ProductVariant, AllocationBucket
from .services import availability_service
from .services import maintenance_service
from .time_utils import parse_iso_date, parse_iso_datetime
from .validation import ENGINE_ERRORS


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask orgs create' to add a tenant.")


# =============================================================================
# ORGANIZATION MANAGEMENT COMMANDS (MULTI-TENANT)
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Allocations'}")
    click.echo("="*80)

    for org in orgs:
        bucket_count = db.session.query(AllocationBucket).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"

        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {bucket_count}")

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# CATALOG SEEDING
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Seed suppliers and variants for local use."""


@catalog_group.command('add-supplier')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Supplier name')
@click.option('--code', help='Supplier code (unique within org)')
@click.option('--priority', type=int, default=100, show_default=True, help='Default waterfall priority')
@with_appcontext
def add_supplier(org_id, name, code, priority):
    if not db.session.get(Organization, org_id):
        raise click.ClickException(f"Organization {org_id} not found")
    supplier = Supplier(org_id=org_id, name=name, code=code, default_priority=priority)
    db.session.add(supplier)
    db.session.commit()
    click.echo(f"PASS Created supplier: {supplier.name} (ID: {supplier.id})")


@catalog_group.command('add-variant')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Variant name')
@click.option('--code', help='Variant code (unique within org)')
@click.option('--type', 'variant_type', default='room', show_default=True)
@with_appcontext
def add_variant(org_id, name, code, variant_type):
    if not db.session.get(Organization, org_id):
        raise click.ClickException(f"Organization {org_id} not found")
    variant = ProductVariant(org_id=org_id, name=name, code=code, variant_type=variant_type)
    db.session.add(variant)
    db.session.commit()
    click.echo(f"PASS Created variant: {variant.name} (ID: {variant.id})")


# =============================================================================
# AVAILABILITY
# =============================================================================

@click.group('availability')
def availability_group():
    """Availability generation commands."""


@availability_group.command('generate')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--variant-id', 'variant_ids', type=int, multiple=True, required=True, help='Repeat for several variants')
@click.option('--from', 'date_from', required=True, help='First date (YYYY-MM-DD)')
@click.option('--to', 'date_to', required=True, help='Last date (YYYY-MM-DD)')
@click.option('--quantity', type=int, default=None, help='Per-day quantity (default DEFAULT_DAILY_QUANTITY)')
@click.option('--supplier-id', type=int, default=None)
@with_appcontext
def generate_availability_cli(org_id, variant_ids, date_from, date_to, quantity, supplier_id):
    """Seed daily allocations; dates that already have one are skipped."""
    try:
        start = parse_iso_date(date_from)
        end = parse_iso_date(date_to)
    except ValueError:
        raise click.BadParameter("dates must be YYYY-MM-DD")

    try:
        results = availability_service.generate_availability(
            org_id=org_id,
            variant_ids=list(variant_ids),
            date_from=start,
            date_to=end,
            quantity=quantity,
            supplier_id=supplier_id,
        )
    except ENGINE_ERRORS as e:
        raise click.ClickException(str(e))

    for row in results:
        status = "PASS" if not row["failed"] else "WARN"
        click.echo(
            f"{status} variant {row['variant_id']}: created={row['created']} "
            f"skipped={row['skipped']} failed={row['failed']}"
        )


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('expire-holds')
@click.option('--now', 'now_raw', default=None, help='Override current time (ISO-8601, for replays)')
@with_appcontext
def expire_holds_cli(now_raw):
    """
    Release HELD reservations whose release period has passed.

    Intended to run on a schedule outside the request path.
    """
    try:
        now = parse_iso_datetime(now_raw) if now_raw else None
    except ValueError:
        raise click.BadParameter("--now must be an ISO-8601 datetime")

    summary = maintenance_service.expire_stale_holds(now=now)
    click.echo(f"Expired {summary['expired']} hold(s), skipped {summary['skipped']}, failed {summary['failed']}.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(catalog_group)
    app.cli.add_command(availability_group)
    app.cli.add_command(maintenance_group)
