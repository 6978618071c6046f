# Overview: Flask CLI command groups for bootstrap and daily stock operations.

# backend/devicestock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use "flask db upgrade" for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Company management (MULTI-TENANT):
# - python -m flask companies list
# - python -m flask companies create --name "Acme Devices" --code "ACME"
#
# Daily stock sessions:
# - python -m flask stock open-day --company-id 1 [--date 2024-05-01] [--user-id 1 --user-name "Ops"]
#   Capture opening counts for the day.
# - python -m flask stock close-day --company-id 1 [--date 2024-05-01] [--notes "..."]
#   Capture closing counts and discrepancies. Closing is final.
# - python -m flask stock report --company-id 1 [--date 2024-05-01] [--html]
#   Print the daily report for a session.

import click
from flask.cli import with_appcontext

from .errors import DeviceStockError
from .extensions import db
from .identity import Actor
from .models import Company, InventoryItem
from .services import daily_stock_service, reporting_service
from .time_utils import business_today, parse_iso_date


def _parse_day(value):
    if not value:
        return business_today()
    try:
        return parse_iso_date(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a YYYY-MM-DD date", param_hint="--date")


def _operator(company_id, user_id, user_name):
    return Actor(id=user_id, name=user_name, email=None, company_id=company_id)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created")


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


# =============================================================================
# COMPANY COMMANDS
# =============================================================================

@click.group('companies')
def companies_group():
    """Company (tenant) management commands."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    """List all companies."""
    companies = db.session.query(Company).order_by(Company.id).all()

    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Items'}")
    click.echo("="*70)

    for company in companies:
        item_count = db.session.query(InventoryItem).filter_by(company_id=company.id).count()
        active_str = "Yes" if company.is_active else "No"
        click.echo(f"{company.id:<5} {company.name:<30} {company.code or '-':<15} {active_str:<8} {item_count}")

    click.echo("="*70 + "\n")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_company_cli(name, code):
    """Create a new company (tenant)."""
    existing = db.session.query(Company).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Company with code '{code}' already exists")
        return

    company = Company(name=name, code=code, is_active=True)
    db.session.add(company)
    db.session.commit()

    click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Code: {company.code})")


# =============================================================================
# DAILY STOCK COMMANDS
# =============================================================================

@click.group('stock')
def stock_group():
    """Daily stock open/close and reporting."""


@stock_group.command('open-day')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--date', 'day', help='Business date (YYYY-MM-DD), default today')
@click.option('--user-id', type=int, default=0, show_default=True, help='Operator user ID')
@click.option('--user-name', default='cli', show_default=True, help='Operator name')
@with_appcontext
def open_day_cli(company_id, day, user_id, user_name):
    """Open the daily stock session and capture opening counts."""
    business_date = _parse_day(day)
    try:
        session = daily_stock_service.open_day(
            company_id, _operator(company_id, user_id, user_name), business_date,
        )
    except DeviceStockError as exc:
        click.echo(f"FAIL {exc.message}")
        return

    counts = session.opening_count
    click.echo(f"PASS Opened session {session.id} for {business_date.isoformat()} (opening total {counts['total']})")
    for bucket, n in counts["by_status"].items():
        click.echo(f"  {bucket:<12} {n}")


@stock_group.command('close-day')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--date', 'day', help='Business date (YYYY-MM-DD), default today')
@click.option('--notes', help='Closing notes')
@click.option('--user-id', type=int, default=0, show_default=True, help='Operator user ID')
@click.option('--user-name', default='cli', show_default=True, help='Operator name')
@with_appcontext
def close_day_cli(company_id, day, notes, user_id, user_name):
    """Close the daily stock session and report discrepancies."""
    business_date = _parse_day(day)
    try:
        session = daily_stock_service.close_day(
            company_id, _operator(company_id, user_id, user_name), business_date, notes=notes,
        )
    except DeviceStockError as exc:
        click.echo(f"FAIL {exc.message}")
        return

    click.echo(f"PASS Closed session {session.id} for {business_date.isoformat()} (closing total {session.closing_total})")
    if not session.discrepancies:
        click.echo("  No discrepancies")
    for d in session.discrepancies:
        click.echo(f"  WARN {d['description']}")


@stock_group.command('report')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--date', 'day', help='Business date (YYYY-MM-DD), default today')
@click.option('--html', 'as_html', is_flag=True, help='Print the rendered HTML report')
@with_appcontext
def report_cli(company_id, day, as_html):
    """Print the daily stock report."""
    business_date = _parse_day(day)
    try:
        report = reporting_service.get_daily_report(company_id, business_date)
    except DeviceStockError as exc:
        click.echo(f"FAIL {exc.message}")
        return

    if as_html:
        click.echo(reporting_service.render_daily_report_html(report))
        return

    tx = report["transactions"]
    cash = report["cash_flow"]
    click.echo(f"Daily Stock Report - {report['date']} ({report['status']})")
    click.echo(f"  Opening stock:      {report['opening_count']['total']}")
    if report["closing_count"] is not None:
        click.echo(f"  Closing stock:      {report['closing_count']['total']}")
        click.echo(f"  Net change:         {report['net_inventory_change']}")
    click.echo(f"  Sales:              {tx['sales']}")
    click.echo(f"  Repairs sent:       {tx['repairs_sent']}")
    click.echo(f"  Repairs completed:  {tx['repairs_completed']}")
    click.echo(f"  Returns:            {tx['returns']}")
    click.echo(f"  New additions:      {tx['new_additions']}")
    click.echo(f"  Total transactions: {report['total_transactions']}")
    click.echo(f"  Revenue:            {reporting_service.format_cents(cash['total_cents'])}")
    for d in report["discrepancies"]:
        click.echo(f"  WARN {d['description']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(companies_group)  # Multi-tenant company management
    app.cli.add_command(stock_group)
