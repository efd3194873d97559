# Overview: Flask CLI command groups for bootstrap, user setup, and payment workflow maintenance.

# backend/tcms/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent) and seed the receipt sequence row.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username cashier1 --full-name "Juan Dela Cruz" --role cashier
# - python -m flask users list
#
# Payment workflow:
# - python -m flask payments pending-print [--user-id 3]
#   Payments waiting for print confirmation, oldest first.
# - python -m flask payments check-consistency [--stale-hours 24]
#   Citation/payment consistency report; exits 1 when critical issues are found.
# - python -m flask payments next-receipt-number
#   Preview the next generated OR number (sequence source).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User, ReceiptSequence
from .models.enums import UserRole, values
from .services import consistency_service, payment_query
from .services.receipt_numbering import SEQUENCE_ROW_ID, peek_next_sequence_number
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables and seed the receipt sequence row (idempotent)."""
    click.echo("BUILD  Creating tables...")
    db.create_all()

    if db.session.get(ReceiptSequence, SEQUENCE_ROW_ID) is None:
        db.session.add(ReceiptSequence(id=SEQUENCE_ROW_ID, current_year=utcnow().year, current_number=0))
        db.session.commit()
        click.echo("PASS Seeded receipt sequence")
    else:
        click.echo("PASS Receipt sequence already present")

    click.echo("PASS Database ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the audit trail!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to seed.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', default=None, help='Full name shown on receipts and reports')
@click.option('--role', type=click.Choice(values(UserRole)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, full_name, role):
    """Create a user. Authentication itself is handled upstream."""
    username = username.strip()
    if not username:
        raise click.ClickException("Username is required")
    if db.session.query(User).filter_by(username=username).first():
        raise click.ClickException(f"User '{username}' already exists")

    user = User(username=username, full_name=full_name, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, Role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Full name':<30} {'Role':<10} {'Active'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {(user.full_name or ''):<30} {user.role:<10} {active_str}")

    click.echo("="*80 + "\n")


@click.group('payments')
def payments_group():
    """Payment workflow inspection commands."""


@payments_group.command('pending-print')
@click.option('--user-id', type=int, default=None, help='Only payments collected by this user')
@with_appcontext
def pending_print(user_id):
    """List payments waiting for print confirmation."""
    summary = payment_query.get_pending_print_summary(user_id)
    if not summary["has_pending"]:
        click.echo("PASS No payments pending print.")
        return

    click.echo(f"WARN {summary['count']} payment(s) pending print; oldest {summary['oldest_minutes']} minute(s)")
    click.echo(f"{'ID':<6} {'OR Number':<16} {'Ticket':<16} {'Amount':>12} {'Minutes':>8}")
    for row in payment_query.list_pending_print_payments(user_id):
        click.echo(
            f"{row['payment_id']:<6} {row['receipt_number']:<16} {(row['ticket_number'] or ''):<16} "
            f"{row['amount_paid']:>12} {row['minutes_pending']:>8}"
        )


@payments_group.command('check-consistency')
@click.option('--stale-hours', type=int, default=None, help='Pending-print age that counts as stale')
@with_appcontext
def check_consistency(stale_hours):
    """Run the citation/payment consistency checks."""
    if stale_hours is None:
        stale_hours = current_app.config["STALE_PENDING_PRINT_HOURS"]

    report = consistency_service.run_consistency_checks(stale_hours)
    for check in report["checks"]:
        marker = "PASS" if check["issue_count"] == 0 else ("FAIL" if check["severity"] == "critical" else "WARN")
        click.echo(f"{marker} {check['name']}: {check['issue_count']} issue(s)")
        if check["issue_count"]:
            click.echo(f"     {check['recommendation']}")

    click.echo(f"\nTotal issues: {report['total_issues']}")
    if report["has_critical_issues"]:
        raise SystemExit(1)


@payments_group.command('next-receipt-number')
@with_appcontext
def next_receipt_number():
    """Show the next OR number the sequence source would allocate."""
    click.echo(peek_next_sequence_number())


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(payments_group)
