# Overview: Flask CLI command groups for inspection and maintenance.

# Usage, from backend/ with FLASK_APP=wsgi.py:
#   flask <group> <command> [options]
#
# System:
# - flask system reset-db --yes
#   Local databases only: drop and recreate the schema.
#
# Stock inspection:
# - flask stock batches --branch BR01 --product P001 [--usage-type otc]
#   List batches in FIFO order with remaining quantities.
# - flask stock movements --branch BR01 [--product P001] [--bill-id 12] [--limit 20]
#   List recent FIFO deductions.
#
# Loyalty inspection:
# - flask loyalty balance --client C001
#   Show per-branch balances for a client.
# - flask loyalty verify --client C001 --branch BR01
#   Compare the cached balance with the sum of its log entries.
#
# Audit:
# - flask audit tail --branch BR01 [--limit 20]
#   Show the most recent audit entries for a branch.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import UsageType
from .services import audit_service, loyalty_service, stock_service


@click.group('system')
def system_group():
    """System maintenance commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask before wiping')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Bills, stock and loyalty history are lost."""
    tables = [t.name for t in db.metadata.sorted_tables]
    if not yes:
        click.confirm(f"Wipe {len(tables)} tables in {db.engine.url.database or 'memory'}?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo(f"Recreated: {', '.join(tables)}")


@click.group('stock')
def stock_group():
    """Branch stock batch inspection."""


@stock_group.command('batches')
@click.option('--branch', 'branch_id', required=True, help='Branch ID')
@click.option('--product', 'product_id', required=True, help='Product ID')
@click.option('--usage-type', type=click.Choice([u.value for u in UsageType]), help='Limit to one stock pool')
@with_appcontext
def list_batches(branch_id, product_id, usage_type):
    """List batches for a product, oldest first."""
    batches = stock_service.get_product_batches(branch_id, product_id, usage_type=usage_type)
    if not batches:
        click.echo("No batches found.")
        return

    click.echo(f"{'ID':<6} {'Batch':<14} {'Pool':<10} {'Received':<20} {'Remaining':>9} {'Of':>6} {'Status':<9}")
    click.echo("-" * 80)
    for b in batches:
        received = b.received_at.strftime("%Y-%m-%d %H:%M") if b.received_at else "-"
        click.echo(
            f"{b.id:<6} {(b.batch_number or '-'):<14} {b.usage_type.value:<10} {received:<20} "
            f"{b.remaining_quantity:>9} {b.received_quantity:>6} {b.status.value:<9}"
        )

    for usage in UsageType:
        available = stock_service.get_available_quantity(branch_id, product_id, usage)
        click.echo(f"Available {usage.value}: {available}")


@stock_group.command('movements')
@click.option('--branch', 'branch_id', required=True, help='Branch ID')
@click.option('--product', 'product_id', help='Filter by product ID')
@click.option('--bill-id', type=int, help='Filter by bill ID')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_movements(branch_id, product_id, bill_id, limit):
    """List recent FIFO deductions at a branch."""
    movements = stock_service.get_stock_movements(branch_id, product_id=product_id, bill_id=bill_id, limit=limit)
    if not movements:
        click.echo("No movements found.")
        return

    for m in movements:
        short = f" SHORT {m.shortfall}" if m.shortfall else ""
        click.echo(
            f"[{m.created_at:%Y-%m-%d %H:%M}] {m.product_id} {m.usage_type.value} "
            f"{m.deducted_quantity}/{m.requested_quantity}{short} "
            f"reason={m.reason!r} bill={m.bill_id or '-'} by={m.performed_by}"
        )


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger inspection."""


@loyalty_group.command('balance')
@click.option('--client', 'client_id', required=True, help='Client ID')
@with_appcontext
def show_balance(client_id):
    """Show per-branch balances for a client."""
    accounts = loyalty_service.get_all_branch_loyalty_points(client_id)
    if not accounts:
        click.echo(f"No loyalty accounts for {client_id}.")
        return

    for a in accounts:
        click.echo(
            f"{a.branch_id:<16} balance={a.points_balance:<8} "
            f"earned={a.lifetime_points_earned:<8} redeemed={a.lifetime_points_redeemed}"
        )


@loyalty_group.command('verify')
@click.option('--client', 'client_id', required=True, help='Client ID')
@click.option('--branch', 'branch_id', required=True, help='Branch ID')
@with_appcontext
def verify_balance(client_id, branch_id):
    """Exit non-zero if the balance disagrees with its log."""
    check = loyalty_service.verify_loyalty_balance(client_id, branch_id)
    if check.consistent:
        click.echo(f"PASS balance {check.balance} matches log")
        return
    click.echo(f"FAIL balance {check.balance} != log sum {check.log_sum}")
    raise SystemExit(1)


@click.group('audit')
def audit_group():
    """Audit log inspection."""


@audit_group.command('tail')
@click.option('--branch', 'branch_id', required=True, help='Branch ID')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def tail_audit(branch_id, limit):
    """Show the most recent audit entries for a branch."""
    entries = audit_service.get_branch_audit_log(branch_id, limit)
    for e in reversed(entries):
        click.echo(
            f"[{e.created_at:%Y-%m-%d %H:%M:%S}] {e.outcome.value:<8} {e.action:<18} "
            f"{e.entity_type}:{e.entity_id or '-'} by {e.performed_by} {e.details or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(loyalty_group)
    app.cli.add_command(audit_group)
