# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/orderflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Fulfillment store:
# - python -m flask dispatch seed-workflow [--name "Standard"] [--steps "Visit,Review"]
#   Idempotently create a workflow sequence and its steps; prints the ids to
#   use as DEFAULT_DISPATCH_SEQUENCE_ID / DEFAULT_DISPATCH_STEP_ID.
# - python -m flask dispatch schema [--table dispatch_jobs]
#   Show the live (reflected) columns the schema-adaptive writer sees.
#
# Checkout traces:
# - python -m flask traces show <trace_id>
#   Print every stage and failure recorded for one checkout.
#
# Promotions:
# - python -m flask promos list [--all]
#   List the promo allow-list from PROMO_CODES_JSON.
#
# Payouts:
# - python -m flask payouts record <job_id> [--amount-cents 7000] [--recipient-id ...]
#   Record a job completion in the payouts ledger (same path as the API).
# - python -m flask payouts review <payout_id> --action approve|reject [--note "..."]
#   Approve or reject an open ledger entry.

import uuid

import click
from flask.cli import with_appcontext

from .errors import OrderflowError
from .services import payout_service, promotions_service, trace_service
from .services.store_client import StoreError, dispatch_store


# =============================================================================
# FULFILLMENT STORE COMMANDS
# =============================================================================

@click.group('dispatch')
def dispatch_group():
    """Fulfillment store bootstrap and inspection commands."""


@dispatch_group.command('seed-workflow')
@click.option('--name', default='Standard', show_default=True, help='Sequence name')
@click.option('--steps', default='Service visit', show_default=True, help='Comma-separated step names')
@click.option('--recipient-email', default=None, help='Also create a fallback recipient')
@with_appcontext
def seed_workflow(name, steps, recipient_email):
    """Create a workflow sequence and steps if they do not exist."""
    store = dispatch_store()
    try:
        existing = store.select('sequences', {'name': name}, limit=1)
        if existing:
            sequence_id = existing[0]['sequence_id']
            click.echo(f"SKIP Sequence '{name}' exists ({sequence_id})")
        else:
            sequence_id = str(uuid.uuid4())
            store.insert('sequences', {'sequence_id': sequence_id, 'name': name})
            click.echo(f"PASS Created sequence '{name}' ({sequence_id})")

        for position, step_name in enumerate([s.strip() for s in steps.split(',') if s.strip()], start=1):
            found = store.select('sequence_steps', {'sequence_id': sequence_id, 'name': step_name}, limit=1)
            if found:
                click.echo(f"SKIP Step '{step_name}' exists ({found[0]['step_id']})")
                continue
            step_id = str(uuid.uuid4())
            store.insert('sequence_steps', {
                'step_id': step_id,
                'sequence_id': sequence_id,
                'position': position,
                'name': step_name,
            })
            click.echo(f"PASS Created step {position} '{step_name}' ({step_id})")

        if recipient_email:
            from .services.recipient_service import resolve_recipient
            recipient_id = resolve_recipient(recipient_email)
            click.echo(f"PASS Recipient {recipient_email} -> {recipient_id}")
    except (StoreError, OrderflowError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)


@dispatch_group.command('schema')
@click.option('--table', 'tables', multiple=True, help='Table(s) to show (default: all known)')
@with_appcontext
def show_schema(tables):
    """Show reflected columns for fulfillment tables."""
    store = dispatch_store()
    store.refresh_schema()
    tables = tables or ('recipients', 'sequences', 'sequence_steps', 'dispatch_jobs',
                        'dispatch_job_lines', 'jobs', 'payouts_ledger')
    for table in tables:
        if not store.has_table(table):
            click.echo(f"\n{table}: MISSING")
            continue
        tbl = store.table(table)
        click.echo(f"\n{table}")
        click.echo("-" * 60)
        for col in tbl.columns:
            flags = []
            if col.primary_key:
                flags.append('PK')
            if not col.nullable:
                flags.append('NOT NULL')
            for fk in col.foreign_keys:
                flags.append(f'-> {fk.target_fullname}')
            click.echo(f"  {col.name:<24} {str(col.type):<16} {' '.join(flags)}")


# =============================================================================
# TRACE COMMANDS
# =============================================================================

@click.group('traces')
def traces_group():
    """Checkout trace inspection commands."""


@traces_group.command('show')
@click.argument('trace_id')
@with_appcontext
def show_trace(trace_id):
    """Print stages and failures for one checkout trace."""
    trace = trace_service.get_trace(trace_id)
    if not trace['traces'] and not trace['failures']:
        click.echo(f"No trace found for {trace_id}")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'Time':<22} {'Stage':<20} {'Order':<22} {'Job'}")
    click.echo("=" * 80)
    for row in trace['traces']:
        click.echo(f"{row['created_at'] or '-':<22} {row['stage']:<20} {row['order_code'] or '-':<22} {row['job_id'] or '-'}")
    for row in trace['failures']:
        click.echo(f"{row['created_at'] or '-':<22} FAIL {row['stage']:<15} {row['error_code'] or '-'}: {row['error_message']}")
    click.echo("=" * 80 + "\n")


# =============================================================================
# PROMOTION COMMANDS
# =============================================================================

@click.group('promos')
def promos_group():
    """Promo allow-list commands."""


@promos_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive codes')
@with_appcontext
def list_promos(show_all):
    """List configured promo codes."""
    promos = promotions_service.list_promotions(active_only=not show_all)
    if not promos:
        click.echo("No promo codes configured.")
        return
    for promo in promos:
        active_str = "Yes" if promo['active'] else "No"
        click.echo(f"{promo['code']:<20} {promo['id'] or '-':<30} {active_str}")


# =============================================================================
# PAYOUT COMMANDS
# =============================================================================

@click.group('payouts')
def payouts_group():
    """Payout ledger commands."""


@payouts_group.command('record')
@click.argument('job_id')
@click.option('--recipient-id', default=None, help='Override the job recipient')
@click.option('--amount-cents', type=int, default=None, help='Explicit payout amount')
@with_appcontext
def record_payout(job_id, recipient_id, amount_cents):
    """Record a job completion in the payouts ledger."""
    try:
        result = payout_service.record_completion(job_id, recipient_id=recipient_id, amount_cents=amount_cents)
    except OrderflowError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    entry = result.entry
    click.echo(f"PASS {result.outcome}: payout {entry.get('payout_id')} = {entry.get('amount_cents')} cents")
    for warning in result.warnings:
        click.echo(f"WARN {warning}")


@payouts_group.command('review')
@click.argument('payout_id')
@click.option('--action', type=click.Choice(['approve', 'reject']), required=True)
@click.option('--note', default=None, help='Reviewer note stored on the entry')
@with_appcontext
def review_payout(payout_id, action, note):
    """Approve or reject a payout ledger entry."""
    try:
        entry = payout_service.review_payout(payout_id, action, note=note)
    except OrderflowError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS payout {payout_id} is {entry.get('status')}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(dispatch_group)
    app.cli.add_command(traces_group)
    app.cli.add_command(promos_group)
    app.cli.add_command(payouts_group)
