# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/modulestore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for managed deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Module inspection:
# - python -m flask modules list [--all]
#   List active modules (--all includes inactive ones).
# - python -m flask modules stats contacts
#   Block, field, record and relationship counts for one module.
#
# Record maintenance:
# - python -m flask records prune-stale contacts
#   Drop document keys of fields that no longer exist.
# - python -m flask records purge-trashed contacts --older-than-days 30
#   Permanently delete soft-deleted records.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import module_service, record_service
from .validation import ModuleStoreError


def _module_id(api_name: str) -> int:
    try:
        return module_service.get_module_by_api_name(api_name).id
    except ModuleStoreError as exc:
        raise click.ClickException(str(exc))


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema created.")


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

    current_app.logger.info("Database reset")
    click.echo("PASS Database reset complete.")


@click.group('modules')
def modules_group():
    """Module inspection commands."""


@modules_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive modules')
@with_appcontext
def list_modules_cli(show_all):
    """List modules."""
    modules = module_service.list_modules(active_only=not show_all)

    if not modules:
        click.echo("No modules found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'API Name':<25} {'Active':<8} {'System'}")
    click.echo("="*80)

    for module in modules:
        active_str = "Yes" if module.is_active else "No"
        system_str = "Yes" if module.is_system else "No"
        click.echo(f"{module.id:<5} {module.name:<30} {module.api_name:<25} {active_str:<8} {system_str}")

    click.echo("="*80 + "\n")


@modules_group.command('stats')
@click.argument('api_name')
@with_appcontext
def module_stats_cli(api_name):
    """Show counts for one module."""
    stats = module_service.get_module_stats(module_id=_module_id(api_name))

    click.echo(f"\n{stats['name']} ({stats['api_name']})")
    click.echo(f"  Blocks:        {stats['total_blocks']}")
    click.echo(f"  Fields:        {stats['total_fields']}")
    click.echo(f"  Records:       {stats['total_records']}")
    click.echo(f"  Trashed:       {stats['trashed_records']}")
    click.echo(f"  Relationships: {stats['total_relationships']}")
    click.echo(f"  Active:        {'Yes' if stats['is_active'] else 'No'}")
    click.echo(f"  System:        {'Yes' if stats['is_system'] else 'No'}\n")


@click.group('records')
def records_group():
    """Record maintenance commands."""


@records_group.command('prune-stale')
@click.argument('api_name')
@with_appcontext
def prune_stale_cli(api_name):
    """Drop document keys of fields that no longer exist."""
    changed = record_service.prune_stale_keys(module_id=_module_id(api_name))
    click.echo(f"Pruned stale keys from {changed} records in '{api_name}'.")


@records_group.command('purge-trashed')
@click.argument('api_name')
@click.option('--older-than-days', type=int, default=None, help='Only records trashed at least N days ago')
@with_appcontext
def purge_trashed_cli(api_name, older_than_days):
    """Permanently delete soft-deleted records."""
    try:
        purged = record_service.purge_trashed_records(
            module_id=_module_id(api_name),
            older_than_days=older_than_days,
        )
    except ModuleStoreError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Purged {purged} trashed records from '{api_name}'.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(modules_group)
    app.cli.add_command(records_group)
