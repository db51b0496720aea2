#!/usr/bin/env python
"""
Management Script

CLI commands for running sync cycles outside the HTTP server.

Usage:
    # Run one cycle against the configured tables
    python manage.py fetch

    # Run one cycle for specific tables and save the state bundle
    python manage.py fetch --table Widgets --table "Order Lines" --output state.json

    # Restore a saved state bundle, run an incremental cycle and save it again
    python manage.py fetch --state state.json --output state.json

    # Show the effective configuration
    python manage.py config-check
"""
import asyncio
import json

import click

from airsync.config import get_config
from airsync.models import snapshot_to_dict
from airsync.services import SyncService
from airsync.services.status_broadcaster import KIND_STATUS
from airsync.utils.logger import setup_logger
from airsync.utils.serialization import isoformat_z
from airsync.utils.validators import validate_table_settings


@click.group()
def cli():
    """airsync management commands."""


def _echo_status(kind, payload):
    if kind != KIND_STATUS:
        return
    color = {'errored': 'red', 'success': 'green', 'ratelimited': 'yellow'}.get(payload.type)
    click.echo(click.style(f"  [{isoformat_z(payload.at)}] {payload.type}", fg=color))


@cli.command('fetch')
@click.option('--table', 'tables', multiple=True, help='Table name (repeatable); defaults to AIRTABLE_TABLES')
@click.option('--state', 'state_path', type=click.Path(exists=True, dir_okay=False),
              help='Restore from a state bundle written by --output')
@click.option('--output', type=click.Path(dir_okay=False, writable=True),
              help='Write the resulting state bundle as JSON')
@click.option('--reset', is_flag=True, help='Discard snapshot and cursor before fetching')
def fetch(tables, state_path, output, reset):
    """Run one fetch cycle and print per-table record counts."""
    config_class = get_config()
    setup_logger(log_level=config_class.LOG_LEVEL, log_file=config_class.LOG_FILE)
    overrides = {'parse_tables': snapshot_to_dict}

    if tables:
        ok, err, specs = validate_table_settings(list(tables))
        if not ok:
            raise click.BadParameter(err, param_hint='--table')
        overrides['table_settings'] = specs

    if state_path:
        with open(state_path, encoding='utf-8') as f:
            overrides['restore_from'] = json.load(f)

    try:
        service = SyncService.from_config(config_class, **overrides)
    except ValueError as e:
        raise click.ClickException(str(e))

    unsubscribe = service.subscribe(_echo_status)
    if reset:
        service.request_reset()

    try:
        asyncio.run(service.fetch_base())
    except Exception as e:
        raise click.ClickException(f'Fetch failed: {e}')
    finally:
        unsubscribe()
        service.close()

    click.echo(click.style('✓ Fetch cycle finished', fg='green'))
    for key, count in service.table_counts().items():
        click.echo(f'  - {key}: {count} records')

    if output:
        with open(output, 'w', encoding='utf-8') as f:
            json.dump(service.export_state().to_dict(), f, ensure_ascii=False, indent=2, default=str)
        click.echo(f'State written to {output}')


@cli.command('config-check')
def config_check():
    """Show the effective configuration."""
    config_class = get_config()

    click.echo(f'Configuration: {config_class.__name__}')
    click.echo(f'  AIRTABLE_BASE_ID: {config_class.AIRTABLE_BASE_ID or "(not set)"}')
    click.echo(f'  AIRTABLE_API_KEY: {"set" if config_class.AIRTABLE_API_KEY else "(not set)"}')
    click.echo(f'  AIRTABLE_API_URL: {config_class.AIRTABLE_API_URL}')
    click.echo(f'  AIRTABLE_TABLES: {", ".join(config_class.AIRTABLE_TABLES) or "(none)"}')
    for name, value in config_class.sync_settings().items():
        click.echo(f'  {name}: {value}')
    click.echo(f'  API_KEY: {"set" if config_class.API_KEY else "(not set)"}')

    if hasattr(config_class, 'validate'):
        errors = config_class.validate()
        for error in errors:
            click.echo(click.style(f'✗ {error}', fg='red'))
        if not errors:
            click.echo(click.style('✓ Configuration OK', fg='green'))


if __name__ == '__main__':
    cli()
