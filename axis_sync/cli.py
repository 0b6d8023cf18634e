#!/usr/bin/env python3
"""
Axis Sync CLI - Command Line Interface
"""

import asyncio
import json
from typing import Optional

import click

from axis_sync.config.config_loader import load_config
from axis_sync.core.logging_manager import setup_logging


def _components(config_path: Optional[str]):
    from axis_sync.main import build_components

    config = load_config(config_path)
    setup_logging(config)
    return config, build_components(config)


def _run(config_path: Optional[str], action):
    """Run `action(components)` with the database ready and clients closed afterwards"""

    async def runner():
        _, components = _components(config_path)
        try:
            await components.db.create_tables()
            return await action(components)
        finally:
            await components.close()
            await components.db.close()

    try:
        return asyncio.run(runner())
    except Exception as e:
        click.echo(f"Command failed: {e}", err=True)
        raise click.Abort()


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option('--config', 'config_path', default=None, help='Path to axis.yaml')
@click.pass_context
def cli(ctx, config_path: Optional[str]):
    """Axis Sync Command Line Interface"""
    ctx.obj = {'config_path': config_path}


@cli.command('init-db')
@click.option('--reset', is_flag=True, help='Drop all tables before creating them')
@click.pass_context
def init_db(ctx, reset: bool):
    """Create the database schema"""

    async def action(components):
        if reset:
            await components.db.drop_tables()
        await components.db.create_tables()
        return await components.db.health_check()

    healthy = _run(ctx.obj['config_path'], action)
    click.echo(f"Database ready ({'healthy' if healthy else 'incomplete'})")


@cli.command('create-account')
@click.argument('email')
@click.option('--name', default=None, help='Display name')
@click.pass_context
def create_account(ctx, email: str, name: Optional[str]):
    """Register a local account and print its id"""

    async def action(components):
        engine = components.engine
        async with engine.db.get_session() as session:
            existing = await engine.accounts.get_by_email(session, email)
            if existing is not None:
                return existing.to_dict()
            return (await engine.accounts.create(session, email, name)).to_dict()

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command('set-token')
@click.argument('account_id')
@click.option('--access-token', required=True)
@click.option('--refresh-token', default=None)
@click.option('--expires-in', type=int, default=None, help='Access token lifetime in seconds')
@click.pass_context
def set_token(ctx, account_id: str, access_token: str, refresh_token: Optional[str], expires_in: Optional[int]):
    """Store OAuth tokens for an account"""

    async def action(components):
        await components.credentials.store_tokens(account_id, access_token, refresh_token, expires_in)

    _run(ctx.obj['config_path'], action)
    click.echo(f"Tokens stored for account {account_id}")


@cli.command()
@click.argument('account_id')
@click.pass_context
def initialize(ctx, account_id: str):
    """Create or adopt the dedicated calendar and enable sync"""

    async def action(components):
        account = await components.engine.initialize_dedicated_calendar(account_id)
        return account.to_dict()

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command()
@click.argument('account_id')
@click.option('--calendar', 'calendar_id', default=None, help='Pull a single calendar')
@click.pass_context
def pull(ctx, account_id: str, calendar_id: Optional[str]):
    """Import remote events into tasks"""

    async def action(components):
        return (await components.engine.sync_remote_events_to_tasks(account_id, calendar_id)).to_dict()

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command('push-all')
@click.argument('account_id')
@click.option('--calendar', 'calendar_id', default=None, help='Push every dated task to this calendar')
@click.pass_context
def push_all(ctx, account_id: str, calendar_id: Optional[str]):
    """Push tasks to their remote events"""

    async def action(components):
        return (await components.engine.sync_all_tasks_to_remote(account_id, calendar_id)).to_dict()

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command('refresh-webhooks')
@click.pass_context
def refresh_webhooks(ctx):
    """Renew webhook channels close to expiry"""

    async def action(components):
        return await components.engine.refresh_expiring_webhooks()

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command('enable-webhooks')
@click.pass_context
def enable_webhooks(ctx):
    """Open channels for sync-enabled accounts without one"""

    async def action(components):
        return await components.engine.enable_webhooks_for_all_accounts()

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command()
@click.argument('account_id')
@click.pass_context
def status(ctx, account_id: str):
    """Show the sync status of an account"""

    async def action(components):
        return await components.engine.get_sync_status(account_id)

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command()
@click.argument('account_id')
@click.pass_context
def disconnect(ctx, account_id: str):
    """Stop channels and remove every sync link of an account"""

    async def action(components):
        return await components.engine.disconnect_sync(account_id)

    _echo_json(_run(ctx.obj['config_path'], action))


@cli.command()
@click.pass_context
def serve(ctx):
    """Run the API server"""
    import uvicorn
    from axis_sync.main import create_app

    config = load_config(ctx.obj['config_path'])
    setup_logging(config)
    api_config = config.get('api', {})
    uvicorn.run(
        create_app(config),
        host=api_config.get('host', '0.0.0.0'),
        port=int(api_config.get('port', 8080)),
        log_level="info",
    )


if __name__ == '__main__':
    cli()
