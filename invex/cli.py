"""
invex CLI commands

Operator commands for schema setup, parsing invoice files and chart of
accounts sync.
"""

import asyncio
import sys
from pathlib import Path

import click
from pdfminer.high_level import extract_text

from invex.config.invex_config import InvexConfig
from invex.config.logging_setup import configure_logging
from invex.db.connection import Database
from invex.db.repository import CompanyRepository
from invex.errors import InvexError
from invex.processors.invoice.parser import InvoiceParser
from invex.services.coa_sync_service import ChartOfAccountSyncService


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
              help='Logging level')
@click.pass_context
def cli(ctx, config_path, log_level):
    """invex command-line interface"""
    config = InvexConfig.from_file(config_path) if config_path else InvexConfig()
    configure_logging(config, level=log_level)
    ctx.obj = config


@cli.command()
@click.option('--db-path', type=click.Path(dir_okay=False), help='SQLite database path')
@click.pass_obj
def init(config, db_path):
    """Create the database schema"""
    if db_path:
        config.set('database.type', 'sqlite')
        config.set('database.path', db_path)
    db = Database(config)
    try:
        db.create_tables()
    finally:
        db.dispose()
    click.echo(f"Database initialized ({config.get('database.type')})")


@cli.command('add-company')
@click.argument('name')
@click.option('--owner', required=True, help='User id of the company administrator')
@click.option('--role', default='Admin', show_default=True, help='Role granted to the owner')
@click.option('--access-token', help='Ledger provider access token')
@click.pass_obj
def add_company(config, name, owner, role, access_token):
    """Register a company and its first member"""
    db = Database(config)
    try:
        with db.transaction() as session:
            companies = CompanyRepository(session)
            company = companies.create({'name': name, 'ledger_access_token': access_token})
            companies.add_member(company.id, owner, role)
            company_id = company.id
    finally:
        db.dispose()
    click.echo(company_id)


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--raw', is_flag=True, help='Include the extracted text in the output')
@click.pass_obj
def parse(config, file, raw):
    """Extract and parse an invoice file, printing the result as JSON"""
    path = Path(file)
    if path.suffix.lower() == '.pdf':
        text = extract_text(str(path))
    else:
        text = path.read_text(encoding='utf-8', errors='replace')

    result = InvoiceParser(config).parse(text)
    click.echo(result.model_dump_json(indent=2, exclude=None if raw else {'raw_text'}))
    if not result.success:
        sys.exit(1)


@cli.command('can-sync')
@click.argument('company_id')
@click.pass_obj
def can_sync(config, company_id):
    """Show whether the company's chart of accounts may be synced now"""
    db = Database(config)
    try:
        service = ChartOfAccountSyncService(db, config=config)
        allowed = service.can_sync(company_id)
        days = service.days_since_last_sync(company_id)
    except InvexError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        db.dispose()
    last = 'never synced' if days is None else f'last sync {days} day(s) ago'
    click.echo(f"{'yes' if allowed else 'no'} ({last})")


@cli.command('sync-accounts')
@click.argument('company_id')
@click.option('--user-id', required=True, help='User performing the sync')
@click.pass_obj
def sync_accounts(config, company_id, user_id):
    """Sync the company's chart of accounts from the ledger provider"""
    db = Database(config)
    try:
        service = ChartOfAccountSyncService(db, config=config)
        result = asyncio.run(service.sync_chart_of_accounts(user_id, company_id))
    except InvexError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        db.dispose()

    if not result.success:
        click.echo(f"Sync failed: {result.error}", err=True)
        sys.exit(1)
    click.echo(f"Synced {result.total_accounts} accounts "
               f"({result.new_accounts} new, {result.updated_accounts} updated)")


if __name__ == '__main__':
    cli()
