"""
Flask CLI commands for database and retention maintenance.

Commands:
- flask init-db: Create tables and the system company
- flask archive-audit-logs: Move old audit entries to the archive
- flask recalculate-derived: Recompute derived fields for all tenants
- flask purge-deleted: Physically delete long soft-deleted rows
"""

import click
from flask import current_app

from cafm import database
from cafm.exceptions import CafmError
from cafm.models import Asset, InventoryItem, InventoryTransaction, Report, School, User, WorkOrder, WorkOrderTask
from cafm.services import audit_service, company_service, recalculation_service
from cafm.services.repository import TenantRepository
from cafm.services.tenant_context import privileged_scope

# Purge order: children before parents
PURGEABLE_MODELS = (
    WorkOrderTask, InventoryTransaction, WorkOrder, Report, Asset, InventoryItem, School, User,
)


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables and the system company."""
        database.create_all()
        db_session = database.get_session()
        try:
            with privileged_scope(db_session, 'init-db'):
                company = company_service.ensure_system_company(db_session)
        except CafmError as e:
            click.echo(click.style(f'Error initializing database: {e.message}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style('Database initialized.', fg='green', bold=True))
        click.echo(f'   System company: {company.id}')

    @app.cli.command('archive-audit-logs')
    @click.option('--days', type=int, default=None, help='Archive entries older than this many days')
    def archive_audit_logs(days):
        """Move audit entries older than --days into audit_log_archive."""
        if days is None:
            days = current_app.config.get('AUDIT_RETENTION_DAYS', 90)
        db_session = database.get_session()
        try:
            with privileged_scope(db_session, f'audit retention ({days} days)'):
                result = audit_service.archive_audit_logs_older_than(db_session, days)
        except CafmError as e:
            click.echo(click.style(f'Error archiving audit logs: {e.message}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style(
            f"Archived {result['archived_count']} entries, deleted {result['deleted_count']}.",
            fg='green',
        ))

    @app.cli.command('recalculate-derived')
    def recalculate_derived():
        """Recompute depreciation, stock figures and work order progress."""
        db_session = database.get_session()
        with privileged_scope(db_session, 'batch recalculation'):
            updated = recalculation_service.recalculate_all(db_session)
        click.echo(click.style(f'Recalculated derived fields: {updated} rows updated.', fg='green'))

    @app.cli.command('purge-deleted')
    @click.option('--days', type=int, default=None, help='Purge rows soft-deleted more than this many days ago')
    def purge_deleted(days):
        """Physically delete rows soft-deleted more than --days ago."""
        if days is None:
            days = current_app.config.get('SOFT_DELETE_RETENTION_DAYS', 90)
        db_session = database.get_session()
        total = 0
        try:
            with privileged_scope(db_session, f'soft-delete retention ({days} days)'):
                for model in PURGEABLE_MODELS:
                    purged = TenantRepository(db_session, model).purge_deleted(days)
                    if purged:
                        click.echo(f'   {model.__tablename__}: {purged}')
                    total += purged
        except CafmError as e:
            click.echo(click.style(f'Error purging deleted rows: {e.message}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style(f'Purged {total} rows.', fg='green'))
