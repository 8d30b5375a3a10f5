"""
Change audit service.

Audit entries are staged by the flush pipeline for every model marked
``__audited__ = True``: INSERT (after-image), UPDATE (before/after image
and changed fields) and DELETE (before-image). Entries are append-only;
the retention archive is the only path that removes them.
"""
import logging
from collections import Counter
from datetime import timedelta

from sqlalchemy import delete, func, insert, select

from cafm.exceptions import (
    AuditWriteFailure, BusinessLogicError, ImmutableRecordError, PrivilegedOperationRequired,
)
from cafm.models import AuditArchive, AuditEntry, AuditOperation
from cafm.services.tenant_context import get_context, is_privileged
from cafm.utils.serialization import as_uuid, to_json_safe, utcnow

logger = logging.getLogger(__name__)

DATA_OPERATIONS = (AuditOperation.INSERT, AuditOperation.UPDATE, AuditOperation.DELETE)


def is_audited(obj):
    return getattr(type(obj), '__audited__', False)


def _context_metadata(session, ctx):
    metadata = dict(ctx.metadata) if ctx else {}
    application_name = session.info.get('application_name')
    if application_name:
        metadata.setdefault('application_name', application_name)
    return to_json_safe(metadata) or None


def _build_entry(session, ctx, change, now):
    try:
        return AuditEntry(
            company_id=change.company_id,
            table_name=change.table_name,
            record_id=change.record_id,
            operation=change.operation,
            user_id=ctx.user_id if ctx else None,
            operation_timestamp=now,
            old_values=to_json_safe(change.before),
            new_values=to_json_safe(change.after),
            changed_fields=list(change.changed_fields) or None,
            request_id=ctx.request_id if ctx else None,
            correlation_id=ctx.correlation_id if ctx else None,
            request_metadata=_context_metadata(session, ctx),
        )
    except (TypeError, ValueError) as e:
        logger.error(f"[AUDIT] Failed to build entry for {change.table_name} {change.record_id}: {e}")
        raise AuditWriteFailure(f"Could not record audit entry for {change.table_name}") from e


def record_changes(session, changes, now):
    """
    Flush pipeline stage: stage one AuditEntry per audited change.

    Args:
        session: Database session (inside before_flush)
        changes: RowChange records captured for this flush
        now: Flush timestamp shared by all entries
    """
    ctx = get_context(session)
    for change in changes:
        if not is_audited(change.instance):
            continue
        session.add(_build_entry(session, ctx, change, now))
        logger.debug(
            f"[AUDIT] {change.operation.value} {change.table_name} {change.record_id} "
            f"fields={change.changed_fields}"
        )


def record_privileged_access(session, ctx):
    """Record the opening of a privileged scope."""
    metadata = _context_metadata(session, ctx) or {}
    metadata['reason'] = ctx.bypass_reason
    entry = AuditEntry(
        company_id=ctx.tenant_id,
        table_name='*',
        record_id=None,
        operation=AuditOperation.PRIVILEGED_ACCESS,
        user_id=ctx.user_id,
        operation_timestamp=utcnow(),
        request_metadata=metadata,
    )
    session.add(entry)
    return entry


def record_truncate(session, model):
    """
    Remove every row of a table and record a single TRUNCATE entry.

    Returns:
        Number of rows removed

    Raises:
        PrivilegedOperationRequired: Outside a privileged scope
        ImmutableRecordError: For audit or history tables
    """
    if not is_privileged(session):
        raise PrivilegedOperationRequired("Truncating a table requires a privileged scope")
    if getattr(model, '__immutable__', False):
        raise ImmutableRecordError()

    ctx = get_context(session)
    table = model.__table__
    connection = session.connection()
    row_count = connection.execute(select(func.count()).select_from(table)).scalar()
    connection.execute(delete(table))

    session.add(AuditEntry(
        company_id=ctx.tenant_id,
        table_name=table.name,
        record_id=None,
        operation=AuditOperation.TRUNCATE,
        user_id=ctx.user_id,
        operation_timestamp=utcnow(),
        request_metadata={'row_count': row_count, 'reason': ctx.bypass_reason},
    ))
    logger.warning(f"[AUDIT] Table {table.name} truncated ({row_count} rows)")
    return row_count


# ---------------------------------------------------------------------------
# Queries (tenant filtered by the session policy)
# ---------------------------------------------------------------------------

def get_audit_trail(session, table_name: str, record_id, limit: int = 100):
    """
    Audit history of one record, newest first.

    Args:
        session: Database session
        table_name: Table of the record (e.g. 'assets')
        record_id: Record id
        limit: Max number of results

    Returns:
        List of AuditEntry objects
    """
    stmt = (
        select(AuditEntry)
        .where(AuditEntry.table_name == table_name, AuditEntry.record_id == as_uuid(record_id))
        .order_by(AuditEntry.operation_timestamp.desc())
        .limit(limit)
    )
    return session.execute(stmt).scalars().all()


def get_user_activity(session, user_id, start=None, end=None):
    """
    Everything a user did in a time window, newest first.

    Args:
        session: Database session
        user_id: Acting user
        start: Window start (default: 30 days before end)
        end: Window end (default: now)

    Returns:
        List of AuditEntry objects
    """
    end = end or utcnow()
    start = start or (end - timedelta(days=30))
    stmt = (
        select(AuditEntry)
        .where(
            AuditEntry.user_id == as_uuid(user_id),
            AuditEntry.operation_timestamp >= start,
            AuditEntry.operation_timestamp <= end,
        )
        .order_by(AuditEntry.operation_timestamp.desc())
    )
    return session.execute(stmt).scalars().all()


def get_field_changes(session, table_name: str, field_name: str, since=None):
    """
    Value transitions of one column across a table, newest first.

    Returns:
        List of dicts with record_id, old_value, new_value, user_id and
        operation_timestamp
    """
    stmt = (
        select(AuditEntry)
        .where(AuditEntry.table_name == table_name, AuditEntry.operation == AuditOperation.UPDATE)
        .order_by(AuditEntry.operation_timestamp.desc())
    )
    if since is not None:
        stmt = stmt.where(AuditEntry.operation_timestamp >= since)

    changes = []
    for entry in session.execute(stmt).scalars():
        if field_name not in (entry.changed_fields or ()):
            continue
        changes.append({
            'record_id': entry.record_id,
            'old_value': (entry.old_values or {}).get(field_name),
            'new_value': (entry.new_values or {}).get(field_name),
            'user_id': entry.user_id,
            'operation_timestamp': entry.operation_timestamp,
        })
    return changes


def get_audit_statistics(session, days: int = 30):
    """
    Activity summary for the active tenant.

    Returns:
        Dict with total_operations, unique_users, data_modifications,
        by_operation and by_table
    """
    since = utcnow() - timedelta(days=days)
    rows = session.execute(
        select(AuditEntry.table_name, AuditEntry.operation, AuditEntry.user_id)
        .where(AuditEntry.operation_timestamp >= since)
    ).all()

    by_operation = Counter(op.value for _, op, _ in rows)
    by_table = Counter(table for table, op, _ in rows if op in DATA_OPERATIONS)
    return {
        'period_days': days,
        'total_operations': len(rows),
        'unique_users': len({user for _, _, user in rows if user is not None}),
        'data_modifications': sum(1 for _, op, _ in rows if op in DATA_OPERATIONS),
        'by_operation': dict(by_operation),
        'by_table': dict(by_table),
    }


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

def archive_audit_logs_older_than(session, days: int = 90):
    """
    Move audit entries older than ``days`` into the archive table.

    Copy and delete run in the caller's transaction, so either both
    happen or neither does.

    Returns:
        {'archived_count': n, 'deleted_count': n}

    Raises:
        PrivilegedOperationRequired: Outside a privileged scope
        BusinessLogicError: If days is negative
    """
    if not is_privileged(session):
        raise PrivilegedOperationRequired("Archiving audit logs requires a privileged scope")
    if days is None or days < 0:
        raise BusinessLogicError("Retention days must be zero or positive")

    cutoff = utcnow() - timedelta(days=days)
    live = AuditEntry.__table__
    archive = AuditArchive.__table__
    names = [column.name for column in live.columns]
    old_rows = live.c.operation_timestamp < cutoff

    connection = session.connection()
    archived = connection.execute(
        select(func.count()).select_from(live).where(old_rows)
    ).scalar()
    connection.execute(
        insert(archive).from_select(names, select(*[live.c[name] for name in names]).where(old_rows))
    )
    deleted = connection.execute(delete(live).where(old_rows)).rowcount

    logger.info(f"[AUDIT] Archived {archived} entries older than {days} days, deleted {deleted}")
    return {'archived_count': archived, 'deleted_count': deleted}
