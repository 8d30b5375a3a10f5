"""
Temporal history store.

Models listing ``__history_fields__`` get a new EntityVersion whenever an
update changes one of those fields. The version holds the pre-update
values and is valid over [valid_from, valid_to), where valid_to is the
row's new updated_at and valid_from is where the previous version ended
(or the row's created_at). Consecutive versions therefore tile the
record's lifetime with no gaps.
"""
import logging

from sqlalchemy import select

from cafm.database import Base
from cafm.exceptions import BusinessLogicError, NotFoundError, TenantViolation
from cafm.models import AuditOperation, EntityVersion
from cafm.services.tenant_context import get_context
from cafm.utils.serialization import as_utc, as_uuid, to_json_safe

logger = logging.getLogger(__name__)


def history_fields(obj_or_cls):
    cls = obj_or_cls if isinstance(obj_or_cls, type) else type(obj_or_cls)
    return tuple(getattr(cls, '__history_fields__', ()))


def historized_models():
    """Map of table name -> model class for every versioned model."""
    return {
        mapper.class_.__tablename__: mapper.class_
        for mapper in Base.registry.mappers
        if history_fields(mapper.class_)
    }


def _latest_version(session, table_name, record_id):
    table = EntityVersion.__table__
    # Raw connection: called from inside the flush
    return session.connection().execute(
        select(table.c.version_number, table.c.valid_to)
        .where(table.c.table_name == table_name, table.c.record_id == record_id)
        .order_by(table.c.version_number.desc())
        .limit(1)
    ).first()


def record_versions(session, changes):
    """Flush pipeline stage: append versions for tracked-field updates."""
    ctx = get_context(session)
    for change in changes:
        fields = history_fields(change.instance)
        if change.operation is not AuditOperation.UPDATE or not fields:
            continue
        tracked = [name for name in change.changed_fields if name in fields]
        if not tracked:
            continue

        latest = _latest_version(session, change.table_name, change.record_id)
        if latest is not None:
            version_number = latest.version_number + 1
            valid_from = as_utc(latest.valid_to)
        else:
            version_number = 1
            valid_from = change.before.get('created_at') or change.before.get('updated_at')

        session.add(EntityVersion(
            company_id=change.company_id,
            table_name=change.table_name,
            record_id=change.record_id,
            version_number=version_number,
            snapshot=to_json_safe({name: change.before.get(name) for name in fields}),
            valid_from=valid_from,
            valid_to=change.after['updated_at'],
            modified_by=ctx.user_id if ctx else None,
        ))
        logger.info(
            f"[HISTORY] {change.table_name} {change.record_id} -> version {version_number} "
            f"(changed: {', '.join(tracked)})"
        )


def _model_for(table_name):
    model = historized_models().get(table_name)
    if model is None:
        raise BusinessLogicError(f"Table {table_name} does not keep history")
    return model


def _live_row(session, model, record_id):
    return session.execute(
        select(model)
        .where(model.id == record_id)
        .execution_options(include_deleted=True)
    ).scalar_one_or_none()


def list_versions(session, table_name: str, record_id):
    """
    All versions of a record, oldest first.

    Raises:
        TenantViolation: If the record is not visible to the active tenant
    """
    model = _model_for(table_name)
    record_id = as_uuid(record_id)
    if _live_row(session, model, record_id) is None:
        raise TenantViolation(f"{table_name} not found")
    return session.execute(
        select(EntityVersion)
        .where(EntityVersion.table_name == table_name, EntityVersion.record_id == record_id)
        .order_by(EntityVersion.version_number.asc())
    ).scalars().all()


def get_version_at(session, table_name: str, record_id, timestamp):
    """
    Tracked field values of a record as they were at ``timestamp``.

    Args:
        session: Database session
        table_name: Historized table ('reports', 'users', 'schools')
        record_id: Record id
        timestamp: Point in time

    Returns:
        Dict of tracked field -> JSON-safe value

    Raises:
        TenantViolation: If the record does not exist for the active tenant
        NotFoundError: If the record did not exist yet at ``timestamp``
    """
    model = _model_for(table_name)
    record_id = as_uuid(record_id)
    # Stored timestamps are UTC; SQLite drops the offset of bound values
    timestamp = as_utc(timestamp)

    live = _live_row(session, model, record_id)
    if live is None:
        raise TenantViolation(f"{table_name} not found")

    version = session.execute(
        select(EntityVersion)
        .where(
            EntityVersion.table_name == table_name,
            EntityVersion.record_id == record_id,
            EntityVersion.valid_from <= timestamp,
            EntityVersion.valid_to > timestamp,
        )
        .order_by(EntityVersion.version_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    if version is not None:
        return dict(version.snapshot)

    existed = session.execute(
        select(model.id)
        .where(model.id == record_id, model.created_at <= timestamp)
        .execution_options(include_deleted=True)
    ).first()
    if existed is None:
        raise NotFoundError(f"{table_name} {record_id} did not exist at {timestamp}")

    # At or after the last version's valid_to: the live row is current
    return to_json_safe({name: getattr(live, name) for name in history_fields(model)})
