"""
Session hooks.

``install_hooks`` wires two listeners onto a sessionmaker:

* ``do_orm_execute``: tenant and soft-delete read criteria (policy)
* ``before_flush``: the write pipeline, run once per flush in this order

    1. defaults for new rows (ids, timestamps, column defaults)
    2. tenant write policy
    3. derived field recalculation
    4. change capture (before/after images)
    5. audit entries
    6. history versions

Everything runs inside the caller's transaction, so a rollback discards
the business write together with its audit, history and recomputed
values.
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, event, inspect, select
from sqlalchemy.exc import SQLAlchemyError

from cafm.exceptions import AuditWriteFailure
from cafm.models import AuditOperation, Company, TenantScopedMixin, TimestampMixin
from cafm.services import policy, recalculation_service, audit_service, history_service
from cafm.services.tenant_context import get_active_tenant, get_context
from cafm.utils.serialization import as_utc, utcnow

logger = logging.getLogger(__name__)

# Columns that change on every write and never count as a modification
BOOKKEEPING_FIELDS = frozenset({'updated_at', 'version', 'updated_by'})


@dataclass
class RowChange:
    """One captured row modification of the current flush."""
    instance: Any
    operation: AuditOperation
    company_id: Optional[uuid.UUID]
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    changed_fields: List[str] = field(default_factory=list)

    @property
    def table_name(self):
        return self.instance.__tablename__

    @property
    def record_id(self):
        return getattr(self.instance, 'id', None)


def install_hooks(session_factory):
    """Attach the read policy and the flush pipeline to a sessionmaker."""
    event.listen(session_factory, 'do_orm_execute', policy.apply_tenant_criteria)
    event.listen(session_factory, 'before_flush', run_flush_pipeline)
    return session_factory


def run_flush_pipeline(session, flush_context, instances):
    now = utcnow()
    prepare_new_rows(session, now)
    policy.enforce_write_policy(session)
    recalculation_service.recalculate_pending(session)
    try:
        changes = capture_changes(session, now)
        audit_service.record_changes(session, changes, now)
        history_service.record_versions(session, changes)
    except SQLAlchemyError as e:
        logger.error(f"[AUDIT] Could not capture changes, rolling back: {e}")
        raise AuditWriteFailure(f"Audit capture failed: {e}") from e


# ---------------------------------------------------------------------------
# Stage 1: defaults
# ---------------------------------------------------------------------------

def _column_default(column):
    default = column.default
    if default is None:
        return None
    if default.is_scalar:
        return default.arg
    if default.is_callable:
        return default.arg(None)
    return None


def prepare_new_rows(session, now):
    """
    Materialize ids and column defaults on pending rows.

    Audit images of inserts and cross-row derivations need the values the
    INSERT will write, before the INSERT runs.
    """
    for obj in list(session.new):
        mapper = inspect(obj).mapper
        version_col = mapper.version_id_col
        for prop in mapper.column_attrs:
            column = prop.columns[0]
            if column is version_col or getattr(obj, prop.key) is not None:
                continue
            if isinstance(obj, TimestampMixin) and prop.key in ('created_at', 'updated_at'):
                setattr(obj, prop.key, now)
                continue
            value = _column_default(column)
            if value is not None:
                setattr(obj, prop.key, value)


# ---------------------------------------------------------------------------
# Stage 4: change capture
# ---------------------------------------------------------------------------

def _is_tracked(obj):
    cls = type(obj)
    return (
        getattr(cls, '__audited__', False)
        or bool(getattr(cls, '__history_fields__', ()))
        or isinstance(obj, TimestampMixin)
    )


def _owner_tenant(session, obj):
    if isinstance(obj, Company):
        return obj.id
    if isinstance(obj, TenantScopedMixin):
        return obj.company_id
    return get_active_tenant(session)


def _current_image(obj):
    state = inspect(obj)
    return {prop.key: state.dict.get(prop.key) for prop in state.mapper.column_attrs}


def _persisted_image(session, obj):
    """Re-read the stored row (the pre-update image) by primary key."""
    state = inspect(obj)
    mapper = state.mapper
    table = mapper.local_table
    criteria = [col == value for col, value in zip(mapper.primary_key, state.identity)]
    # Raw connection: no ORM listeners, no identity map
    row = session.connection().execute(
        select(table).where(and_(*criteria))
    ).mappings().first()
    if row is None:
        return None
    return {prop.key: as_utc(row[prop.columns[0]]) for prop in mapper.column_attrs}


def _stamp_next_version(obj, image, before=None):
    """Record the version number the pending INSERT/UPDATE will write."""
    mapper = inspect(obj).mapper
    if mapper.version_id_col is None:
        return
    key = mapper.get_property_by_column(mapper.version_id_col).key
    image[key] = (before[key] or 0) + 1 if before else 1


def _overlay(obj, before):
    after = dict(before)
    attrs = inspect(obj).attrs
    for key in before:
        history = attrs[key].history
        if history.added:
            after[key] = history.added[0]
    return after


def _normalize(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return Decimal(str(value))
    return as_utc(value)


def _same(a, b):
    if a is None or b is None:
        return a is None and b is None
    return _normalize(a) == _normalize(b)


def changed_fields(obj, before, after):
    excluded = BOOKKEEPING_FIELDS | set(getattr(type(obj), '__audit_exclude__', ()))
    return [
        key for key in after
        if key not in excluded and not _same(before.get(key), after.get(key))
    ]


def capture_changes(session, now):
    """
    Build RowChange records for every tracked pending, modified and
    deleted row. Updates with no effective change are dropped here, which
    is what keeps no-op writes out of the audit log and history.
    """
    ctx = get_context(session)
    user_id = ctx.user_id if ctx else None
    changes = []

    for obj in list(session.new):
        if not _is_tracked(obj):
            continue
        if isinstance(obj, TimestampMixin):
            obj.created_by = obj.created_by or user_id
            obj.updated_by = obj.updated_by or user_id
        after = _current_image(obj)
        _stamp_next_version(obj, after)
        changes.append(RowChange(
            instance=obj,
            operation=AuditOperation.INSERT,
            company_id=_owner_tenant(session, obj),
            after=after,
        ))

    for obj in list(session.dirty):
        if not _is_tracked(obj) or not session.is_modified(obj, include_collections=False):
            continue
        before = _persisted_image(session, obj)
        if before is None:
            # Row vanished; the versioned UPDATE will raise StaleDataError
            continue
        after = _overlay(obj, before)
        fields = changed_fields(obj, before, after)
        if not fields:
            continue
        if isinstance(obj, TimestampMixin):
            obj.updated_at = now
            obj.updated_by = user_id
            after['updated_at'] = now
            after['updated_by'] = user_id
        _stamp_next_version(obj, after, before)
        changes.append(RowChange(
            instance=obj,
            operation=AuditOperation.UPDATE,
            company_id=_owner_tenant(session, obj),
            before=before,
            after=after,
            changed_fields=fields,
        ))

    for obj in list(session.deleted):
        if not _is_tracked(obj):
            continue
        changes.append(RowChange(
            instance=obj,
            operation=AuditOperation.DELETE,
            company_id=_owner_tenant(session, obj),
            before=_persisted_image(session, obj) or _current_image(obj),
        ))

    return changes
