"""
Tenant isolation policy.

Reads: every ORM SELECT, UPDATE and DELETE issued through a hooked
session is narrowed to the active tenant, and soft-deleted rows are
hidden unless the statement opts in with ``include_deleted=True``.

Writes: new tenant-owned rows are stamped with the active tenant,
cross-tenant writes are rejected, and append-only / soft-deletable rows
are protected against modification and physical deletion. ORM bulk
UPDATE/DELETE statements on tracked models are refused outside a
privileged scope, and a tenant may not change its own lifecycle or quota
columns.
"""
import logging

from sqlalchemy import inspect
from sqlalchemy.orm import with_loader_criteria

from cafm.exceptions import TenantViolation, ImmutableRecordError, PrivilegedOperationRequired
from cafm.models import Company, TenantScopedMixin, TenantOwnedMixin, SoftDeleteMixin
from cafm.services.recalculation_service import REGISTRY
from cafm.services.tenant_context import get_active_tenant, is_privileged
from cafm.utils.serialization import as_uuid

logger = logging.getLogger(__name__)

# Company columns only a privileged scope may change
COMPANY_CONTROLLED_FIELDS = frozenset({
    'status', 'subscription_plan', 'is_active',
    'max_users', 'max_schools', 'max_supervisors', 'max_technicians', 'max_storage_gb',
})


def apply_tenant_criteria(execute_state):
    """do_orm_execute listener adding tenant and soft-delete criteria."""
    if not (execute_state.is_select or execute_state.is_update or execute_state.is_delete):
        return

    session = execute_state.session
    options = []

    if execute_state.is_update or execute_state.is_delete:
        guard_bulk_statement(execute_state)

    if not is_privileged(session):
        tenant_id = get_active_tenant(session)
        options.append(
            with_loader_criteria(
                TenantScopedMixin,
                lambda cls: cls.company_id == tenant_id,
                include_aliases=True,
            )
        )

    if not execute_state.execution_options.get('include_deleted', False):
        options.append(
            with_loader_criteria(
                SoftDeleteMixin,
                lambda cls: cls.deleted_at.is_(None),
                include_aliases=True,
            )
        )

    if options:
        execute_state.statement = execute_state.statement.options(*options)


def _bypasses_flush_pipeline(mapper):
    cls = mapper.class_
    if getattr(cls, '__audited__', False) or getattr(cls, '__immutable__', False):
        return True
    if mapper.version_id_col is not None:
        return True
    return any(
        issubclass(cls, derived.model) or (derived.source_model and issubclass(cls, derived.source_model))
        for derived in REGISTRY
    )


def guard_bulk_statement(execute_state):
    """
    Reject ORM bulk UPDATE/DELETE on tracked models outside a privileged scope.

    Bulk statements never reach before_flush: no audit entry, no history
    version, no recompute and no version bump. Tracked rows are written
    through the ORM unit of work instead.

    Raises:
        PrivilegedOperationRequired: Statement targets an audited,
            versioned, append-only or derived model
    """
    if is_privileged(execute_state.session):
        return
    mapper = execute_state.bind_mapper
    if mapper is None or not _bypasses_flush_pipeline(mapper):
        return
    kind = 'UPDATE' if execute_state.is_update else 'DELETE'
    logger.warning(f"[TENANT] Bulk {kind} on {mapper.local_table.name} blocked")
    raise PrivilegedOperationRequired(
        f"Bulk {kind} on {mapper.local_table.name} bypasses audit and recalculation; "
        f"modify rows through the session or use a privileged scope"
    )


def _is_modified(session, obj):
    return session.is_modified(obj, include_collections=False)


def _describe(obj):
    return f"{obj.__tablename__} {getattr(obj, 'id', None)}"


def _check_tenant_owned(obj, tenant_id, privileged):
    owner = as_uuid(obj.company_id)
    if owner != tenant_id and not privileged:
        logger.warning(f"[TENANT] Cross-tenant write blocked on {_describe(obj)}")
        raise TenantViolation(f"{obj.__tablename__} not found")


def _check_company_controlled(company):
    attrs = inspect(company).attrs
    changed = sorted(key for key in COMPANY_CONTROLLED_FIELDS if attrs[key].history.has_changes())
    if changed:
        logger.warning(f"[TENANT] Tenant {company.id} tried to change {', '.join(changed)}")
        raise PrivilegedOperationRequired(
            f"Changing {', '.join(changed)} of a company requires a privileged scope"
        )


def enforce_write_policy(session):
    """
    First stage of the flush pipeline.

    Raises:
        TenantViolation: Write targets another tenant's row, or moves a
            row between tenants
        ImmutableRecordError: Audit or history rows modified or deleted
        PrivilegedOperationRequired: Physical delete of a soft-deletable
            row, a company create or delete, or a change to a company's
            status, plan or quotas, outside a privileged scope
    """
    tenant_id = get_active_tenant(session)
    privileged = is_privileged(session)

    for obj in list(session.new):
        if isinstance(obj, Company):
            if not privileged:
                raise PrivilegedOperationRequired("Creating a company requires a privileged scope")
            continue
        if isinstance(obj, TenantOwnedMixin):
            if obj.company_id is None:
                obj.company_id = tenant_id
            else:
                _check_tenant_owned(obj, tenant_id, privileged)

    for obj in list(session.dirty):
        if not _is_modified(session, obj):
            continue
        if getattr(type(obj), '__immutable__', False):
            raise ImmutableRecordError()
        if isinstance(obj, Company):
            if obj.id != tenant_id and not privileged:
                raise TenantViolation("companies not found")
            if not privileged:
                _check_company_controlled(obj)
            continue
        if isinstance(obj, TenantOwnedMixin):
            history = inspect(obj).attrs.company_id.history
            if history.deleted and history.deleted[0] is not None:
                logger.warning(f"[TENANT] Attempt to move {_describe(obj)} to another tenant")
                raise TenantViolation("The owning tenant of a row cannot change")
            _check_tenant_owned(obj, tenant_id, privileged)

    for obj in list(session.deleted):
        if getattr(type(obj), '__immutable__', False):
            raise ImmutableRecordError()
        if isinstance(obj, Company) and not privileged:
            raise PrivilegedOperationRequired("Deleting a company requires a privileged scope")
        if isinstance(obj, TenantOwnedMixin):
            _check_tenant_owned(obj, tenant_id, privileged)
        if isinstance(obj, SoftDeleteMixin) and not privileged:
            raise PrivilegedOperationRequired(
                f"{obj.__tablename__} rows are soft-deleted; physical delete requires a privileged scope"
            )
