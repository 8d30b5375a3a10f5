"""
Tenant context provider.

The acting tenant, user and request correlation ids are bound to a
SQLAlchemy session (``session.info``) for the length of a unit of work.
Every read filter and write stamp consults this context; nothing else
decides which tenant a statement acts for.
"""
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from sqlalchemy import inspect, select

from cafm.exceptions import InvalidTenant
from cafm.utils.serialization import as_uuid

logger = logging.getLogger(__name__)

# Bootstrap tenant used when nothing is bound
SYSTEM_TENANT_ID = uuid.UUID('00000000-0000-0000-0000-000000000001')

CONTEXT_KEY = 'tenant_context'


@dataclass(frozen=True)
class TenantContext:
    """Immutable per-unit-of-work execution context."""
    tenant_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    request_id: Optional[str] = None
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    privileged: bool = False
    bypass_reason: Optional[str] = None


def get_context(session) -> Optional[TenantContext]:
    """Context bound to the session, or None."""
    return session.info.get(CONTEXT_KEY)


def default_tenant_id(session) -> uuid.UUID:
    return session.info.get('default_tenant_id', SYSTEM_TENANT_ID)


def get_active_tenant(session) -> uuid.UUID:
    """
    Tenant the session currently acts for.

    Falls back to the configured default (system) tenant when no context
    is bound, so unscoped reads only ever see bootstrap data.
    """
    ctx = get_context(session)
    if ctx is not None:
        return ctx.tenant_id
    return default_tenant_id(session)


def is_privileged(session) -> bool:
    ctx = get_context(session)
    return bool(ctx and ctx.privileged)


def _load_company(session, tenant_id):
    from cafm.models import Company

    stmt = (
        select(Company)
        .where(Company.id == tenant_id)
        .execution_options(include_deleted=True)
    )
    return session.execute(stmt).scalar_one_or_none()


def _owner_of(obj):
    from cafm.models import Company, TenantScopedMixin

    state = inspect(obj)
    if isinstance(obj, Company) and 'id' in state.dict:
        return state.dict['id'], True
    if isinstance(obj, TenantScopedMixin) and 'company_id' in state.dict:
        return as_uuid(state.dict['company_id']), True
    # Unowned, or expired (reloading emits a filtered SELECT)
    return None, False


def evict_foreign_rows(session, ctx):
    """
    Expunge identity-map objects the context is not allowed to read.

    ``session.get()`` and many-to-one lazy loads are answered from the
    identity map without emitting SQL, so the read criteria never see
    them. Switching tenants must therefore drop the previous tenant's
    objects.

    Returns:
        Number of expunged objects
    """
    if ctx is None or ctx.privileged:
        return 0

    foreign = []
    for obj in list(session.identity_map.values()):
        owner, known = _owner_of(obj)
        if known and owner != ctx.tenant_id:
            foreign.append(obj)
    for obj in foreign:
        session.expunge(obj)

    if foreign:
        logger.debug(f"[TENANT] Evicted {len(foreign)} foreign objects for tenant {ctx.tenant_id}")
    return len(foreign)


def set_active_tenant(session, tenant_id, user_id=None, request_id=None,
                      correlation_id=None, metadata=None):
    """
    Validate a tenant and bind it, with the acting user, to the session.

    Args:
        session: Database session
        tenant_id: Company id (UUID or string)
        user_id: Acting user id, recorded on audit entries
        request_id: Request id for audit correlation
        correlation_id: Cross-service correlation id
        metadata: Extra request metadata (ip address, user agent...)

    Returns:
        The bound TenantContext

    Raises:
        InvalidTenant: If the tenant id is malformed, unknown, deleted,
            inactive or not in an accessible status
    """
    try:
        tid = as_uuid(tenant_id)
        uid = as_uuid(user_id)
    except (ValueError, TypeError, AttributeError):
        logger.warning(f"[TENANT] Rejected malformed tenant/user id: {tenant_id!r}/{user_id!r}")
        raise InvalidTenant(f"Invalid tenant identifier: {tenant_id}")

    if tid is None:
        raise InvalidTenant("A tenant identifier is required")

    company = _load_company(session, tid)
    if company is None:
        logger.warning(f"[TENANT] Unknown tenant {tid}")
        raise InvalidTenant(f"Tenant {tid} does not exist")
    if not company.is_accessible:
        logger.warning(f"[TENANT] Tenant {tid} is not accessible (status={company.status})")
        raise InvalidTenant(f"Tenant {tid} is not accessible")

    ctx = TenantContext(
        tenant_id=tid,
        user_id=uid,
        request_id=request_id,
        correlation_id=correlation_id or request_id,
        metadata=dict(metadata or {}),
    )
    session.info[CONTEXT_KEY] = ctx
    evict_foreign_rows(session, ctx)
    logger.debug(f"[TENANT] Bound tenant {tid} (user={uid}, request={request_id})")
    return ctx


def clear_active_tenant(session):
    """Unbind any context; the session falls back to the default tenant."""
    return session.info.pop(CONTEXT_KEY, None)


def _restore(session, previous):
    if previous is None:
        clear_active_tenant(session)
    else:
        session.info[CONTEXT_KEY] = previous
        evict_foreign_rows(session, previous)


@contextmanager
def tenant_scope(session, tenant_id, user_id=None, request_id=None,
                 correlation_id=None, metadata=None):
    """
    Run a unit of work for one tenant.

    Commits on success, rolls back on any error, and always resets the
    context on exit.

        with tenant_scope(session, company.id, user_id=user.id):
            TenantRepository(session, School).create(code='S1', name='North')
    """
    from cafm.database import translate_errors

    previous = get_context(session)
    ctx = set_active_tenant(
        session, tenant_id, user_id=user_id, request_id=request_id,
        correlation_id=correlation_id, metadata=metadata,
    )
    try:
        with translate_errors(session):
            yield ctx
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        _restore(session, previous)


@contextmanager
def privileged_scope(session, reason, user_id=None, tenant_id=None):
    """
    Explicit, audited bypass of tenant filtering.

    Used for cross-tenant maintenance (retention, batch recalculation,
    tenant onboarding). Entering the scope logs a warning and records a
    PRIVILEGED_ACCESS audit entry in the same transaction.

    Raises:
        ValueError: If no reason is given
    """
    from cafm.database import translate_errors
    from cafm.services import audit_service

    if not reason:
        raise ValueError("A privileged scope requires a reason")

    previous = get_context(session)
    ctx = TenantContext(
        tenant_id=as_uuid(tenant_id) or default_tenant_id(session),
        user_id=as_uuid(user_id),
        privileged=True,
        bypass_reason=reason,
    )
    session.info[CONTEXT_KEY] = ctx
    logger.warning(f"[TENANT] Privileged scope opened: {reason} (user={ctx.user_id})")
    try:
        with translate_errors(session):
            audit_service.record_privileged_access(session, ctx)
            yield ctx
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        _restore(session, previous)
        logger.info(f"[TENANT] Privileged scope closed: {reason}")
