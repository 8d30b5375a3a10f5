"""Middleware binding the request's tenant context to the database session."""
import uuid
from functools import wraps

from flask import current_app, g, request, session

from cafm.database import get_session
from cafm.exceptions import InvalidTenant
from cafm.services.tenant_context import set_active_tenant, clear_active_tenant


def _request_metadata():
    return {
        'ip_address': request.remote_addr,
        'user_agent': request.headers.get('User-Agent', '')[:255],
        'path': request.path,
    }


def load_tenant_context():
    """
    Bind tenant, user and request ids for the current request.

    Tenant and user come from the Flask session (set at login); request
    and correlation ids from the X-Request-ID / X-Correlation-ID headers.
    Sets g.tenant_context, g.tenant_id, g.user_id and g.request_id.

    Raises:
        InvalidTenant: If the session names a missing or inaccessible tenant
    """
    g.tenant_context = None
    g.tenant_id = None
    g.user_id = session.get('user_id')
    g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())

    tenant_id = session.get('tenant_id')
    if not tenant_id:
        return

    db_session = get_session()
    if not db_session:
        return

    try:
        ctx = set_active_tenant(
            db_session,
            tenant_id,
            user_id=g.user_id,
            request_id=g.request_id,
            correlation_id=request.headers.get('X-Correlation-ID'),
            metadata=_request_metadata(),
        )
    except InvalidTenant:
        # Tenant gone or suspended: drop it so the next request starts clean
        session.pop('tenant_id', None)
        current_app.logger.warning(f"[TENANT] Request for inaccessible tenant {tenant_id} rejected")
        raise

    g.tenant_context = ctx
    g.tenant_id = ctx.tenant_id


def release_tenant_context(exception=None):
    """Unbind the request's context (runs even when the request failed)."""
    db_session = get_session()
    if db_session is not None:
        clear_active_tenant(db_session)
    g.tenant_context = None


def require_tenant(f):
    """
    Decorator: Require a bound tenant.

    Raises InvalidTenant (403) when the request has no tenant context.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('tenant_context') is None:
            raise InvalidTenant("Select a company to continue")
        return f(*args, **kwargs)
    return decorated_function
